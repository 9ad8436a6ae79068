import sys
import os
import unittest
# Add src to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))

from extraction.locator import (
    ExtractionErrorKind,
    ScanState,
    locate_script_block,
    scan_section_end,
)

FASTQC_SOURCE = '''process FASTQC {
    tag "$meta.id"

    input:
    tuple val(meta), path(reads)

    output:
    path "*.html", emit: html

    script:
    def args = task.ext.args ?: ''
    """
    fastqc $args --threads $task.cpus $reads
    """

    stub:
    """
    touch ${prefix}.html
    """
}
'''

BRANCHED_SOURCE = '''process SAMTOOLS_SORT {
    script:
    if (params.fast) {
        """
        samtools sort -@ 8 $bam
        """
    } else {
        """
        samtools sort $bam
        """
    }
}
'''


class TestScriptBlockLocator(unittest.TestCase):
    def test_single_literal_block(self):
        result = locate_script_block(FASTQC_SOURCE)

        self.assertIsNone(result.error)
        self.assertEqual(result.block.start_line, 9)
        self.assertEqual(result.block.end_line, 14)
        self.assertEqual(len(result.segments), 1)
        segment = result.segments[0]
        self.assertEqual((segment.start_line, segment.end_line), (11, 13))
        self.assertIn("fastqc $args", FASTQC_SOURCE[segment.start_offset:segment.end_offset + 1])

    def test_stub_literal_is_outside_the_section(self):
        result = locate_script_block(FASTQC_SOURCE)
        for segment in result.segments:
            self.assertNotIn("touch", FASTQC_SOURCE[segment.start_offset:segment.end_offset + 1])

    def test_inclusive_offsets(self):
        text = 'script:\n"""\nls\n"""\n'
        result = locate_script_block(text)

        segment = result.segments[0]
        self.assertEqual(segment.start_offset, 8)
        self.assertEqual(segment.end_offset, 17)
        self.assertEqual(text[segment.start_offset:segment.end_offset + 1], '"""\nls\n"""')
        self.assertEqual((segment.start_line, segment.end_line), (1, 3))

    def test_multiple_segments_in_conditional_branches(self):
        result = locate_script_block(BRANCHED_SOURCE)

        self.assertIsNone(result.error)
        self.assertEqual([(s.start_line, s.end_line) for s in result.segments], [(3, 5), (7, 9)])
        for previous, current in zip(result.segments, result.segments[1:]):
            self.assertLessEqual(current.start_line, current.end_line)
            self.assertLess(previous.end_line, current.start_line)

    def test_section_label_inside_literal_does_not_end_section(self):
        text = (
            "process X {\n"
            "    script:\n"
            '    """\n'
            "    cat <<-END_VERSIONS > versions.yml\n"
            "    versions:\n"
            "    END_VERSIONS\n"
            '    """\n'
            "\n"
            "    stub:\n"
            '    """\n'
            "    touch versions.yml\n"
            '    """\n'
            "}\n"
        )
        result = locate_script_block(text)

        self.assertEqual(len(result.segments), 1)
        self.assertEqual((result.segments[0].start_line, result.segments[0].end_line), (2, 6))
        self.assertEqual(result.block.end_line, 7)

    def test_missing_marker(self):
        result = locate_script_block("process X {\n    exec:\n    println 'hi'\n}\n")

        self.assertEqual(result.error, ExtractionErrorKind.NO_SCRIPT_BLOCK)
        self.assertIsNone(result.block)
        self.assertEqual(result.segments, ())

    def test_commented_marker_is_ignored(self):
        result = locate_script_block('process X {\n    // script:\n    """\n    ls\n    """\n}\n')
        self.assertEqual(result.error, ExtractionErrorKind.NO_SCRIPT_BLOCK)

    def test_marker_with_trailing_comment(self):
        result = locate_script_block('process X {\n    script: // run it\n    """\n    ls\n    """\n}\n')
        self.assertIsNone(result.error)
        self.assertEqual(len(result.segments), 1)

    def test_marker_followed_by_next_section(self):
        text = 'process X {\n    script:\n    stub:\n    """\n    touch x\n    """\n}\n'
        result = locate_script_block(text)

        self.assertEqual(result.error, ExtractionErrorKind.NO_EXECUTABLE_CONTENT)
        self.assertEqual(result.segments, ())

    def test_unbalanced_delimiters_run_to_end_of_input(self):
        text = 'process X {\n    script:\n    """\n    echo unterminated\n    stub:\n'
        result = locate_script_block(text)

        self.assertEqual(result.block.final_state, ScanState.INSIDE_LITERAL)
        self.assertEqual(result.block.end_offset, len(text))
        self.assertEqual(result.segments, ())
        self.assertEqual(result.error, ExtractionErrorKind.NO_EXECUTABLE_CONTENT)

    def test_template_directive(self):
        text = "process SALMON_TX2GENE {\n    script:\n    template 'salmon_tx2gene.py'\n}\n"
        result = locate_script_block(text)

        self.assertIsNone(result.error)
        self.assertEqual(result.block.template_name, "salmon_tx2gene.py")
        self.assertEqual(result.segments, ())

    def test_template_word_inside_literal_is_not_a_directive(self):
        text = 'process X {\n    script:\n    """\n    render template "page.html"\n    """\n}\n'
        result = locate_script_block(text)
        self.assertIsNone(result.block.template_name)


class TestScanState(unittest.TestCase):
    def test_toggle(self):
        self.assertIs(ScanState.OUTSIDE.toggled(), ScanState.INSIDE_LITERAL)
        self.assertIs(ScanState.INSIDE_LITERAL.toggled(), ScanState.OUTSIDE)

    def test_scan_stops_at_label_line_start(self):
        text = 'a\nb\nstub:\nc\n'
        end, state = scan_section_end(text, 0)
        self.assertEqual(end, 4)
        self.assertIs(state, ScanState.OUTSIDE)


if __name__ == '__main__':
    unittest.main()
