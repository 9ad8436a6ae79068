import sys
import os
import unittest
# Add src to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))

from detection.signature_engine import SignatureMatcher
from extraction.locator import ExtractionErrorKind, ScriptSegment
from extraction.targets import ExtractionTarget
from quality.attribution import FailureReason, attribute_processes, format_verdict
from quality.evaluator import QualityEvaluator
from rules.store import RuleStore


def make_rule(rule_id, pattern, *fixture_commands):
    return {
        "id": rule_id,
        "label": rule_id,
        "pattern": pattern,
        "quality": {"ai_self_eval_pattern_score": {"value": "8", "reasoning": ""}},
        "test_fixtures": [
            {"label": "", "script": "", "commands": list(commands)} for commands in fixture_commands
        ],
    }


SEGMENT = ScriptSegment(start_offset=40, end_offset=80, start_line=3, end_line=5)


def target(process_id, **kwargs):
    kwargs.setdefault("segments", (SEGMENT,))
    return ExtractionTarget(process_id=process_id, source_file=f"modules/{process_id.lower()}/main.nf", **kwargs)


class TestProcessAttribution(unittest.TestCase):
    def setUp(self):
        store = RuleStore([
            make_rule("nextflow/core/FASTQC", r"^fastqc\s", ["fastqc s1.fq"]),
            make_rule("nextflow/core/SAMTOOLS_SORT", r"^samtools sort", ["samtools sort a.bam"]),
            make_rule("nextflow/core/SAMTOOLS_INDEX", r"^samtools", ["samtools sort a.bam"]),
            make_rule("nextflow/core/TRIMGALORE", r"^trim_galore", ["cutadapt -q 20 x"]),
            make_rule("nextflow/core/STAR_ALIGN", r"^STAR\s", ["STAR --runThreadN 4"]),
            make_rule("nextflow/core/ORPHAN", r"^orphan", ["orphan run"]),
        ])
        report = QualityEvaluator(SignatureMatcher.from_store(store)).evaluate([
            "fastqc --threads 6 SRR1.fastq.gz",
            "samtools sort -@ 4 in.bam",
        ])
        alias_map = {
            "FASTQC_RAW": "FASTQC",
            "SAMTOOLS_INDEX": "SAMTOOLS_INDEX",
            "TRIMGALORE": "TRIMGALORE",
            "STAR_ALIGN": "STAR_ALIGN",
            "MULTIQC": "MULTIQC",
            "DESEQ2_QC": "DESEQ2_QC",
            "SALMON_TX2GENE": "SALMON_TX2GENE",
            "GTF_FILTER": "GTF_FILTER",
            "ORPHAN": "ORPHAN",
        }
        targets = {
            "FASTQC": target("FASTQC"),
            "SAMTOOLS_INDEX": target("SAMTOOLS_INDEX"),
            "TRIMGALORE": target("TRIMGALORE"),
            "STAR_ALIGN": target("STAR_ALIGN"),
            "DESEQ2_QC": target("DESEQ2_QC", segments=(), error=ExtractionErrorKind.NO_EXECUTABLE_CONTENT),
            "SALMON_TX2GENE": target(
                "SALMON_TX2GENE", segments=(), template_file="modules/salmon/templates/salmon_tx2gene.py"
            ),
            "GTF_FILTER": target("GTF_FILTER"),
        }
        self.logged = [
            "FASTQC_RAW", "UNKNOWN_STEP", "MULTIQC", "DESEQ2_QC", "SALMON_TX2GENE",
            "GTF_FILTER", "TRIMGALORE", "SAMTOOLS_INDEX", "STAR_ALIGN", "ORPHAN",
        ]
        self.results = {r.logged_as: r for r in attribute_processes(self.logged, alias_map, targets, report)}
        self.ordered = attribute_processes(self.logged, alias_map, targets, report)

    def test_order_follows_log(self):
        self.assertEqual([r.logged_as for r in self.ordered], self.logged)

    def test_passing_process(self):
        result = self.results["FASTQC_RAW"]
        self.assertTrue(result.passed)
        self.assertEqual(result.process_id, "FASTQC")
        self.assertEqual(len(result.real), 1)
        self.assertEqual(format_verdict(result), "✓ FASTQC_RAW / FASTQC")

    def test_source_gaps(self):
        self.assertEqual(self.results["UNKNOWN_STEP"].reason, FailureReason.UNRESOLVED_IN_WORKFLOW)
        self.assertEqual(self.results["MULTIQC"].reason, FailureReason.UNRESOLVED_IN_MODULES)
        self.assertEqual(self.results["DESEQ2_QC"].reason, FailureReason.EXTRACTION_ERROR)
        self.assertIn("NoExecutableContent", self.results["DESEQ2_QC"].detail)
        self.assertEqual(self.results["SALMON_TX2GENE"].reason, FailureReason.EXTRACTION_ERROR)
        self.assertIn("salmon_tx2gene.py", self.results["SALMON_TX2GENE"].detail)
        self.assertEqual(self.results["GTF_FILTER"].reason, FailureReason.NOT_YET_PROCESSED)

    def test_quality_signals(self):
        self.assertEqual(self.results["TRIMGALORE"].reason, FailureReason.FALSE_NEGATIVE)
        self.assertEqual(self.results["TRIMGALORE"].detail, "Did not match for 1/1 tests")

        index = self.results["SAMTOOLS_INDEX"]
        self.assertEqual(index.reason, FailureReason.FALSE_NEGATIVE)
        self.assertEqual(index.synthetic.false_positives, {"nextflow/core/SAMTOOLS_SORT"})

        self.assertEqual(self.results["STAR_ALIGN"].reason, FailureReason.SYNTHETIC_ONLY)

    def test_rules_without_source_file(self):
        self.assertEqual(self.results["ORPHAN"].reason, FailureReason.UNRESOLVED_IN_MODULES)

    def test_failure_verdict_line(self):
        self.assertEqual(
            format_verdict(self.results["MULTIQC"]),
            "✗ MULTIQC (unresolved-in-modules: Cannot find process in source code: modules)",
        )

    def test_report_entry(self):
        entry = self.results["TRIMGALORE"].to_dict()
        self.assertFalse(entry["passed"])
        self.assertEqual(entry["reason"], "false-negative")
        self.assertEqual(entry["rules"], ["nextflow/core/TRIMGALORE"])
        self.assertEqual(entry["synthetic"]["false_negatives"], [0])


if __name__ == '__main__':
    unittest.main()
