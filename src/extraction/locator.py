from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

DELIMITER = '"""'

# A `script:` label on its own line, optionally followed by a `//` comment.
_SCRIPT_MARKER_RE = re.compile(r"^[ \t]*script:[ \t]*(?://.*)?\r?$", re.MULTILINE)
_SECTION_LABEL_RE = re.compile(r"^\s*\w+:\s*$")
_LITERAL_RE = re.compile(r'"""(.*?)"""', re.DOTALL)
_TEMPLATE_RE = re.compile(r"""\btemplate\s*\(?\s*(['"])([^'"\n]+)\1""")

_LINE_START = "line"
_DELIM = "delimiter"


class ScanState(enum.Enum):
    OUTSIDE = "outside"
    INSIDE_LITERAL = "inside_literal"

    def toggled(self) -> "ScanState":
        if self is ScanState.OUTSIDE:
            return ScanState.INSIDE_LITERAL
        return ScanState.OUTSIDE


class ExtractionErrorKind(enum.Enum):
    NO_SCRIPT_BLOCK = "NoScriptBlock"
    NO_EXECUTABLE_CONTENT = "NoExecutableContent"


@dataclass(frozen=True)
class ScriptSegment:
    """Span of one triple-quoted command literal. Offsets are inclusive, lines 0-indexed."""
    start_offset: int
    end_offset: int
    start_line: int
    end_line: int


@dataclass(frozen=True)
class ScriptBlock:
    start_offset: int
    end_offset: int
    start_line: int
    end_line: int
    segments: Tuple[ScriptSegment, ...]
    template_name: Optional[str]
    final_state: ScanState


@dataclass(frozen=True)
class LocatorResult:
    block: Optional[ScriptBlock]
    error: Optional[ExtractionErrorKind] = None

    @property
    def segments(self) -> Tuple[ScriptSegment, ...]:
        if self.block is None:
            return ()
        return self.block.segments


def _line_number(text: str, offset: int) -> int:
    return text.count("\n", 0, offset)


def _iter_tokens(text: str, start: int) -> Iterator[Tuple[str, int, str]]:
    """
    Yields lookahead tokens from `start` onwards: a line-start token carrying the
    line text, followed by one token per delimiter found on that line.
    """
    pos = start
    for line in text[start:].splitlines(keepends=True):
        yield _LINE_START, pos, line.rstrip("\r\n")
        idx = line.find(DELIMITER)
        while idx != -1:
            yield _DELIM, pos + idx, DELIMITER
            idx = line.find(DELIMITER, idx + len(DELIMITER))
        pos += len(line)


def scan_section_end(text: str, body_start: int) -> Tuple[int, ScanState]:
    """
    Walks the script section body and returns the offset where the section ends
    together with the scanner state at that point.

    A bare `label:` line only terminates the section while the scanner is outside
    a literal, so labels inside command text are ignored. Without a terminator the
    section runs to the end of input.
    """
    state = ScanState.OUTSIDE
    for kind, offset, value in _iter_tokens(text, body_start):
        if kind == _LINE_START:
            if state is ScanState.OUTSIDE and _SECTION_LABEL_RE.match(value):
                return offset, state
            continue
        state = state.toggled()

    if state is ScanState.INSIDE_LITERAL:
        logger.debug("Unbalanced literal delimiters; script section extends to end of input")
    return len(text), state


def find_segments(text: str, start: int, end: int) -> List[ScriptSegment]:
    segments: List[ScriptSegment] = []
    for match in _LITERAL_RE.finditer(text, start, end):
        last = match.end() - 1
        segments.append(
            ScriptSegment(
                start_offset=match.start(),
                end_offset=last,
                start_line=_line_number(text, match.start()),
                end_line=_line_number(text, last),
            )
        )
    return segments


def find_template_name(text: str, start: int, end: int, segments: List[ScriptSegment]) -> Optional[str]:
    for match in _TEMPLATE_RE.finditer(text, start, end):
        inside = any(s.start_offset <= match.start() <= s.end_offset for s in segments)
        if not inside:
            return match.group(2).strip()
    return None


def locate_script_block(text: str) -> LocatorResult:
    """Finds the script section of a process definition and the command literals inside it."""
    marker = _SCRIPT_MARKER_RE.search(text)
    if marker is None:
        return LocatorResult(block=None, error=ExtractionErrorKind.NO_SCRIPT_BLOCK)

    section_start = marker.start()
    newline = text.find("\n", marker.end())
    body_start = len(text) if newline == -1 else newline + 1

    section_end, final_state = scan_section_end(text, body_start)
    segments = find_segments(text, section_start, section_end)
    template_name = find_template_name(text, section_start, section_end, segments)

    block = ScriptBlock(
        start_offset=section_start,
        end_offset=section_end,
        start_line=_line_number(text, section_start),
        end_line=_line_number(text, max(section_end - 1, section_start)),
        segments=tuple(segments),
        template_name=template_name,
        final_state=final_state,
    )

    if not segments and template_name is None:
        return LocatorResult(block=block, error=ExtractionErrorKind.NO_EXECUTABLE_CONTENT)
    return LocatorResult(block=block)
