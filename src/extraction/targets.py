from __future__ import annotations

import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from extraction.locator import ExtractionErrorKind, ScriptSegment, locate_script_block

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_DIR = "templates"
DEFAULT_SUFFIXES = (".nf",)

_PROCESS_RE = re.compile(r"\bprocess\s+(\w+)")
_PROCESS_DECL_RE = re.compile(r"\bprocess\s+[A-Z][A-Z0-9_]*\s*\{")


@dataclass(frozen=True)
class ExtractionTarget:
    process_id: Optional[str]
    source_file: str
    segments: Tuple[ScriptSegment, ...] = ()
    template_file: Optional[str] = None
    error: Optional[ExtractionErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, object]:
        return {
            "process": self.process_id,
            "file": self.source_file,
            "segments": [
                {
                    "start_offset": s.start_offset,
                    "end_offset": s.end_offset,
                    "start_line": s.start_line,
                    "end_line": s.end_line,
                }
                for s in self.segments
            ],
            "template_file": self.template_file,
            "error": self.error.value if self.error else None,
        }


def process_id_of(text: str) -> Optional[str]:
    match = _PROCESS_RE.search(text)
    return match.group(1) if match else None


def contains_process(text: str) -> bool:
    return _PROCESS_DECL_RE.search(text) is not None


def extract_target(
    path: str,
    text: str,
    template_dir: str = DEFAULT_TEMPLATE_DIR,
    exists: Callable[[str], bool] = os.path.exists,
) -> ExtractionTarget:
    """
    Builds the extraction outcome for one source file.

    Templates are resolved as `<dir of path>/<template_dir>/<name>`; a template
    that does not exist on disk is treated as absent instead of failing.
    """
    process_id = process_id_of(text)
    result = locate_script_block(text)

    if result.error is ExtractionErrorKind.NO_SCRIPT_BLOCK:
        return ExtractionTarget(process_id=process_id, source_file=path, error=result.error)

    template_file: Optional[str] = None
    template_name = result.block.template_name if result.block else None
    if template_name:
        candidate = os.path.join(os.path.dirname(path), template_dir, template_name)
        if exists(candidate):
            template_file = candidate
        else:
            logger.debug(f"Template {template_name!r} referenced by {path} not found at {candidate}")

    error = None
    if not result.segments and template_file is None:
        error = ExtractionErrorKind.NO_EXECUTABLE_CONTENT

    return ExtractionTarget(
        process_id=process_id,
        source_file=path,
        segments=result.segments,
        template_file=template_file,
        error=error,
    )


def iter_source_files(root: str, suffixes: Sequence[str] = DEFAULT_SUFFIXES) -> Iterable[str]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            if not filename.endswith(tuple(suffixes)):
                continue
            yield os.path.join(dirpath, filename)


def read_source(path: str) -> Optional[str]:
    try:
        with open(path, "r", encoding="utf-8", errors="ignore") as f:
            return f.read()
    except OSError as e:
        logger.warning(f"Skipping unreadable source file {path}: {e}")
        return None


def _extract_file(path: str, template_dir: str) -> Optional[ExtractionTarget]:
    text = read_source(path)
    if text is None or not contains_process(text):
        return None
    return extract_target(path, text, template_dir=template_dir)


def extract_directory(
    root: str,
    template_dir: str = DEFAULT_TEMPLATE_DIR,
    suffixes: Sequence[str] = DEFAULT_SUFFIXES,
    max_workers: int = 4,
) -> List[ExtractionTarget]:
    """Scans `root` for process definitions and extracts each file independently."""
    if not os.path.isdir(root):
        logger.warning(f"Modules path does not exist: {root}")
        return []

    paths = list(iter_source_files(root, suffixes))
    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        outcomes = list(pool.map(lambda p: _extract_file(p, template_dir), paths))

    targets = [t for t in outcomes if t is not None]
    failed = sum(1 for t in targets if not t.ok)
    logger.info(f"Extraction targets: {len(targets)} (scanned: {len(paths)}, errors: {failed})")
    return targets


def targets_by_process(targets: Iterable[ExtractionTarget]) -> Dict[str, ExtractionTarget]:
    index: Dict[str, ExtractionTarget] = {}
    for target in targets:
        if not target.process_id:
            continue
        if target.process_id in index:
            logger.debug(f"Process {target.process_id} defined more than once; keeping {index[target.process_id].source_file}")
            continue
        index[target.process_id] = target
    return index
