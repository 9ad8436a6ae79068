from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_STATUS_MARKER = "status: COMPLETED"
DEFAULT_PROCESS_TOKEN = r"\bNF[A-Z0-9_]+:[A-Z0-9_:]+"


class CompletionLogParser:
    """
    Reads a workflow run log and lists the processes that completed.

    A line counts when it contains the status marker; the fully qualified
    process token (e.g. `NFCORE_RNASEQ:RNASEQ:FASTQC`) is reduced to its last
    colon-delimited segment.
    """

    def __init__(self, status_marker: str = DEFAULT_STATUS_MARKER, process_token: str = DEFAULT_PROCESS_TOKEN):
        self.status_marker = status_marker
        self.process_token = re.compile(process_token)

    def parse_line(self, line: str) -> Optional[str]:
        if self.status_marker not in line:
            return None
        match = self.process_token.search(line)
        if not match:
            return None
        name = match.group(0).split(":")[-1]
        return name or None

    def parse(self, lines: Iterable[str]) -> List[str]:
        """Unique completed process names in the order they were first logged."""
        seen = set()
        names: List[str] = []
        for line in lines:
            name = self.parse_line(line)
            if name is None or name in seen:
                continue
            seen.add(name)
            names.append(name)
        return names

    def read(self, path: str) -> List[str]:
        with open(path, "r", encoding="utf-8", errors="ignore") as f:
            names = self.parse(f)
        logger.info(f"Found {len(names)} completed processes in {path}")
        return names
