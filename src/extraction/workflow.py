from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Tuple

logger = logging.getLogger(__name__)

_INCLUDE_RE = re.compile(r"\binclude\s*\{([^}]*)\}")
_INCLUDE_ITEM_RE = re.compile(r"^\s*([A-Z]\w*)(?:\s+as\s+(\w+))?\s*$")


def parse_includes(text: str) -> List[Tuple[str, str]]:
    """
    Returns `(original, alias)` pairs for every process pulled in by an
    `include { ... } from '...'` statement. Items are separated by `;` and the
    alias defaults to the original name.
    """
    pairs: List[Tuple[str, str]] = []
    for match in _INCLUDE_RE.finditer(text):
        for item in re.split(r"[;\n]", match.group(1)):
            parsed = _INCLUDE_ITEM_RE.match(item)
            if not parsed:
                continue
            original, alias = parsed.group(1), parsed.group(2)
            pairs.append((original, alias or original))
    return pairs


def build_alias_map(texts: Iterable[str]) -> Dict[str, str]:
    alias_map: Dict[str, str] = {}
    for text in texts:
        for original, alias in parse_includes(text):
            previous = alias_map.get(alias)
            if previous is not None and previous != original:
                logger.warning(f"Alias {alias} maps to both {previous} and {original}; keeping {previous}")
                continue
            alias_map[alias] = original
    return alias_map
