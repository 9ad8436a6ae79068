from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

import regex
import yaml

from rules.schema import RuleValidationError, StructuredRule

logger = logging.getLogger(__name__)


class RuleCollectionError(Exception):
    """The rule collection could not be read or is not an array of rules."""


@dataclass(frozen=True)
class PatternCompileError:
    rule_id: str
    pattern: str
    message: str

    def __str__(self) -> str:
        return f"{self.rule_id}: invalid pattern {self.pattern!r}: {self.message}"


def compile_pattern(pattern: str) -> "regex.Pattern":
    return regex.compile(pattern)


def load_rule_collection(path: str) -> List[Any]:
    """
    Reads a persisted rule array. JSON is the native format; `.yml`/`.yaml`
    files are parsed with PyYAML.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.endswith((".yml", ".yaml")):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except OSError as e:
        raise RuleCollectionError(f"Cannot read rule collection {path}: {e}") from e
    except (ValueError, yaml.YAMLError) as e:
        raise RuleCollectionError(f"Cannot parse rule collection {path}: {e}") from e

    if not isinstance(data, list):
        raise RuleCollectionError(f"Rule collection {path} must be an array, got {type(data).__name__}")
    return data


class RuleStore:
    """
    Immutable, ordered set of usable rules.

    Denylisted, malformed, duplicate and uncompilable entries are dropped with a
    warning; the remaining rules keep their input order, which is the tie-break
    order used by the matcher.
    """

    def __init__(self, records: Iterable[Any], denylist: Optional[Iterable[str]] = None, source: str = "<memory>"):
        self.source = source
        self.denylist: Set[str] = {str(d).strip() for d in (denylist or []) if str(d).strip()}

        self.load_errors: List[str] = []
        self.compile_errors: List[PatternCompileError] = []
        self.denylisted_ids: List[str] = []
        self.entries_scanned: int = 0

        rules, compiled = self._load(records)
        self._rules: Tuple[StructuredRule, ...] = tuple(rules)
        self._compiled: Mapping[str, Any] = MappingProxyType(compiled)
        self._by_id: Mapping[str, StructuredRule] = MappingProxyType({r.rule_id: r for r in rules})

    @classmethod
    def from_file(cls, path: str, denylist: Optional[Iterable[str]] = None) -> "RuleStore":
        return cls(load_rule_collection(path), denylist=denylist, source=path)

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "RuleStore":
        path = config.get("path", "")
        if not path or not os.path.exists(path):
            raise RuleCollectionError(f"Rule collection not found: {path!r}")
        return cls.from_file(path, denylist=config.get("denylist") or [])

    @property
    def rules(self) -> Tuple[StructuredRule, ...]:
        return self._rules

    @property
    def compiled(self) -> Mapping[str, Any]:
        return self._compiled

    @property
    def dropped_ids(self) -> List[str]:
        return self.denylisted_ids + [e.rule_id for e in self.compile_errors]

    def get(self, rule_id: str) -> Optional[StructuredRule]:
        return self._by_id.get(rule_id)

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self):
        return iter(self._rules)

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [rule.to_dict() for rule in self._rules]

    def _load(self, records: Iterable[Any]) -> Tuple[List[StructuredRule], Dict[str, Any]]:
        rules: List[StructuredRule] = []
        compiled: Dict[str, Any] = {}

        for index, record in enumerate(records):
            self.entries_scanned += 1
            if isinstance(record, StructuredRule):
                rule = record
            else:
                try:
                    rule = StructuredRule.from_dict(record)
                except RuleValidationError as e:
                    self.load_errors.append(f"entry {index}: {e}")
                    continue

            if rule.rule_id in self.denylist:
                self.denylisted_ids.append(rule.rule_id)
                continue

            if rule.rule_id in compiled:
                self.load_errors.append(f"entry {index}: duplicate rule id {rule.rule_id}")
                continue

            try:
                compiled[rule.rule_id] = compile_pattern(rule.pattern)
            except regex.error as e:
                error = PatternCompileError(rule_id=rule.rule_id, pattern=rule.pattern, message=str(e))
                self.compile_errors.append(error)
                logger.warning(f"Dropping rule with invalid pattern: {error}")
                continue

            rules.append(rule)

        logger.info(
            f"Rules loaded from {self.source}: {len(rules)} (scanned: {self.entries_scanned}, "
            f"denylisted: {len(self.denylisted_ids)}, invalid patterns: {len(self.compile_errors)}, "
            f"errors: {len(self.load_errors)})"
        )
        if self.load_errors:
            logger.warning(f"Some rule entries failed to load (showing first 5): {self.load_errors[:5]}")

        return rules, compiled
