from __future__ import annotations

import logging
import re
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import regex

from rules.schema import StructuredRule
from rules.store import RuleStore

logger = logging.getLogger(__name__)

DEFAULT_MATCH_TIMEOUT = 0.25

# Constructs whose meaning depends on the surrounding pattern: numbered and named
# backreferences, conditional groups, and global inline flags such as `(?i)`.
_CONTEXT_SENSITIVE_RE = re.compile(r"\\[1-9]|\\g<|\\k<|\(\?P=|\(\?\(|\(\?[A-Za-z0-9]+\)")


def is_combinable(pattern: str) -> bool:
    return _CONTEXT_SENSITIVE_RE.search(pattern) is None


class SignatureMatcher:
    """
    Attributes a command string to at most one rule.

    A single alternation over every rule pattern is tried first to reject
    commands that no rule can match. When it matches, rules are tested one by one
    in load order and the first hit wins; later rules are never evaluated for
    that command. Every search runs under an evaluation budget, and running out
    of budget counts as "no match".
    """

    def __init__(
        self,
        rules: Sequence[StructuredRule],
        compiled: Mapping[str, Any],
        timeout: Optional[float] = DEFAULT_MATCH_TIMEOUT,
    ):
        self.rules: Tuple[StructuredRule, ...] = tuple(rules)
        self.timeout = timeout
        self._compiled = compiled

        combinable = [r for r in self.rules if is_combinable(r.pattern)]
        self._always_tested: Tuple[StructuredRule, ...] = tuple(
            r for r in self.rules if not is_combinable(r.pattern)
        )

        self.combined_pattern: Optional[str] = None
        self._combined = None
        if combinable:
            combined_pattern = "|".join(f"(?:{r.pattern})" for r in combinable)
            try:
                self._combined = regex.compile(combined_pattern)
                self.combined_pattern = combined_pattern
            except regex.error as e:
                logger.warning(f"Combined signature pattern failed to compile, fast rejection disabled: {e}")
                self._always_tested = self.rules

        if self._always_tested and self._combined is not None:
            logger.info(f"{len(self._always_tested)} rules bypass fast rejection")

    @classmethod
    def from_store(cls, store: RuleStore, timeout: Optional[float] = DEFAULT_MATCH_TIMEOUT) -> "SignatureMatcher":
        return cls(store.rules, store.compiled, timeout=timeout)

    @property
    def fast_reject_enabled(self) -> bool:
        return self._combined is not None

    def _search(self, pattern: Any, command: str, label: str) -> Optional[bool]:
        """Returns None when the evaluation budget is exhausted."""
        try:
            return pattern.search(command, timeout=self.timeout) is not None
        except TimeoutError:
            logger.warning(f"Pattern evaluation for {label} exceeded {self.timeout}s on command {command[:80]!r}")
            return None

    def _candidates(self, command: str) -> Tuple[StructuredRule, ...]:
        if self._combined is None:
            return self.rules
        hit = self._search(self._combined, command, "combined signature")
        if hit is False:
            return self._always_tested
        # Budget overrun on the combined pattern is inconclusive, so fall back to the linear scan.
        return self.rules

    def matches_rule(self, rule: StructuredRule, command: str) -> bool:
        pattern = self._compiled.get(rule.rule_id)
        if pattern is None:
            return False
        return bool(self._search(pattern, command, rule.rule_id))

    def match(self, command: str) -> Optional[StructuredRule]:
        for rule in self._candidates(command):
            if self.matches_rule(rule, command):
                return rule
        return None

    def match_all(self, command: str) -> List[StructuredRule]:
        """Every rule whose pattern matches, in load order. The first element equals `match`."""
        return [rule for rule in self._candidates(command) if self.matches_rule(rule, command)]
