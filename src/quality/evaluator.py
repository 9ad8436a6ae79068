from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Set

from detection.signature_engine import SignatureMatcher
from rules.schema import Fixture, StructuredRule

logger = logging.getLogger(__name__)


class Classification(enum.Enum):
    TRUE_POSITIVE = "true_positive"
    FALSE_NEGATIVE = "false_negative"
    FALSE_POSITIVE = "false_positive"
    SYNTHETIC_ONLY = "synthetic_only"


@dataclass
class SyntheticResult:
    """
    Fixture outcomes for one rule (or all rules of one process).

    `false_positives` holds ids of other rules credited with commands known to
    belong here. `ambiguous_with` is the subset where this rule matched too but
    lost the load-order tie-break.
    """
    true_positives: List[int] = field(default_factory=list)
    false_negatives: List[int] = field(default_factory=list)
    false_positives: Set[str] = field(default_factory=set)
    ambiguous_with: Set[str] = field(default_factory=set)

    @property
    def total(self) -> int:
        return len(self.true_positives) + len(self.false_negatives)

    @property
    def passed(self) -> bool:
        return not self.false_negatives and not self.false_positives

    def merge(self, other: "SyntheticResult") -> None:
        self.true_positives.extend(other.true_positives)
        self.false_negatives.extend(other.false_negatives)
        self.false_positives |= other.false_positives
        self.ambiguous_with |= other.ambiguous_with

    def to_dict(self) -> Dict[str, object]:
        return {
            "true_positives": list(self.true_positives),
            "false_negatives": list(self.false_negatives),
            "false_positives": sorted(self.false_positives),
            "ambiguous_with": sorted(self.ambiguous_with),
        }


@dataclass(frozen=True)
class CommandAttribution:
    command: str
    rule: StructuredRule


@dataclass
class EvaluationReport:
    synthetic_by_rule: Dict[str, SyntheticResult] = field(default_factory=dict)
    real_by_process: Dict[str, List[CommandAttribution]] = field(default_factory=dict)
    unattributed: List[str] = field(default_factory=list)
    classifications: Dict[str, Classification] = field(default_factory=dict)
    rules_by_process: Dict[str, List[StructuredRule]] = field(default_factory=dict)

    def synthetic_for_process(self, process_name: str) -> Optional[SyntheticResult]:
        rules = self.rules_by_process.get(process_name)
        if not rules:
            return None
        merged = SyntheticResult()
        for rule in rules:
            result = self.synthetic_by_rule.get(rule.rule_id)
            if result is not None:
                merged.merge(result)
        return merged

    def summary(self) -> Dict[str, int]:
        counts = {c.value: 0 for c in Classification}
        for classification in self.classifications.values():
            counts[classification.value] += 1
        counts["real_commands_attributed"] = sum(len(v) for v in self.real_by_process.values())
        counts["real_commands_unattributed"] = len(self.unattributed)
        return counts


class QualityEvaluator:
    def __init__(self, matcher: SignatureMatcher):
        self.matcher = matcher

    def evaluate_fixture(self, rule: StructuredRule, fixture: Fixture, result: SyntheticResult, index: int) -> None:
        true_matches = 0
        for command in fixture.commands:
            winner = self.matcher.match(command)
            if winner is None:
                continue
            if winner.rule_id == rule.rule_id:
                true_matches += 1
                continue
            result.false_positives.add(winner.rule_id)
            if self.matcher.matches_rule(rule, command):
                result.ambiguous_with.add(winner.rule_id)

        if true_matches:
            result.true_positives.append(index)
        else:
            result.false_negatives.append(index)

    def evaluate_synthetic(self, rule: StructuredRule) -> SyntheticResult:
        result = SyntheticResult()
        for i, fixture in enumerate(rule.test_fixtures):
            self.evaluate_fixture(rule, fixture, result, i)
        return result

    def evaluate_real(self, commands: Iterable[str], report: EvaluationReport) -> None:
        for command in commands:
            rule = self.matcher.match(command)
            if rule is None:
                report.unattributed.append(command)
                continue
            report.real_by_process.setdefault(rule.process_name, []).append(
                CommandAttribution(command=command, rule=rule)
            )

    @staticmethod
    def classify(synthetic: SyntheticResult, real_matches: int) -> Classification:
        if synthetic.false_negatives:
            return Classification.FALSE_NEGATIVE
        if synthetic.false_positives:
            return Classification.FALSE_POSITIVE
        if real_matches == 0:
            return Classification.SYNTHETIC_ONLY
        return Classification.TRUE_POSITIVE

    def evaluate(self, real_commands: Sequence[str] = ()) -> EvaluationReport:
        report = EvaluationReport()

        for rule in self.matcher.rules:
            report.rules_by_process.setdefault(rule.process_name, []).append(rule)
            report.synthetic_by_rule[rule.rule_id] = self.evaluate_synthetic(rule)

        self.evaluate_real(real_commands, report)

        real_counts: Dict[str, int] = {}
        for attributions in report.real_by_process.values():
            for attribution in attributions:
                real_counts[attribution.rule.rule_id] = real_counts.get(attribution.rule.rule_id, 0) + 1

        for rule in self.matcher.rules:
            classification = self.classify(report.synthetic_by_rule[rule.rule_id], real_counts.get(rule.rule_id, 0))
            report.classifications[rule.rule_id] = classification
            if classification is not Classification.TRUE_POSITIVE:
                logger.debug(f"Rule {rule.rule_id}: {classification.value}")

        logger.info(f"Evaluation summary: {report.summary()}")
        return report
