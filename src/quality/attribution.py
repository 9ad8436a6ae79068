from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from extraction.targets import ExtractionTarget
from quality.evaluator import CommandAttribution, EvaluationReport, SyntheticResult
from rules.schema import StructuredRule

logger = logging.getLogger(__name__)


class FailureReason(enum.Enum):
    UNRESOLVED_IN_WORKFLOW = "unresolved-in-workflow"
    UNRESOLVED_IN_MODULES = "unresolved-in-modules"
    EXTRACTION_ERROR = "extraction-error"
    NOT_YET_PROCESSED = "not-yet-processed"
    FALSE_NEGATIVE = "false-negative"
    FALSE_POSITIVE = "false-positive"
    SYNTHETIC_ONLY = "synthetic-only"


@dataclass
class ProcessAttribution:
    logged_as: str
    process_id: Optional[str] = None
    target: Optional[ExtractionTarget] = None
    rules: Tuple[StructuredRule, ...] = ()
    synthetic: Optional[SyntheticResult] = None
    real: List[CommandAttribution] = field(default_factory=list)
    reason: Optional[FailureReason] = None
    detail: str = ""

    @property
    def passed(self) -> bool:
        return self.reason is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "logged_as": self.logged_as,
            "process": self.process_id,
            "passed": self.passed,
            "reason": self.reason.value if self.reason else None,
            "detail": self.detail,
            "rules": [r.rule_id for r in self.rules],
            "synthetic": self.synthetic.to_dict() if self.synthetic else None,
            "real_matches": len(self.real),
        }


def _judge(attribution: ProcessAttribution) -> Tuple[Optional[FailureReason], str]:
    if attribution.process_id is None:
        return FailureReason.UNRESOLVED_IN_WORKFLOW, "Cannot find process in source code: workflows"

    target = attribution.target
    if not attribution.rules:
        if target is None:
            return FailureReason.UNRESOLVED_IN_MODULES, "Cannot find process in source code: modules"
        if target.error is not None:
            return FailureReason.EXTRACTION_ERROR, f"Cannot extract rule from source code: {target.error.value}"
        if target.template_file:
            template = os.path.basename(target.template_file)
            return FailureReason.EXTRACTION_ERROR, f"Cannot recognise dynamic script, {template}"
        return FailureReason.NOT_YET_PROCESSED, "In progress, not yet extracted"

    synthetic = attribution.synthetic
    if synthetic is not None:
        if synthetic.false_negatives:
            return (
                FailureReason.FALSE_NEGATIVE,
                f"Did not match for {len(synthetic.false_negatives)}/{synthetic.total} tests",
            )
        if synthetic.false_positives:
            confused = ", ".join(sorted(synthetic.false_positives))
            return FailureReason.FALSE_POSITIVE, f"Matched, but possibly confused with: {confused}"

    if target is None:
        return FailureReason.UNRESOLVED_IN_MODULES, "Cannot find process in source code: modules"

    if not attribution.real:
        return FailureReason.SYNTHETIC_ONLY, "Matched on synthetic fixtures, but not on real data"

    return None, ""


def attribute_processes(
    logged_processes: Sequence[str],
    alias_map: Mapping[str, str],
    targets: Mapping[str, ExtractionTarget],
    report: EvaluationReport,
) -> List[ProcessAttribution]:
    """
    Traces each logged process name back through the workflow alias map, the
    extraction targets and the loaded rules, and records the first gap or
    quality problem found. Output order follows `logged_processes`.
    """
    results: List[ProcessAttribution] = []
    for logged_as in logged_processes:
        attribution = ProcessAttribution(logged_as=logged_as)
        attribution.process_id = alias_map.get(logged_as)

        if attribution.process_id is not None:
            attribution.target = targets.get(attribution.process_id)
            attribution.rules = tuple(report.rules_by_process.get(attribution.process_id, ()))
            attribution.synthetic = report.synthetic_for_process(attribution.process_id)
            attribution.real = list(report.real_by_process.get(attribution.process_id, ()))

        attribution.reason, attribution.detail = _judge(attribution)
        results.append(attribution)

    failed = sum(1 for r in results if not r.passed)
    logger.info(f"Attributed {len(results)} logged processes ({len(results) - failed} passed, {failed} failed)")
    return results


def format_verdict(attribution: ProcessAttribution) -> str:
    line = ("✓ " if attribution.passed else "✗ ") + attribution.logged_as
    if attribution.process_id and attribution.process_id != attribution.logged_as:
        line += " / " + attribution.process_id
    if not attribution.passed:
        line += f" ({attribution.reason.value}: {attribution.detail})"
    return line
