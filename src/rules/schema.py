from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

NAMESPACE_SEPARATOR = "/"


class RuleValidationError(ValueError):
    pass


def _require_str(data: Dict[str, Any], key: str, context: str) -> str:
    value = data.get(key)
    if not isinstance(value, str):
        raise RuleValidationError(f"{context}: field {key!r} must be a string, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class Fixture:
    label: str
    script: str
    commands: Tuple[str, ...]

    @classmethod
    def from_dict(cls, data: Any, context: str = "fixture") -> "Fixture":
        if not isinstance(data, dict):
            raise RuleValidationError(f"{context}: expected an object")
        commands = data.get("commands") or []
        if not isinstance(commands, list) or not all(isinstance(c, str) for c in commands):
            raise RuleValidationError(f"{context}: 'commands' must be a list of strings")
        return cls(
            label=str(data.get("label") or ""),
            script=str(data.get("script") or ""),
            commands=tuple(commands),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "script": self.script, "commands": list(self.commands)}


@dataclass(frozen=True)
class QualityAssessment:
    score: Any
    reasoning: str

    @classmethod
    def from_dict(cls, data: Any) -> "QualityAssessment":
        if not isinstance(data, dict):
            return cls(score=None, reasoning="")
        self_eval = data.get("ai_self_eval_pattern_score") or {}
        if not isinstance(self_eval, dict):
            self_eval = {}
        return cls(score=self_eval.get("value"), reasoning=str(self_eval.get("reasoning") or ""))

    def to_dict(self) -> Dict[str, Any]:
        return {"ai_self_eval_pattern_score": {"value": self.score, "reasoning": self.reasoning}}


@dataclass(frozen=True)
class StructuredRule:
    """
    A regex signature believed to identify commands produced by one workflow process.

    `rule_id` is a globally unique namespaced string such as
    `nextflow/core/FASTQC`; its last segment names the process.
    """
    rule_id: str
    label: str
    pattern: str
    quality: QualityAssessment
    test_fixtures: Tuple[Fixture, ...] = ()
    source_file: Optional[str] = None

    @property
    def process_name(self) -> str:
        return self.rule_id.split(NAMESPACE_SEPARATOR)[-1]

    @classmethod
    def from_dict(cls, data: Any) -> "StructuredRule":
        if not isinstance(data, dict):
            raise RuleValidationError(f"rule entry must be an object, got {type(data).__name__}")

        rule_id = _require_str(data, "id", "rule").strip()
        if not rule_id:
            raise RuleValidationError("rule: field 'id' must not be empty")
        pattern = _require_str(data, "pattern", rule_id)

        raw_fixtures = data.get("test_fixtures") or []
        if not isinstance(raw_fixtures, list):
            raise RuleValidationError(f"{rule_id}: 'test_fixtures' must be a list")
        fixtures = tuple(
            Fixture.from_dict(f, context=f"{rule_id} fixture {i}") for i, f in enumerate(raw_fixtures)
        )

        source = data.get("source")
        source_file = source.get("file") if isinstance(source, dict) else None

        return cls(
            rule_id=rule_id,
            label=str(data.get("label") or ""),
            pattern=pattern,
            quality=QualityAssessment.from_dict(data.get("quality")),
            test_fixtures=fixtures,
            source_file=source_file,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.rule_id}
        if self.source_file is not None:
            data["source"] = {"file": self.source_file}
        data["label"] = self.label
        data["pattern"] = self.pattern
        data["quality"] = self.quality.to_dict()
        data["test_fixtures"] = [f.to_dict() for f in self.test_fixtures]
        return data
