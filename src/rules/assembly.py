from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from rules.schema import NAMESPACE_SEPARATOR, Fixture, QualityAssessment, StructuredRule
from telemetry.commands import parse_exec_events

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "nextflow/core"

_TAG_RE = re.compile(r"<(\w+)>(.*?)</\1>", re.DOTALL)


class AssemblyError(ValueError):
    pass


@dataclass(frozen=True)
class Tag:
    name: str
    content: str
    children: Tuple["Tag", ...] = ()


def extract_tags(content: str) -> List[Tag]:
    """
    Flat list of `<name>...</name>` elements. Each tag is followed by its
    nested tags, so lookups by name also find children.
    """
    tags: List[Tag] = []
    for match in _TAG_RE.finditer(content):
        inner = match.group(2).strip()
        children = extract_tags(inner)
        tags.append(Tag(name=match.group(1), content=inner, children=tuple(children)))
        tags.extend(children)
    return tags


def _find(tags: Sequence[Tag], name: str) -> Optional[Tag]:
    for tag in tags:
        if tag.name == name:
            return tag
    return None


def _require(tags: Sequence[Tag], name: str, context: str) -> str:
    tag = _find(tags, name)
    if tag is None:
        raise AssemblyError(f"{context}: missing <{name}>")
    return tag.content


def strip_anchors(pattern: str) -> str:
    if pattern.startswith("^"):
        pattern = pattern[1:]
    if pattern.endswith("$") and not pattern.endswith("\\$"):
        pattern = pattern[:-1]
    return pattern


def assemble_rule(content: str, namespace: str = DEFAULT_NAMESPACE, context: str = "input") -> StructuredRule:
    """Builds a StructuredRule from the tagged output of the pattern generator."""
    tags = extract_tags(content)

    process_id = _require(tags, "process", context)
    fixtures: List[Fixture] = []
    for i, example in enumerate(t for t in tags if t.name == "example"):
        example_context = f"{context} example {i}"
        fixtures.append(
            Fixture(
                label=_require(example.children, "label", example_context),
                script=_require(example.children, "script", example_context),
                commands=tuple(parse_exec_events(_require(example.children, "sched_process_exec_events", example_context))),
            )
        )

    source_file = _find(tags, "file")
    return StructuredRule(
        rule_id=f"{namespace.rstrip(NAMESPACE_SEPARATOR)}{NAMESPACE_SEPARATOR}{process_id}",
        label=_require(tags, "process_description", context),
        pattern=strip_anchors(_require(tags, "pattern", context)),
        quality=QualityAssessment(
            score=_require(tags, "quality_score", context),
            reasoning=_require(tags, "reasoning", context),
        ),
        test_fixtures=tuple(fixtures),
        source_file=source_file.content if source_file else None,
    )


def assemble_directory(input_dir: str, namespace: str = DEFAULT_NAMESPACE) -> List[StructuredRule]:
    rules: List[StructuredRule] = []
    errors = 0
    for filename in sorted(os.listdir(input_dir)):
        if not filename.endswith(".txt"):
            continue
        path = os.path.join(input_dir, filename)
        try:
            with open(path, "r", encoding="utf-8") as f:
                rules.append(assemble_rule(f.read(), namespace=namespace, context=filename))
        except (OSError, AssemblyError) as e:
            errors += 1
            logger.warning(f"Skipping generator output {path}: {e}")

    logger.info(f"Assembled {len(rules)} rules from {input_dir} (errors: {errors})")
    return rules


def write_rule_collection(rules: Sequence[StructuredRule], path: str) -> None:
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump([rule.to_dict() for rule in rules], f, indent=2)
    logger.info(f"Wrote {len(rules)} rules to {path}")
