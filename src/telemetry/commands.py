from __future__ import annotations

import json
import logging
import re
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

# Only bracketed lines whose first token is quoted are argument arrays, so a
# shell test such as `[ -f in.bam ]` stays a plain command.
_ARGV_RECORD_RE = re.compile(r"""^\s*(?:ARGV:\s*)?\[(\s*["'].*)\]\s*$""")
_ARGV_FIELD_RE = re.compile(r"ARGV:\s*\[(.*)\]")
_ARGV_TOKEN_RE = re.compile(r"""(?:"[^"]*"|'[^']*'|[^,"'])+""")
_QUOTES = ('"', "'")


def _unquote(token: str) -> str:
    token = token.strip()
    if len(token) >= 2 and token[0] in _QUOTES and token[-1] == token[0]:
        return token[1:-1]
    return token.strip("".join(_QUOTES))


def split_argv(args: str) -> List[str]:
    """
    Splits the inside of an argument array into tokens. Well-formed arrays are
    decoded as JSON; anything else (single quotes, stray escapes) falls back to
    a quote-aware comma split. Commas inside quoted tokens are kept.
    """
    try:
        decoded = json.loads(f"[{args}]")
    except ValueError:
        decoded = None
    if isinstance(decoded, list) and all(isinstance(token, str) for token in decoded):
        return decoded
    return [_unquote(token) for token in _ARGV_TOKEN_RE.findall(args)]


def join_argv(args: str) -> str:
    """Joins the inside of an argument array into one command string."""
    return " ".join(token for token in split_argv(args) if token)


def parse_argv_record(line: str) -> Optional[str]:
    """
    Parses `["samtools","sort","-@","4","in.bam"]` (optionally prefixed with
    `ARGV:`) into `samtools sort -@ 4 in.bam`. Returns None for other lines.
    """
    match = _ARGV_RECORD_RE.match(line)
    if not match:
        return None
    command = join_argv(match.group(1))
    return command or None


def parse_command_line(line: str) -> Optional[str]:
    stripped = line.strip()
    if not stripped:
        return None

    record = parse_argv_record(stripped)
    if record is not None:
        return record

    if len(stripped) >= 2 and stripped[0] in _QUOTES and stripped[-1] == stripped[0]:
        stripped = stripped[1:-1]
    return stripped or None


def parse_command_log(lines: Iterable[str]) -> List[str]:
    commands: List[str] = []
    for line in lines:
        command = parse_command_line(line)
        if command is not None:
            commands.append(command)
    return commands


def parse_exec_events(content: str) -> List[str]:
    """Pulls the ARGV array out of every captured exec event line; other lines are ignored."""
    commands: List[str] = []
    for line in content.splitlines():
        match = _ARGV_FIELD_RE.search(line)
        if not match:
            continue
        command = join_argv(match.group(1))
        if command:
            commands.append(command)
    return commands


def read_command_log(path: str) -> List[str]:
    with open(path, "r", encoding="utf-8", errors="ignore") as f:
        commands = parse_command_log(f)
    logger.info(f"Loaded {len(commands)} captured commands from {path}")
    return commands
