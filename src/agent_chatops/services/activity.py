"""Turn raw agent output into short "what is happening now" summaries.

``extract_activity`` looks at one chunk of streamed output and returns at most
one :class:`ActivitySignal`. The first recognised line wins, so the progress
rate stays bounded by the rate at which chunks arrive.
"""
from __future__ import annotations

import re
from typing import Callable, List, Optional, Tuple

from agent_chatops.domain.jobs import ActivitySignal

DETAIL_MAX_CHARS = 80
COMMAND_EXCERPT_CHARS = 60
_COMMAND_HEAD_TOKENS = 3

_READ_RE = re.compile(r"\b(?:Read|Reading)\s+(?:file:?\s*)?[`\"']?([^\s`\"']+)", re.I)
_EDIT_RE = re.compile(r"\b(?:Edit|Editing|Write|Writing)\s+(?:file:?\s*)?[`\"']?([^\s`\"']+)", re.I)
_SHELL_RE = re.compile(r"\$\s+(.+)")
_TEST_WORD_RE = re.compile(r"test", re.I)
_TEST_OUTCOME_RE = re.compile(r"passed|failed|error", re.I)
_TOOL_RE = re.compile(r"(?:Using tool|Tool:)\s+(\w+)", re.I)
_COMMIT_RE = re.compile(r"\[[\w/]+\s+[\da-f]+\]", re.I)
_PUSH_RE = re.compile(r"branch .+ set up to track", re.I)

# Ordered most specific first; matched against the first tokens of the command.
_SHELL_CATEGORIES: Tuple[Tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"pytest|py\.test", re.I), "Running pytest..."),
    (re.compile(r"npm\s+test|jest|vitest", re.I), "Running tests..."),
    (re.compile(r"ruff|eslint|flake8|mypy", re.I), "Running linter..."),
    (re.compile(r"git\s+(add|commit|push|diff|log|status)", re.I), "Running git commands..."),
    (re.compile(r"\bgh\b", re.I), "Running GitHub CLI..."),
    (re.compile(r"\b(npm|npx|node)\b", re.I), "Running Node command..."),
    (re.compile(r"\b(pip3?|python3?)\b", re.I), "Running Python command..."),
)


def extract_activity(chunk: str) -> Optional[ActivitySignal]:
    for line in (chunk or "").split("\n"):
        if not line.strip():
            continue
        for recognizer in _RECOGNIZERS:
            signal = recognizer(line)
            if signal is not None:
                return signal
    return None


def classify_shell_command(command: str) -> ActivitySignal:
    cmd = command.strip()
    head = " ".join(cmd.split()[:_COMMAND_HEAD_TOKENS])
    for pattern, summary in _SHELL_CATEGORIES:
        if pattern.search(head):
            return ActivitySignal(summary=summary, detail=cmd[:DETAIL_MAX_CHARS])
    return ActivitySignal(summary=f"Running: `{cmd[:COMMAND_EXCERPT_CHARS]}`")


def _basename(path: str) -> str:
    return path.rstrip("/").split("/")[-1] or path


def _file_read(line: str) -> Optional[ActivitySignal]:
    match = _READ_RE.search(line)
    if match:
        return ActivitySignal(summary=f"Reading `{_basename(match.group(1))}`")
    return None


def _file_edit(line: str) -> Optional[ActivitySignal]:
    match = _EDIT_RE.search(line)
    if match:
        return ActivitySignal(summary=f"Editing `{_basename(match.group(1))}`")
    return None


def _shell(line: str) -> Optional[ActivitySignal]:
    match = _SHELL_RE.search(line)
    if match:
        return classify_shell_command(match.group(1))
    return None


def _test_result(line: str) -> Optional[ActivitySignal]:
    if _TEST_OUTCOME_RE.search(line) and _TEST_WORD_RE.search(line):
        return ActivitySignal(summary=f"Test result: {line.strip()[:DETAIL_MAX_CHARS]}")
    return None


def _tool_use(line: str) -> Optional[ActivitySignal]:
    match = _TOOL_RE.search(line)
    if match:
        return ActivitySignal(summary=f"Using {match.group(1)}")
    return None


def _commit(line: str) -> Optional[ActivitySignal]:
    if _COMMIT_RE.search(line):
        return ActivitySignal(summary="Created commit")
    return None


def _push(line: str) -> Optional[ActivitySignal]:
    if _PUSH_RE.search(line):
        return ActivitySignal(summary="Pushed to remote")
    return None


_RECOGNIZERS: List[Callable[[str], Optional[ActivitySignal]]] = [
    _file_read,
    _file_edit,
    _shell,
    _test_result,
    _tool_use,
    _commit,
    _push,
]
