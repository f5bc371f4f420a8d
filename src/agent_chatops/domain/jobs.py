from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from agent_chatops.domain.contracts import InboundRequest, JobProcess

STATE_IDLE = "idle"
STATE_BUSY = "busy"

LABEL_MAX_CHARS = 40
FOCUS_LABEL_MAX_CHARS = 30
CONTEXT_TAIL_CHARS = 500


@dataclass
class Job:
    label: str
    prompt: str
    started_at: float
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    process: Optional[JobProcess] = None
    last_activity: str = ""
    partial_output: str = ""

    def output_tail(self, max_chars: int = CONTEXT_TAIL_CHARS) -> str:
        return self.partial_output[-max_chars:]


@dataclass(frozen=True)
class Busy:
    label: str
    elapsed_sec: float


@dataclass(frozen=True)
class PendingRequest:
    request: InboundRequest
    raw_text: str


@dataclass(frozen=True)
class ActivitySignal:
    summary: str
    detail: Optional[str] = None


@dataclass(frozen=True)
class JobLimits:
    job_timeout_sec: float = 600.0
    failsafe_margin_sec: float = 30.0
    kill_grace_sec: float = 3.0
    shell_timeout_sec: float = 30.0
    progress_debounce_sec: float = 15.0
    heartbeat_interval_sec: float = 60.0
    heartbeat_quiet_sec: float = 45.0
    max_output_chars: int = 3800

    @property
    def failsafe_sec(self) -> float:
        return self.job_timeout_sec + self.failsafe_margin_sec

    @classmethod
    def from_config(cls, config: Any) -> "JobLimits":
        return cls(
            job_timeout_sec=float(config.job_timeout_sec),
            failsafe_margin_sec=float(config.failsafe_margin_sec),
            kill_grace_sec=float(config.kill_grace_sec),
            shell_timeout_sec=float(config.shell_timeout_sec),
            progress_debounce_sec=float(config.progress_debounce_sec),
            heartbeat_interval_sec=float(config.heartbeat_interval_sec),
            heartbeat_quiet_sec=float(config.heartbeat_quiet_sec),
            max_output_chars=int(config.max_output_chars),
        )


def make_label(text: str) -> str:
    return (text or "").strip()[:LABEL_MAX_CHARS]


def make_focus_label(instruction: str) -> str:
    return f"focus: {(instruction or '').strip()[:FOCUS_LABEL_MAX_CHARS]}"


def build_focus_prompt(previous_output: str, instruction: str) -> str:
    return (
        "Continue working on this codebase. Previous partial output (for context):\n"
        f"```\n{previous_output}\n```\n\n"
        f"New instruction: {instruction}"
    )
