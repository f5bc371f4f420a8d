from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

OutputCallback = Callable[[str], Awaitable[None]]


class InboundRequest(Protocol):
    """A chat message the controller can answer without knowing the transport."""

    @property
    def text(self) -> str:
        ...

    async def reply(self, text: str) -> None:
        ...

    async def react(self, emoji: str) -> None:
        ...


class CommandHandler(Protocol):
    is_parallel_safe: bool

    def to_prompt(self, text: str) -> str:
        ...

    def to_command(self, text: str) -> Optional[str]:
        ...


@dataclass(frozen=True)
class Classification:
    accepted: bool
    handler: Optional[CommandHandler] = None
    rejection_reason: str = ""


class CommandClassifier(Protocol):
    def classify(self, text: str) -> Classification:
        ...

    def blocked_reason(self, text: str) -> Optional[str]:
        ...

    def help_text(self) -> str:
        ...


class JobProcess(Protocol):
    @property
    def returncode(self) -> Optional[int]:
        ...

    @property
    def stderr(self) -> str:
        ...

    async def wait(self) -> int:
        ...

    def terminate(self) -> None:
        ...

    def kill(self) -> None:
        ...


class JobSpawner(Protocol):
    async def spawn(self, prompt: str, on_output: OutputCallback) -> JobProcess:
        ...


class ParallelExecutor(Protocol):
    async def run(self, command: str, timeout_sec: float = 30) -> str:
        ...
