from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from agent_chatops.domain.contracts import OutputCallback
from agent_chatops.domain.errors import AgentNotFound, ProcessSpawnFailure
from agent_chatops.observability.structured_log import log_json

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 4096
DEFAULT_AGENT_ARGS = ("-p", "--dangerously-skip-permissions")


class AgentProcess:
    """Running agent CLI whose stdout is pushed chunk by chunk into ``on_output``."""

    def __init__(self, proc: asyncio.subprocess.Process, on_output: OutputCallback) -> None:
        self._proc = proc
        self._on_output = on_output
        self._stderr_parts: List[str] = []
        self._readers = [
            asyncio.create_task(self._pump_stdout(), name=f"agent-stdout-{proc.pid}"),
            asyncio.create_task(self._pump_stderr(), name=f"agent-stderr-{proc.pid}"),
        ]

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode

    @property
    def stderr(self) -> str:
        return "".join(self._stderr_parts)

    async def wait(self) -> int:
        await asyncio.gather(*self._readers)
        return await self._proc.wait()

    def terminate(self) -> None:
        self._signal_group(signal.SIGTERM)

    def kill(self) -> None:
        self._signal_group(signal.SIGKILL)

    async def _pump_stdout(self) -> None:
        if self._proc.stdout is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            data = await self._proc.stdout.read(READ_CHUNK_BYTES)
            text = decoder.decode(data, final=not data)
            if text:
                try:
                    await self._on_output(text)
                except Exception:
                    logger.exception("Agent output handler failed")
            if not data:
                break

    async def _pump_stderr(self) -> None:
        if self._proc.stderr is None:
            return
        while True:
            data = await self._proc.stderr.read(READ_CHUNK_BYTES)
            if not data:
                break
            self._stderr_parts.append(data.decode("utf-8", errors="replace"))

    def _signal_group(self, sig: int) -> None:
        if self._proc.returncode is not None:
            return
        try:
            os.killpg(self._proc.pid, sig)
        except ProcessLookupError:
            return
        except Exception:
            # Fallback to direct process signaling if pgid kill fails.
            try:
                self._proc.send_signal(sig)
            except ProcessLookupError:
                return


class AgentProcessSpawner:
    """Launches the agent CLI with the prompt as its last argument."""

    def __init__(
        self,
        agent_path: str = "claude",
        agent_args: Sequence[str] = DEFAULT_AGENT_ARGS,
        working_dir: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._agent_path = agent_path
        self._agent_args = list(agent_args)
        self._working_dir = working_dir
        self._env = env

    def argv(self, prompt: str) -> List[str]:
        return [self._agent_path, *self._agent_args, prompt]

    async def spawn(self, prompt: str, on_output: OutputCallback) -> AgentProcess:
        env = dict(self._env if self._env is not None else os.environ)
        env["NO_COLOR"] = "1"
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.argv(prompt),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._working_dir) if self._working_dir else None,
                env=env,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            # A missing cwd also raises FileNotFoundError, naming the directory.
            if exc.filename in (None, self._agent_path):
                raise AgentNotFound(f"{self._agent_path} not found") from exc
            raise ProcessSpawnFailure(str(exc)) from exc
        except OSError as exc:
            raise ProcessSpawnFailure(str(exc)) from exc
        log_json(logger, "agent.spawned", pid=proc.pid, agent=self._agent_path, prompt=prompt[:80])
        return AgentProcess(proc, on_output)
