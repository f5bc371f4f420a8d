import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Mapping, Optional

from agent_chatops.domain.errors import ShellCommandError
from agent_chatops.observability.structured_log import log_json

logger = logging.getLogger(__name__)

SHELL_TIMEOUT_SEC = 30
SHELL_PATH = "/opt/homebrew/bin:/usr/local/bin:/usr/bin:/bin:/usr/sbin:/sbin"


class LocalShellExecutor:
    """Runs quick diagnostic shell commands next to the agent job."""

    def __init__(
        self,
        working_dir: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        self._working_dir = working_dir
        self._env = env

    async def run(self, command: str, timeout_sec: float = SHELL_TIMEOUT_SEC) -> str:
        env = dict(self._env if self._env is not None else os.environ)
        env["NO_COLOR"] = "1"
        env["PATH"] = os.pathsep.join(p for p in (SHELL_PATH, env.get("PATH", "")) if p)
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self._working_dir) if self._working_dir else None,
                env=env,
                start_new_session=True,
            )
        except OSError as exc:
            raise ShellCommandError(f"Shell error: {exc}") from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_sec)
        except asyncio.TimeoutError:
            _kill_group(proc)
            await proc.communicate()
            log_json(logger, "shell.timeout", command=command[:80], timeout_sec=timeout_sec)
            raise ShellCommandError(f"Shell error: command timed out after {int(timeout_sec)}s")

        out = stdout.decode(errors="replace") if stdout else ""
        err = stderr.decode(errors="replace") if stderr else ""
        log_json(logger, "shell.finished", command=command[:80], returncode=proc.returncode)
        if proc.returncode != 0 and not out and not err:
            raise ShellCommandError(f"Shell error: command exited with code {proc.returncode}")
        return out or err or "(no output)"


def _kill_group(proc: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        return
    except Exception:
        try:
            proc.kill()
        except ProcessLookupError:
            return
