class JobError(Exception):
    """Failure of the exclusive agent job. Surfaced to the requester, never retried."""

    code = "ERR_UNKNOWN"


class TimeoutExceeded(JobError):
    code = "ERR_JOB_TIMEOUT"

    def __init__(self, timeout_sec: float, partial_output: str = "") -> None:
        self.timeout_sec = timeout_sec
        self.partial_output = partial_output
        message = f"Agent timed out after {int(timeout_sec)}s."
        if partial_output:
            message += f" Partial output:\n{partial_output}"
        super().__init__(message)


class ProcessSpawnFailure(JobError):
    code = "ERR_AGENT_SPAWN_FAILED"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Failed to spawn agent: {reason}")


class AgentNotFound(ProcessSpawnFailure):
    code = "ERR_AGENT_NOT_FOUND"


class ProcessExitNonZero(JobError):
    code = "ERR_AGENT_EXIT_NONZERO"

    def __init__(self, returncode: int, tail: str = "") -> None:
        self.returncode = returncode
        self.tail = tail
        message = f"Agent exited with code {returncode}"
        if tail:
            message += f": {tail}"
        super().__init__(message)


class ShellCommandError(Exception):
    code = "ERR_SHELL_FAILED"
