from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class ErrorCatalogEntry:
    code: str
    title: str
    hint: str


ERROR_CATALOG: List[ErrorCatalogEntry] = [
    ErrorCatalogEntry(
        code="ERR_JOB_TIMEOUT",
        title="Agent job timed out",
        hint="Split the task into smaller steps, or re-issue it.",
    ),
    ErrorCatalogEntry(
        code="ERR_AGENT_NOT_FOUND",
        title="Agent CLI not available",
        hint="Check AGENT_CLI_PATH on the host.",
    ),
    ErrorCatalogEntry(
        code="ERR_AGENT_SPAWN_FAILED",
        title="Agent CLI could not start",
        hint="Check that AGENT_CLI_PATH is executable and the working directory is readable.",
    ),
    ErrorCatalogEntry(
        code="ERR_AGENT_EXIT_NONZERO",
        title="Agent exited with error",
        hint="Re-issue the command once the cause above is fixed.",
    ),
    ErrorCatalogEntry(
        code="ERR_SHELL_FAILED",
        title="Shell command failed",
        hint="Shell commands run with a short timeout; try the agent for long tasks.",
    ),
    ErrorCatalogEntry(
        code="ERR_UNKNOWN",
        title="Unknown execution error",
        hint="Check the bot logs for details.",
    ),
]


def error_code_for(exc: BaseException) -> str:
    code = getattr(exc, "code", "")
    if isinstance(code, str) and any(entry.code == code for entry in ERROR_CATALOG):
        return code
    return "ERR_UNKNOWN"


def get_catalog_entry(code: str) -> ErrorCatalogEntry:
    for entry in ERROR_CATALOG:
        if entry.code == code:
            return entry
    return next(entry for entry in ERROR_CATALOG if entry.code == "ERR_UNKNOWN")
