from agent_chatops.presentation.formatter import (
    clean_output,
    format_error,
    format_response,
    format_result,
)

__all__ = [
    "clean_output",
    "format_error",
    "format_response",
    "format_result",
]
