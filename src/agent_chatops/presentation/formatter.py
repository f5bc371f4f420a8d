from __future__ import annotations

import math
from typing import List, Optional

from agent_chatops.services.error_codes import error_code_for, get_catalog_entry
from agent_chatops.util import chunk_text, redact, strip_ansi, truncate

MAX_OUTPUT_CHARS = 3800
ERROR_MAX_CHARS = 500
HEAD_EXCERPT_CHARS = 600
TAIL_EXCERPT_CHARS = 1000
SPLIT_FACTOR = 3


def clean_output(text: str) -> str:
    return redact(strip_ansi(text or ""))


def format_response(output: str, max_chars: int = MAX_OUTPUT_CHARS) -> str:
    """Single-message rendering used for quick shell commands."""
    clean = clean_output(output) or "(no output)"
    return truncate(clean, max_chars)


def format_result(
    output: str,
    elapsed: Optional[str] = None,
    max_chars: int = MAX_OUTPUT_CHARS,
) -> List[str]:
    """Split a finished job's output into the replies to post, in order.

    Up to ``max_chars`` goes out as one reply, up to three times that as
    sequential parts, and anything larger as a head and tail excerpt with the
    middle elided.
    """
    clean = clean_output(output) or "(no output)"
    prefix = f"✅ Done in {elapsed}.\n\n" if elapsed else ""
    if len(clean) <= max_chars - len(prefix):
        return [prefix + clean]
    if len(clean) <= max_chars * SPLIT_FACTOR:
        first_len = max(1, max_chars - len(prefix))
        return [prefix + clean[:first_len]] + chunk_text(clean[first_len:], max_chars)
    head = clean[:HEAD_EXCERPT_CHARS]
    tail = clean[-TAIL_EXCERPT_CHARS:]
    size_kb = int(math.floor(len(clean) / 1024 + 0.5))
    return [f"{prefix}{head}\n\n... ({size_kb}KB output truncated) ...\n\n{tail}"]


def format_error(exc: BaseException) -> str:
    entry = get_catalog_entry(error_code_for(exc))
    message = truncate(clean_output(str(exc)) or entry.title, ERROR_MAX_CHARS)
    return f"❌ Error: {message}\n{entry.hint}"
