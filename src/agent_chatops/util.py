import os
import re
from functools import lru_cache
from typing import List, Tuple

REDACTED = "REDACTED"
EXTRA_PATTERNS_ENV = "REDACTION_EXTRA_PATTERNS"
TRUNCATED_MARKER = "\n\n... (truncated)"

# Applied in order; earlier rules win where matches overlap.
_SECRET_RULES: Tuple[Tuple[str, str], ...] = (
    (r"sk-(?:ant-)?[A-Za-z0-9_-]{10,}", "sk-REDACTED"),
    (r"\d{6,12}:[A-Za-z0-9_-]{30,}", "bot-token-REDACTED"),
    (r"gh[pousr]_[A-Za-z0-9]{20,}", "gh-REDACTED"),
    (r"github_pat_[A-Za-z0-9_]{20,}", "github_pat_REDACTED"),
    (r"AKIA[0-9A-Z]{16}", "AKIA_REDACTED"),
    (r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*", "Bearer REDACTED"),
    (
        r"(?i)\b([A-Z0-9_]*(?:api[_-]?key|token|secret|password))\b\s*[:=]\s*([^\s,;]+)",
        r"\1=REDACTED",
    ),
)
_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")


@lru_cache(maxsize=2)
def redaction_rules() -> List[Tuple[re.Pattern[str], str]]:
    """Built-in secret rules plus any ``;;``-separated extras from the environment."""
    rules = [(re.compile(p), repl) for p, repl in _SECRET_RULES]
    for raw in (os.environ.get(EXTRA_PATTERNS_ENV) or "").split(";;"):
        raw = raw.strip()
        if not raw:
            continue
        try:
            rules.append((re.compile(raw), REDACTED))
        except re.error:
            continue
    return rules


def redact_counted(text: str) -> Tuple[str, int]:
    hits = 0
    out = text or ""
    for pattern, repl in redaction_rules():
        out, n = pattern.subn(repl, out)
        hits += n
    return out, hits


def redact(text: str) -> str:
    return redact_counted(text)[0]


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text or "")


def chunk_text(text: str, max_len: int) -> List[str]:
    if max_len <= 0 or not text:
        return [text]
    return [text[start:start + max_len] for start in range(0, len(text), max_len)]


def truncate(text: str, max_len: int) -> str:
    """Cut ``text`` to ``max_len`` characters, marking the cut."""
    if len(text) <= max_len:
        return text
    return text[:max(0, max_len - len(TRUNCATED_MARKER))] + TRUNCATED_MARKER


def format_elapsed(seconds: float) -> str:
    minutes, secs = divmod(max(0, int(round(seconds))), 60)
    return f"{minutes}m {secs:02d}s" if minutes else f"{secs}s"
