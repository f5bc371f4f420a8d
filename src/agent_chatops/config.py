import os
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional

TOKEN_KEY = "TELEGRAM_BOT_TOKEN"
ALLOWLIST_KEY = "ALLOWLIST"
CHAT_IDS_KEY = "CHATOPS_CHAT_IDS"
WORKING_DIR_KEY = "CHATOPS_WORKING_DIR"
AGENT_PATH_KEY = "AGENT_CLI_PATH"
AGENT_ARGS_KEY = "AGENT_CLI_ARGS"

DEFAULT_CONFIG_DIR = Path.home() / ".config" / "agent-chatops"
DEFAULT_AGENT_PATH = "claude"
DEFAULT_AGENT_ARGS = "-p --dangerously-skip-permissions"

# env key -> (Config attribute, default); all values are whole seconds except the cap.
LIMIT_KEYS = {
    "AGENT_JOB_TIMEOUT_SEC": ("job_timeout_sec", 600),
    "SHELL_TIMEOUT_SEC": ("shell_timeout_sec", 30),
    "PROGRESS_DEBOUNCE_SEC": ("progress_debounce_sec", 15),
    "HEARTBEAT_INTERVAL_SEC": ("heartbeat_interval_sec", 60),
    "HEARTBEAT_QUIET_SEC": ("heartbeat_quiet_sec", 45),
    "KILL_GRACE_SEC": ("kill_grace_sec", 3),
    "FAILSAFE_MARGIN_SEC": ("failsafe_margin_sec", 30),
    "MAX_OUTPUT_CHARS": ("max_output_chars", 3800),
}


@dataclass
class Config:
    token: str
    allowlist: Optional[List[int]]
    config_dir: Path
    env_path: Path
    working_dir: Path
    chat_ids: Optional[List[int]] = None
    agent_path: str = DEFAULT_AGENT_PATH
    agent_args: List[str] = field(default_factory=lambda: shlex.split(DEFAULT_AGENT_ARGS))
    job_timeout_sec: int = 600
    shell_timeout_sec: int = 30
    progress_debounce_sec: int = 15
    heartbeat_interval_sec: int = 60
    heartbeat_quiet_sec: int = 45
    kill_grace_sec: int = 3
    failsafe_margin_sec: int = 30
    max_output_chars: int = 3800


def load_env_file(path: Path) -> Dict[str, str]:
    """Parse ``KEY=value`` lines; blank lines, comments and malformed lines are skipped."""
    if not path.is_file():
        return {}
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        print(f"Could not read {path}: {exc}", file=sys.stderr)
        return {}
    values: Dict[str, str] = {}
    for line in raw.splitlines():
        key, sep, value = line.strip().partition("=")
        if not sep or not key or key.startswith("#"):
            continue
        values[key.strip()] = value.strip()
    return values


def write_env_file(path: Path, values: Mapping[str, str]) -> None:
    body = "".join(f"{key}={value}\n" for key, value in values.items())
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(body, encoding="utf-8")
    except OSError as exc:
        print(f"Could not write {path}: {exc}", file=sys.stderr)


def get_env_value(key: str, env_file: Mapping[str, str]) -> Optional[str]:
    return os.environ.get(key) or env_file.get(key)


def get_env_int(key: str, env_file: Mapping[str, str], default: int) -> int:
    raw = (get_env_value(key, env_file) or "").strip()
    if not raw.lstrip("-").isdigit():
        return default
    return max(1, int(raw))


def parse_id_list(raw: Optional[str]) -> Optional[List[int]]:
    """Comma separated numeric ids; non-numeric entries are ignored."""
    ids = [int(part) for part in (p.strip() for p in (raw or "").split(",")) if part.lstrip("-").isdigit()]
    return ids or None


def parse_allowlist(raw: Optional[str]) -> Optional[List[int]]:
    return parse_id_list(raw)


def get_env_path(config_dir: Path) -> Path:
    return config_dir / ".env"


def load_env_with_fallback(config_dir: Path) -> Dict[str, str]:
    return load_env_file(get_env_path(config_dir)) or load_env_file(Path.cwd() / ".env")


def ensure_onboarding(config_dir: Path) -> Dict[str, str]:
    """Ask for whatever is missing before the first start and persist it."""
    env_file = load_env_with_fallback(config_dir)
    missing_token = not get_env_value(TOKEN_KEY, env_file)
    missing_allowlist = get_env_value(ALLOWLIST_KEY, env_file) is None
    if not (missing_token or missing_allowlist):
        return env_file

    if missing_token:
        env_file[TOKEN_KEY] = input("Telegram bot token: ").strip()
    if missing_allowlist:
        ids = input("Telegram user id(s) allowed to run commands (comma separated, blank = anyone): ").strip()
        if not ids:
            print("WARNING: without an allowlist anyone who finds the bot can run the agent in your repository.")
            if input("Type YES to continue: ").strip() != "YES":
                print("Aborted.")
                sys.exit(1)
        env_file[ALLOWLIST_KEY] = ids
    write_env_file(get_env_path(config_dir), env_file)
    return env_file


def purge_env(config_dir: Path) -> None:
    try:
        get_env_path(config_dir).unlink(missing_ok=True)
    except OSError as exc:
        print(f"Could not remove .env: {exc}", file=sys.stderr)


def build_config(
    env_file: Mapping[str, str],
    config_dir: Path,
    working_dir: Optional[Path] = None,
) -> Config:
    """Assemble a Config from process env and .env values; process env wins."""
    if working_dir is None:
        raw_dir = get_env_value(WORKING_DIR_KEY, env_file)
        working_dir = Path(raw_dir) if raw_dir else Path.cwd()
    raw_args = get_env_value(AGENT_ARGS_KEY, env_file)
    limits = {attr: get_env_int(key, env_file, default) for key, (attr, default) in LIMIT_KEYS.items()}
    return Config(
        token=get_env_value(TOKEN_KEY, env_file) or "",
        allowlist=parse_allowlist(get_env_value(ALLOWLIST_KEY, env_file)),
        config_dir=config_dir,
        env_path=get_env_path(config_dir),
        working_dir=working_dir.expanduser().resolve(),
        chat_ids=parse_id_list(get_env_value(CHAT_IDS_KEY, env_file)),
        agent_path=get_env_value(AGENT_PATH_KEY, env_file) or DEFAULT_AGENT_PATH,
        agent_args=shlex.split(DEFAULT_AGENT_ARGS if raw_args is None else raw_args),
        **limits,
    )


def load_config(config_dir: Path, working_dir: Optional[Path] = None) -> Config:
    config = build_config(ensure_onboarding(config_dir), config_dir, working_dir=working_dir)
    if not config.token:
        print(f"Missing {TOKEN_KEY}.", file=sys.stderr)
        sys.exit(1)
    return config
