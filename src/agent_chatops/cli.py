import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from agent_chatops.app_container import build_controller
from .config import (
    ALLOWLIST_KEY,
    AGENT_PATH_KEY,
    CHAT_IDS_KEY,
    DEFAULT_CONFIG_DIR,
    TOKEN_KEY,
    build_config,
    get_env_path,
    get_env_value,
    load_config,
    load_env_with_fallback,
    purge_env,
)
from .telegram_bot import build_application

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-chatops",
        description="Run a local coding agent from Telegram, one job at a time.",
    )
    parser.add_argument(
        "--config-dir",
        default=str(DEFAULT_CONFIG_DIR),
        help=f"Directory holding the .env file (default: {DEFAULT_CONFIG_DIR})",
    )
    parser.add_argument(
        "--working-dir",
        default=None,
        help="Repository the agent and shell commands run in (default: CHATOPS_WORKING_DIR or cwd)",
    )
    parser.add_argument("--print-config", action="store_true", help="Show the resolved configuration and exit")
    parser.add_argument("--purge", action="store_true", help="Remove the stored .env so the next start re-onboards")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"))
    return parser


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _yes_no(flag: object) -> str:
    return "yes" if flag else "no"


def _print_config(config_dir: Path, working_dir: Optional[Path]) -> None:
    env_file = load_env_with_fallback(config_dir)
    config = build_config(env_file, config_dir, working_dir=working_dir)
    lines = [
        f"Config dir: {config_dir}",
        f"Env file: {get_env_path(config_dir)}",
        f"Token present: {_yes_no(get_env_value(TOKEN_KEY, env_file))}",
        f"Allowlist active: {_yes_no(config.allowlist)} ({ALLOWLIST_KEY})",
        f"Chat filter active: {_yes_no(config.chat_ids)} ({CHAT_IDS_KEY})",
        f"Agent CLI: {' '.join([config.agent_path, *config.agent_args])} ({AGENT_PATH_KEY})",
        f"Working dir: {config.working_dir}",
        f"Job timeout: {config.job_timeout_sec}s, shell timeout: {config.shell_timeout_sec}s",
    ]
    print("\n".join(lines))


def main() -> None:
    args = build_parser().parse_args()
    config_dir = Path(args.config_dir).expanduser().resolve()
    working_dir = Path(args.working_dir) if args.working_dir else None
    _configure_logging(args.log_level)

    if args.print_config:
        _print_config(config_dir, working_dir)
        return
    if args.purge:
        purge_env(config_dir)
        print("Removed stored .env; the next start will ask for settings again.", file=sys.stderr)
        return

    config = load_config(config_dir, working_dir=working_dir)
    app = build_application(
        config.token,
        config.allowlist,
        build_controller(config),
        chat_ids=config.chat_ids,
    )
    logger.info("Polling Telegram; agent jobs run in %s", config.working_dir)
    app.run_polling(close_loop=False)


if __name__ == "__main__":
    main()
