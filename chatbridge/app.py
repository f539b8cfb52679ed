"""chatbridge — main application entry point."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path


def configure_logging(level: str, log_dir: Path | None = None) -> Path:
    """Send logs to a rotating file under ~/.chatbridge/logs and to stderr."""
    log_dir = log_dir or Path.home() / ".chatbridge" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "chatbridge.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    # aiohttp logs every long-poll request at INFO.
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    return log_file


async def _serve(config, project_dir: str) -> None:
    from chatbridge.shared.services.persistence import SessionStore
    from chatbridge.telegram.bot import TelegramBot
    from chatbridge.telegram.client import TelegramClient

    store = SessionStore(config.sessions_dir)
    async with TelegramClient(config.telegram_token) as client:
        me = await client.get_me()
        logging.getLogger(__name__).info(
            "Connected as @%s", me.get("username", "<unknown>")
        )
        bot = TelegramBot(config, client, project_dir=project_dir, store=store)
        await bot.run()


def main() -> None:
    import argparse

    from chatbridge.engine.config import BridgeConfig, load_yaml_config
    from chatbridge.engine.runner import StreamRunner

    parser = argparse.ArgumentParser(
        prog="chatbridge",
        description="chatbridge — drive the Claude Code CLI from a Telegram chat",
    )
    parser.add_argument(
        "project_dir", nargs="?", default=".",
        help="Default working directory for new chat sessions",
    )
    parser.add_argument(
        "--token", metavar="TOKEN",
        help="Telegram bot token (default: $BRIDGE_TELEGRAM_TOKEN or $TELEGRAM_BOT_TOKEN)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file with a 'bridge:' section",
    )
    parser.add_argument(
        "--bypass-permissions", action="store_true",
        help="Run the CLI with --dangerously-skip-permissions",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Debug logging, including raw stream lines",
    )
    args = parser.parse_args()

    config = BridgeConfig.from_env()
    if args.config:
        config = load_yaml_config(args.config, config)
    if args.token:
        config.telegram_token = args.token
    if args.bypass_permissions:
        config.bypass_permissions = True
    if args.verbose:
        config.log_level = "DEBUG"
        config.debug_stream = True

    log_file = configure_logging(config.log_level)
    logger = logging.getLogger(__name__)

    project_dir = os.path.abspath(os.path.expanduser(args.project_dir))
    if not os.path.isdir(project_dir):
        parser.error(f"project directory does not exist: {project_dir}")
    if not config.telegram_token:
        parser.error("a Telegram bot token is required (--token or $BRIDGE_TELEGRAM_TOKEN)")
    if not StreamRunner(config).is_available():
        parser.error("Claude CLI not found. Is Claude CLI installed?")

    logger.info(
        "Starting chatbridge project=%s bypass=%s config=%s log=%s",
        project_dir,
        config.bypass_permissions,
        args.config or "<none>",
        log_file,
    )
    try:
        asyncio.run(_serve(config, project_dir))
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down")


if __name__ == "__main__":
    main()
