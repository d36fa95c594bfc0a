"""
Service entry point.

Runs the device-facing HTTP server (uvicorn) and the operator Telegram bot
(long polling) on one asyncio loop, sharing a single AppContext.

Usage:
    python -m task_controller.service --config config.yaml
    maa-tgbot --port 8080 --telegram-bot-token ... --telegram-user-id ...
"""

import argparse
import asyncio
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import List, Optional

import uvicorn
from telegram import Update

from operator_bot.bot import build_application, register_commands

from . import SERVICE_NAME, __version__
from .config import Settings, load_settings
from .context import AppContext
from .errors import ConfigError
from .main import create_app

logger = logging.getLogger("task_controller")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_NAME = "maa-tgbot.log"


# -----------------------------------------------------------------------------
# Logging Configuration
# -----------------------------------------------------------------------------
def configure_logging(log_level: str = "INFO", logging_dir: Optional[Path] = None) -> None:
    """Console logging always; a daily-rotated log file when a directory is given."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if logging_dir is not None:
        try:
            logging_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.TimedRotatingFileHandler(
                logging_dir / LOG_FILE_NAME, when="midnight", encoding="utf-8"
            )
        except PermissionError:
            logger.warning(f"Cannot write logs to {logging_dir}, console only")
        else:
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)
            logger.info(f"Logging to: {logging_dir}")

    # python-telegram-bot logs every getUpdates call through httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)


# -----------------------------------------------------------------------------
# Command Line
# -----------------------------------------------------------------------------
def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=SERVICE_NAME)
    parser.add_argument("--config", type=Path, help="YAML config file")
    parser.add_argument("--host")
    parser.add_argument("--port", type=int)
    parser.add_argument("--telegram-bot-token")
    parser.add_argument("--telegram-user-id", type=int)
    parser.add_argument("--log-level")
    return parser.parse_args(argv)


# -----------------------------------------------------------------------------
# Runtime
# -----------------------------------------------------------------------------
async def serve(settings: Settings) -> None:
    """Run HTTP server and bot until the server exits."""
    context = AppContext.from_settings(settings)
    application = build_application(settings.telegram_bot_token, context)
    app = create_app(context)

    server = uvicorn.Server(uvicorn.Config(
        app, host=settings.host, port=settings.port, log_config=None
    ))

    async with application:
        await register_commands(application)
        await application.start()
        await application.updater.start_polling(allowed_updates=Update.ALL_TYPES)
        logger.info("Bot started. Polling for updates...")
        try:
            await server.serve()
        finally:
            await application.updater.stop()
            await application.stop()


def main(argv: Optional[List[str]] = None) -> None:
    """Start the service."""
    args = parse_args(argv)

    try:
        settings = load_settings(
            config_file=args.config,
            overrides={
                "host": args.host,
                "port": args.port,
                "telegram_bot_token": args.telegram_bot_token,
                "telegram_user_id": args.telegram_user_id,
                "log_level": args.log_level,
            },
        )
    except ConfigError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        sys.exit(2)

    configure_logging(settings.log_level, settings.logging_dir)

    logger.info(f"Starting {SERVICE_NAME} v{__version__}")
    logger.info(f"Listening on {settings.host}:{settings.port}")
    if settings.allowed_devices is not None:
        logger.info(f"Allow-list active: {len(settings.allowed_devices)} device(s)")

    try:
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
