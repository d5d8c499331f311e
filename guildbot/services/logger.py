"""Structured logging service for the bot."""

import logging
import sys
from contextlib import AbstractContextManager
from pathlib import Path
from typing import Any, Optional

import structlog
from structlog.types import Processor

from guildbot.config import BotSettings, get_settings


def _renderers(log_format: str) -> list[Processor]:
    if log_format == "json":
        return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def setup_logging(config: Optional[BotSettings] = None) -> None:
    """Configure structlog and route stdlib logging at the same level.

    Args:
        config: Settings to use; defaults to the process settings
    """
    config = config or get_settings()
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
        *_renderers(config.log_format),
    ]

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger_factory = structlog.PrintLoggerFactory(file=log_path.open("a", encoding="utf-8"))
    else:
        logger_factory = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )

    # discord.py and SQLAlchemy log through the stdlib
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=log_level,
        stream=sys.stdout,
    )
    for name in ("discord", "discord.http", "discord.gateway"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if config.debug else logging.WARNING
    )


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a logger instance with the given name."""
    return structlog.get_logger(name)


def log_context(**context: Any) -> AbstractContextManager:
    """Attach ``guild_id``, ``command`` etc. to every log line inside the block."""
    return structlog.contextvars.bound_contextvars(**context)
