"""Structured logging configuration using structlog.

JSON output in production, colored console output in development. Ingestion
binds the block height to the context so every entry emitted while a block
is processed can be traced back to it.

Usage:
    from marketplace_indexer.logging_config import setup_logging, get_logger
    setup_logging()                      # level and format from Settings
    logger = get_logger(__name__)
    logger.info("ingest.block_started", logs=4)
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

# Event keys that may hold key material; never rendered.
SECRET_KEYS = frozenset({"session_key", "wrapping_key", "private_key", "secret"})

_NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "asyncio", "httpx", "httpcore", "web3")


def _hide_secrets(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    for key in SECRET_KEYS & event_dict.keys():
        event_dict[key] = "<redacted>"
    return event_dict


def _hex_bytes(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Raw payloads and hashes are logged as 0x-hex, not as bytes reprs."""
    for key, value in event_dict.items():
        if isinstance(value, bytes | bytearray | memoryview):
            event_dict[key] = "0x" + bytes(value).hex()
    return event_dict


def setup_logging(log_level: str | None = None, json_logs: bool | None = None) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        log_level: Standard Python log level string. Defaults to
            ``Settings.app_log_level``.
        json_logs: JSON lines if True, colored console if False. Defaults to
            ``Settings.app_json_logs``.
    """
    if log_level is None or json_logs is None:
        from marketplace_indexer.config import get_settings

        settings = get_settings()
        log_level = log_level or settings.app_log_level
        json_logs = settings.app_json_logs if json_logs is None else json_logs

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _hide_secrets,
        _hex_bytes,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    renderer: structlog.types.Processor
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.DEBUG))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger, usually ``get_logger(__name__)``."""
    return structlog.get_logger(name)
