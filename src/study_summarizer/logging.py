"""Logging configuration for the study summarizer.

Everything goes through structlog into stdlib handlers: a console handler
(colored in development, JSON otherwise) and an optional rotating JSON file.
Provider credentials must never reach a log line, so every event passes
through :func:`redact_secrets` before rendering.
"""

import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

from study_summarizer.config import Settings, get_settings

REDACTED = "[redacted]"

_SECRET_FIELDS = frozenset({"api_key", "authorization", "encryption_key", "plaintext", "secret"})
_SECRET_PATTERN = re.compile(r"(Bearer\s+)?\bsk-[A-Za-z0-9_-]{8,}")


def redact_secrets(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """structlog processor that blanks credential fields and key-like strings."""
    for name, value in event_dict.items():
        if name in _SECRET_FIELDS:
            event_dict[name] = REDACTED
        elif isinstance(value, str):
            event_dict[name] = _SECRET_PATTERN.sub(REDACTED, value)
    return event_dict


def _console_renderer(settings: Settings) -> Any:
    if settings.is_development:
        return structlog.dev.ConsoleRenderer(colors=True)
    return structlog.processors.JSONRenderer()


def _file_handler(settings: Settings, log_level: int) -> RotatingFileHandler | None:
    try:
        Path(settings.log_directory).mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=settings.log_file_path,
            maxBytes=settings.log_file_max_bytes,
            backupCount=settings.log_file_backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        # Fall back to console-only logging
        print(f"Warning: Could not setup file logging: {e}", file=sys.stderr)
        return None
    handler.setLevel(log_level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ]
        )
    )
    return handler


def setup_logging(level: str | None = None) -> None:
    """Configure structured logging with console and file outputs.

    Args:
        level: Overrides ``settings.log_level`` (e.g. ``"DEBUG"`` from the CLI).
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _console_renderer(settings),
            ]
        )
    )
    root.addHandler(console_handler)

    if settings.log_to_file:
        file_handler = _file_handler(settings, log_level)
        if file_handler is not None:
            root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Request bodies carry Authorization headers at DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
