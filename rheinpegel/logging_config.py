from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any, Iterable, Sequence

_DEFAULT_EXTRA_KEYS = (
    "attempt",
    "url",
    "status",
    "kind",
    "level_cm",
    "tier",
    "entries",
    "reason",
)

_configured = False


class ContextualFormatter(logging.Formatter):

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        extra_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self._extra_keys: Sequence[str] = tuple(extra_keys or _DEFAULT_EXTRA_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context_parts: list[str] = []
        for key in self._extra_keys:
            if not hasattr(record, key):
                continue
            value = getattr(record, key, None)
            if value is None:
                continue
            context_parts.append(f"{key}={value}")
        if context_parts:
            return f"{message} | {' '.join(context_parts)}"
        return message


def configure_logging(
    level: str | int = "INFO",
    log_file: str | None = None,
    force: bool = False,
) -> None:
    """
    Configure application-wide logging with contextual formatting.

    Logs go to stderr unless `log_file` is given; the curses TUI passes a
    file so log lines do not tear the screen.
    """
    global _configured
    if _configured and not force:
        return

    if isinstance(level, str):
        level = level.upper()
        if not isinstance(logging.getLevelName(level), int):
            level = "INFO"

    handler: dict[str, Any]
    if log_file:
        handler = {
            "class": "logging.FileHandler",
            "filename": log_file,
            "encoding": "utf-8",
            "level": level,
            "formatter": "contextual",
        }
    else:
        handler = {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "contextual",
        }

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "contextual": {
                    "()": "rheinpegel.logging_config.ContextualFormatter",
                    "fmt": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "style": "%",
                    "extra_keys": list(_DEFAULT_EXTRA_KEYS),
                }
            },
            "handlers": {"default": handler},
            "root": {"handlers": ["default"], "level": level},
        }
    )

    _configured = True
