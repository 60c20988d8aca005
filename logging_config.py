from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Iterable, Sequence

from settings import get_settings

_DEFAULT_EXTRA_KEYS = (
    "region",
    "site_id",
    "lat",
    "lon",
    "sample_count",
    "retained_count",
    "reason",
    "status",
    "processing_ms",
    "error_count",
    "row_count",
)

# Coordinates are rendered at ~0.1 m resolution.
_FLOAT_PRECISION = 6

_configured = False


def _format_value(value: object) -> str:
    if isinstance(value, float):
        return f"{value:.{_FLOAT_PRECISION}f}"
    return str(value)


class ContextualFormatter(logging.Formatter):
    """Appends whitelisted ``extra=`` attributes as ``key=value`` pairs."""

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
        context = " ".join(
            f"{key}={_format_value(getattr(record, key))}"
            for key in self._extra_keys
            if getattr(record, key, None) is not None
        )
        if context:
            return f"{message} | {context}"
        return message


def configure_logging(level: str | int | None = None) -> None:
    """Configure application-wide logging with contextual formatting."""
    global _configured
    if _configured:
        return

    log_level = level if level is not None else get_settings().log_level

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "contextual": {
                    "()": "logging_config.ContextualFormatter",
                    "fmt": "%(asctime)sZ | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "style": "%",
                    "extra_keys": list(_DEFAULT_EXTRA_KEYS),
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "level": log_level,
                    "formatter": "contextual",
                }
            },
            "loggers": {
                "uvicorn.access": {"level": "WARNING"},
            },
            "root": {"handlers": ["default"], "level": log_level},
        }
    )

    _configured = True
