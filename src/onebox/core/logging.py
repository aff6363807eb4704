"""Logging configuration helpers."""

from __future__ import annotations

import logging.config
from typing import Any

from .config import LoggingSettings

# Third-party loggers that are chatty at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")

_PLAIN_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s %(message)s"
_STRUCTURED_FORMAT = (
    "ts={asctime} level={levelname} logger={name} thread={threadName} msg={message}"
)


def build_logging_config(settings: LoggingSettings) -> dict[str, Any]:
    """Return the ``dictConfig`` mapping for ``settings``.

    Worker threads are named after their account, so the thread name is part
    of every record.
    """
    if settings.structured:
        formatter: dict[str, Any] = {"format": _STRUCTURED_FORMAT, "style": "{"}
    else:
        formatter = {"format": _PLAIN_FORMAT}
    level = settings.level.upper()
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "default",
                "level": level,
            },
        },
        "loggers": {name: {"level": "WARNING"} for name in _NOISY_LOGGERS},
        "root": {"handlers": ["console"], "level": level},
    }


def configure_logging(settings: LoggingSettings) -> None:
    """Install the console handler described by ``settings``."""
    logging.config.dictConfig(build_logging_config(settings))


__all__ = ["build_logging_config", "configure_logging"]
