"""Logging bootstrap for the flashsum controller."""
from __future__ import annotations

import logging
from logging.config import dictConfig
from pathlib import Path
from typing import Optional

LOG_FILENAME = "flashsum-controller.log"
LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)-7s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def configure_logging(level: str = "INFO", log_dir: Optional[Path] = None, retention_days: int = 14) -> None:
    """Console plus ``flashsum-controller.log``, rotated at UTC midnight.

    Event timing matters when reading these logs, so timestamps carry
    milliseconds.
    """
    if log_dir is None:
        log_dir = Path(__file__).resolve().parents[2] / "logs"
    log_dir = Path(log_dir).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "flashsum",
            "level": level,
        },
        "session_file": {
            "class": "logging.handlers.TimedRotatingFileHandler",
            "formatter": "flashsum",
            "level": level,
            "filename": str(log_dir / LOG_FILENAME),
            "when": "midnight",
            "backupCount": max(int(retention_days), 1),
            "utc": True,
            "delay": True,
            "encoding": "utf-8",
        },
    }
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"flashsum": {"format": LOG_FORMAT, "datefmt": DATE_FORMAT}},
            "handlers": handlers,
            "loggers": {
                # Per-request transport chatter stays out of the session log.
                "httpx": {"level": "WARNING"},
                "httpcore": {"level": "WARNING"},
                "websockets": {"level": "WARNING"},
                "uvicorn.access": {"level": "WARNING"},
            },
            "root": {"level": level, "handlers": list(handlers)},
        }
    )
    logging.getLogger(__name__).debug("Logging configured (level=%s, file=%s)", level, log_dir / LOG_FILENAME)


__all__ = ["LOG_FILENAME", "configure_logging"]
