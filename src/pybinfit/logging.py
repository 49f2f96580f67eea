from __future__ import annotations

import logging
import logging.config
from logging import LogRecord
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler


class JobFilter(logging.Filter):
    """
    Attach the short module name and the worker thread to each record.

    Records emitted from the main thread get an empty ``jobThread`` so that
    only pipeline jobs running on the pool are tagged.
    """

    def filter(self, record: LogRecord) -> bool:
        record.filenameStem = Path(record.filename).stem
        record.jobThread = f"({record.threadName}) " if record.threadName.startswith("pybinfit") else ""
        return True


def rich_handler_factory() -> RichHandler:
    return RichHandler(
        console=Console(width=160),
        rich_tracebacks=True,
        markup=True,
    )


def logging_config(level: int | str = "INFO", log_file: str | Path | None = None) -> dict[str, Any]:
    """
    Build the :func:`logging.config.dictConfig` dictionary.

    Args:
        level: Level of the ``pybinfit`` logger.
        log_file: Also write every ``pybinfit`` record to this file.
    """
    handlers: dict[str, Any] = {
        "rich": {
            "()": rich_handler_factory,
            "formatter": "pretty",
            "filters": ["jobfilter"],
        },
    }
    package_handlers = []
    if log_file is not None:
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": str(log_file),
            "mode": "w",
            "formatter": "standard",
        }
        package_handlers.append("file")

    return {
        "version": 1,
        "disable_existing_loggers": True,
        "filters": {"jobfilter": {"()": JobFilter}},
        "formatters": {
            "standard": {"format": "%(asctime)s [%(levelname)s] %(threadName)s %(name)s: %(message)s"},
            "pretty": {"format": "[[yellow]%(filenameStem)s[/]] %(jobThread)s%(message)s"},
        },
        "handlers": handlers,
        "loggers": {
            "": {
                "handlers": ["rich"],
                "level": "WARNING",
                "propagate": False,
            },
            "pybinfit": {
                "handlers": package_handlers,
                "level": level,
                "propagate": True,
            },
        },
    }


def setup(level: int | str | None = None, log_file: str | Path | None = None) -> None:
    """
    Initialize logging for a fit.

    Args:
        level: Level of the ``pybinfit`` logger, ``INFO`` by default
            (``"DEBUG"`` shows per-job timing statistics).
        log_file: Optional file receiving a plain-text copy of the fit log.
    """
    logging.config.dictConfig(logging_config(level or "INFO", log_file))


__all__ = ("logging_config", "setup")
