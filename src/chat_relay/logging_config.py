"""Route stdlib ``logging`` records into the daily LogManager destination.

Usage:
    from chat_relay.logging_config import setup_logging

    setup_logging(log_manager)

Module code keeps using ``logging.getLogger(__name__)``; structured fields go
in ``extra={"meta": {...}}`` and are flattened into the JSON record.
"""

from __future__ import annotations

import logging

from .logs import LogManager

HANDLER_NAME = "_chat_relay_logmanager"

_LEVEL_NAMES = {
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


class LogManagerHandler(logging.Handler):
    """Appends each record to a LogManager as ``info``/``warn``/``error``."""

    def __init__(self, manager: LogManager, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.manager = manager

    def emit(self, record: logging.LogRecord) -> None:
        try:
            metadata = {"logger": record.name}
            meta = getattr(record, "meta", None)
            if isinstance(meta, dict):
                metadata.update(meta)
            if record.exc_info:
                metadata["exception"] = logging.Formatter().formatException(record.exc_info)
            self.manager.append(_LEVEL_NAMES.get(record.levelno, "info"), record.getMessage(), metadata)
        except Exception:
            self.handleError(record)


def setup_logging(manager: LogManager, level: str = "INFO") -> logging.Logger:
    """Attach a LogManagerHandler to the ``chat_relay`` logger.

    Calling it again swaps the handler onto the new manager instead of
    stacking a second one.
    """
    pkg_logger = logging.getLogger("chat_relay")
    pkg_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(pkg_logger.handlers):
        if getattr(handler, "name", None) == HANDLER_NAME:
            pkg_logger.removeHandler(handler)

    handler = LogManagerHandler(manager)
    handler.name = HANDLER_NAME
    pkg_logger.addHandler(handler)

    # Tame noisy third-party loggers
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)

    # Make uvicorn loggers propagate through root
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).propagate = True

    return pkg_logger
