"""
Logging for the volsmile package.

Library modules take their logger from get_logger(__name__) and never
configure output themselves: the package root carries a NullHandler, so
importing volsmile stays silent. The CLI (main.py) calls
configure_logging once per run to send records to stderr.

Loggers used:
    volsmile                    - package root, configured here
    volsmile.normalizer         - dropped and unsolvable quotes, summary counts
    volsmile.grouping           - undersized expiry groups
    volsmile.svi_calibration    - LM exit status, per-expiry fit, skipped groups
    volsmile.pipeline           - eligible group counts, saved results
    volsmile.result_store       - file writes
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

ROOT_LOGGER_NAME = "volsmile"
_NULL_HANDLER = logging.NullHandler()


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Named logger with a NullHandler attached (once).

    Parameters
    ----------
    name : dotted logger name, normally the caller's __name__
    """
    logger = logging.getLogger(name)
    has_null = any(isinstance(h, logging.NullHandler) for h in logger.handlers)
    if not has_null:
        logger.addHandler(_NULL_HANDLER)
    return logger


def configure_logging(
    level: int = logging.INFO,
    *,
    handlers: Optional[Iterable[logging.Handler]] = None,
    format_string: Optional[str] = None,
) -> None:
    """
    Route the package's log records to real handlers.

    Parameters
    ----------
    level : threshold set on the "volsmile" root logger
    handlers : handlers to attach (default: one stderr StreamHandler)
    format_string : logging.Formatter pattern applied to each handler;
        handlers keep their own formatter when omitted
    """
    root = get_logger(ROOT_LOGGER_NAME)
    root.setLevel(level)

    if handlers is None:
        handlers = [logging.StreamHandler()]
    for handler in handlers:
        if format_string:
            handler.setFormatter(logging.Formatter(format_string))
        root.addHandler(handler)


__all__ = ["ROOT_LOGGER_NAME", "configure_logging", "get_logger"]
