# Overview: Package-wide logging setup attached to the Flask app factory.

from __future__ import annotations

import logging
import sys

from flask import Flask


LOGGER_NAME = "tradeledger"
LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(app: Flask) -> logging.Logger:
    """
    Configure the `tradeledger` logger with a console handler.

    Service modules log through `logging.getLogger(__name__)`, so every
    record propagates here. Safe to call once per created app; the handler
    is installed only once per process.
    """
    logger = logging.getLogger(LOGGER_NAME)
    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)

    if not any(getattr(h, "_tradeledger_handler", False) for h in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT))
        handler._tradeledger_handler = True
        logger.addHandler(handler)

    return logger
