"""Structured logger setup shared across services and Lambdas."""

import logging
import os
from typing import Optional, Union

from pythonjsonlogger import jsonlogger

DEFAULT_LOG_LEVEL = "INFO"


def resolve_log_level(level: Optional[Union[str, int]] = None) -> int:
    """Explicit level, else ``LOG_LEVEL``, else INFO; unknown names fall back to INFO."""
    level = level if level is not None else os.environ.get("LOG_LEVEL", DEFAULT_LOG_LEVEL)
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def get_logger(name: str, level: Optional[Union[str, int]] = None) -> logging.Logger:
    """
    Configure a JSON logger once and reuse it.

    Structured fields go through ``extra`` so turn and batch context stays
    queryable in CloudWatch.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        if level is not None:
            logger.setLevel(resolve_log_level(level))
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "name": "logger"},
        )
    )
    logger.addHandler(handler)
    logger.setLevel(resolve_log_level(level))
    logger.propagate = False
    return logger
