"""
Logging for the driver.

Every module logs through ``get_logger(__name__)``:
  - catalog population, snapshot restore / write and cache eviction
  - statement parsing, AFM execution submits and result page fetches
  - backend transport failures and audit log write failures

One stdout handler per logger, level taken from ``AFMBRIDGE_LOG_LEVEL``
unless *level* is passed.
"""
from __future__ import annotations

import logging
import sys

from afmbridge.core.config import get_settings

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)
    level_name = (level or get_settings().log_level).upper()
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    return logger
