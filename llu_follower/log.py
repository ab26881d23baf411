# -*- coding: utf-8 -*-

import logging
import re
import sys
from datetime import datetime
from typing import Optional, Tuple

LOGGER_NAME = "llu_follower"

_BEARER = re.compile(r"(Bearer\s+)([A-Za-z0-9._\-]{8})[A-Za-z0-9._\-]*")


def resolve_level(name: Optional[str]) -> Tuple[int, bool]:
    """Map a level name to its number. The flag is False for unknown names (INFO is used)."""
    level = logging.getLevelName((name or "").strip().upper())
    if isinstance(level, int):
        return level, True
    return logging.INFO, False


class FollowerFormatter(logging.Formatter):
    """
    Local-time timestamps in the configured zone (milliseconds) and bearer
    tokens cut down to their first characters, wherever they end up in a
    message.
    """

    def __init__(self, tz=None):
        super().__init__("%(asctime)s [%(levelname)s] %(message)s")
        self._tz = tz

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=self._tz)
        return dt.isoformat(sep=" ", timespec="milliseconds")

    def format(self, record):
        return _BEARER.sub(r"\1\2…", super().format(record))


def setup_logger(log_level: str, tz) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    level, known = resolve_level(log_level)
    logger.setLevel(level)
    logger.handlers.clear()
    logger.propagate = False

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(FollowerFormatter(tz))
    logger.addHandler(handler)

    if not known:
        logger.warning("unknown log level %r, using INFO", log_level)
    return logger
