import logging
import sys
from typing import Optional

from .json_formatter import JSONFormatter

LOGGER_NAME = "kwh"
_CONFIGURED_ATTR = "_kwh_json_logging"


def _parse_level(raw: str) -> int:
    return getattr(logging, raw.strip().upper(), logging.INFO)


def configure_logging(level: str = "INFO", stream: Optional[object] = None) -> logging.Logger:
    """Attach a JSON stdout handler to the ``kwh`` logger; safe to call repeatedly."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_parse_level(level))
    logger.propagate = False

    if not any(getattr(handler, _CONFIGURED_ATTR, False) for handler in logger.handlers):
        handler = logging.StreamHandler(stream=stream or sys.stdout)
        handler.setFormatter(JSONFormatter())
        setattr(handler, _CONFIGURED_ATTR, True)
        logger.addHandler(handler)

    return logger
