from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

_LEVEL = logging.INFO


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    logger.setLevel(_LEVEL)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    return logger


def set_level(level: int) -> None:
    """Level for intuneinv loggers, both existing and created later."""
    global _LEVEL
    _LEVEL = level
    for name, logger in logging.Logger.manager.loggerDict.items():
        if isinstance(logger, logging.Logger) and name.startswith("intuneinv"):
            logger.setLevel(level)


def log_event(logger: logging.Logger, event: str, **fields: Any) -> None:
    payload: Dict[str, Any] = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    payload.update(fields)
    logger.info(json.dumps(payload, default=str))
