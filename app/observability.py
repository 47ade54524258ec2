from __future__ import annotations

import json
import logging
from typing import Any, Dict

_LEVELS = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _compact(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


def log_event(logger: logging.Logger, level: str, event: str, *, exc_info: bool = False, **fields: Any) -> None:
    """Emit one structured line on the caller's logger: the event name followed by its JSON fields."""
    payload = {"event": event, **_compact(fields)}
    logger.log(
        _LEVELS.get(level, logging.INFO),
        json.dumps(payload, default=str, sort_keys=True),
        exc_info=exc_info,
    )
