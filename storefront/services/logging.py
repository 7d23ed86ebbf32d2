import json
import logging
from datetime import datetime
from decimal import Decimal


_logger = logging.getLogger("storefront")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _default(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return repr(value)


def log_event(level: str, event: str, **fields) -> None:
    payload = {
        "ts": datetime.utcnow().isoformat() + "Z",
        "level": level.lower(),
        "event": event,
    }
    payload.update(fields or {})
    _logger.log(_LEVELS.get(level.lower(), logging.INFO), json.dumps(payload, ensure_ascii=False, default=_default))
