import json
import logging
import traceback
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from uuid import UUID

from .context import get_log_context

SERVICE = "kwh-ledger"


def _encode(value: object) -> object:
    """Ledger values as JSON: kWh amounts keep their exact digits, ids and times become strings."""
    if isinstance(value, Decimal):
        return format(value, "f") if value.is_finite() else str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, bytes):
        return f"<{len(value)} bytes>"
    return repr(value)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        logger_name = record.name
        payload: dict[str, object] = {
            "ts": _encode(datetime.fromtimestamp(record.created, timezone.utc)),
            "service": SERVICE,
            "component": logger_name.split(".", 1)[1] if logger_name.startswith("kwh.") else logger_name,
            "level": record.levelname,
            "logger": logger_name,
            "msg": record.getMessage(),
        }
        payload.update(get_log_context())

        extra_fields = getattr(record, "extra_fields", None)
        if isinstance(extra_fields, dict):
            # Base fields are never overwritten by call-site extras.
            payload.update({key: value for key, value in extra_fields.items() if key not in payload})

        if record.exc_info:
            exc_type, exc_value, exc_tb = record.exc_info
            payload["exc_type"] = exc_type.__name__ if exc_type else "Exception"
            payload["exc_msg"] = str(exc_value) if exc_value else ""
            payload["stack"] = "".join(traceback.format_exception(exc_type, exc_value, exc_tb))

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=_encode)
