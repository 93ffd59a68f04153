import math
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytz
from bson import ObjectId

from timetrack.config import settings
from timetrack.exceptions import ValidationError

UTC = timezone.utc
DATE_KEY_FORMAT = "%Y-%m-%d"


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    # Mongo hands back naive datetimes unless the client is tz_aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def day_key(moment: datetime, tz_name: str = None) -> str:
    """Calendar-day key of `moment` in the server's configured zone."""
    zone = pytz.timezone(tz_name or settings.TIMEZONE)
    return ensure_aware(moment).astimezone(zone).strftime(DATE_KEY_FORMAT)


def shift_day_key(key: str, days: int) -> str:
    return (datetime.strptime(key, DATE_KEY_FORMAT) + timedelta(days=days)).strftime(DATE_KEY_FORMAT)


def parse_day_key(value: Optional[str], field: str = "date") -> Optional[str]:
    if value is None or value == "":
        return None
    try:
        datetime.strptime(value, DATE_KEY_FORMAT)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}, expected YYYY-MM-DD")
    return value


def whole_seconds_between(start: datetime, end: datetime) -> int:
    """Floored seconds from `start` to `end`. Can be negative under clock skew."""
    return math.floor((ensure_aware(end) - ensure_aware(start)).total_seconds())


def format_time(seconds) -> str:
    if not seconds or not isinstance(seconds, (int, float)) or math.isnan(seconds):
        return "0h 0m 0s"
    seconds = int(seconds)
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    remaining_seconds = seconds % 60
    return f"{hours}h {minutes}m {remaining_seconds}s"


def format_hours_minutes(seconds) -> str:
    seconds = int(seconds or 0)
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def to_object_id(value: Any, message: str = "Invalid Project ID") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValidationError(message)
    return ObjectId(value)


def serialize_document(document: Any) -> Any:
    """Makes a Mongo document JSON friendly: ObjectIds to str, `_id` kept as `_id`."""
    if isinstance(document, dict):
        return {key: serialize_document(value) for key, value in document.items()}
    if isinstance(document, list):
        return [serialize_document(item) for item in document]
    if isinstance(document, ObjectId):
        return str(document)
    if isinstance(document, datetime):
        return ensure_aware(document).isoformat()
    return document
