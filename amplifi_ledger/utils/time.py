from __future__ import annotations

import time
from datetime import timezone

from dateutil import parser


def now_unix() -> int:
    return int(time.time())


def parse_timestamp(value: str | int | float | None) -> int | None:
    """Accept unix seconds or an ISO-8601 string; naive datetimes are UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    if text.lstrip("-").isdigit():
        return int(text)
    try:
        parsed = parser.isoparse(text)
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())

