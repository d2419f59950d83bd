"""
Tolerant value helpers for upstream JSON whose shape nobody documents.

Numbers arrive as ints, floats or strings depending on the endpoint and the
week; timestamps arrive as ISO strings, epoch seconds or epoch milliseconds.
"""

import logging
import re
from datetime import datetime, timezone

log = logging.getLogger(__name__)

_ISO_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",   # 2026-02-03T04:05:06.789Z
    "%Y-%m-%dT%H:%M:%S%z",      # 2026-02-03T04:05:06Z
)
# strptime's %f stops at microseconds; some APIs send nanoseconds
_LONG_FRACTION = re.compile(r"(\.\d{6})\d+")


def to_float(value) -> float | None:
    """Coerce an int, float or numeric string; anything else is None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def as_dict(value) -> dict:
    """value if it is a JSON object, else an empty one."""
    return value if isinstance(value, dict) else {}


def as_list(value) -> list:
    return value if isinstance(value, list) else []


def _parse_iso(text: str) -> datetime | None:
    s = _LONG_FRACTION.sub(r"\1", text.strip())
    for fmt in _ISO_FORMATS:
        try:
            dt = datetime.strptime(s, fmt)
        except ValueError:
            continue
        return dt.astimezone(timezone.utc)
    # naive ISO strings: treat as UTC
    for fmt in ("%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%dT%H:%M:%S"):
        try:
            return datetime.strptime(s, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def _from_epoch(seconds: float) -> datetime | None:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def parse_timestamp(value) -> datetime | None:
    """Decode a reset/billing timestamp into an aware UTC datetime.

    Tried in order: ISO-8601 with fractional seconds, ISO-8601 without,
    Unix epoch seconds, Unix epoch milliseconds. A number too large to be
    epoch seconds falls through to milliseconds. Bare YYYY-MM-DD dates are
    accepted as a last resort.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, str):
        dt = _parse_iso(value)
        if dt is not None:
            return dt

    number = to_float(value)
    if number is not None:
        dt = _from_epoch(number)
        if dt is not None:
            return dt
        dt = _from_epoch(number / 1000)
        if dt is not None:
            return dt

    if isinstance(value, str):
        try:
            return datetime.strptime(value.strip(), "%Y-%m-%d").replace(tzinfo=timezone.utc)
        except ValueError:
            pass

    log.debug("unrecognised timestamp %r", value)
    return None
