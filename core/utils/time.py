"""
Time Utilities

Providers disagree on timestamp formats:
- Bybit: millisecond epoch strings (e.g., "1704110400000")
- Binance: millisecond epoch integers
- cTrader: millisecond epoch integers, sometimes seconds
- Stub/imported data: ISO-8601 strings

The helpers here normalize all of them into timezone-aware UTC datetimes, and
provide the millisecond clock used for request signing and token expiry.
"""

from datetime import datetime, timezone
from typing import Union

from dateutil import parser as dateparser


def to_utc_datetime(timestamp: Union[int, float]) -> datetime:
    """
    Convert a timestamp (seconds or milliseconds) to UTC datetime.

    Detection Logic:
        - If timestamp > 1e12 (1 trillion): Assumed to be milliseconds
        - Otherwise: Assumed to be seconds

    Raises:
        ValueError: If timestamp is negative or invalid

    Examples:
        >>> to_utc_datetime(1704110400000)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)

        >>> to_utc_datetime(1704110400)
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if timestamp < 0:
        raise ValueError(f"Timestamp cannot be negative: {timestamp}")

    if timestamp > 1e12:
        timestamp = timestamp / 1000.0

    try:
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    except (OSError, OverflowError, ValueError) as e:
        raise ValueError(f"Invalid timestamp: {timestamp}. Error: {e}")


def parse_timestamp(value: Union[int, float, str, datetime]) -> datetime:
    """
    Parse any provider timestamp representation into a UTC datetime.

    Accepts epoch numbers, numeric strings ("1704110400000") and ISO-8601
    strings. Naive datetimes are assumed to be UTC.

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp

    Examples:
        >>> parse_timestamp("1704110400000")
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)

        >>> parse_timestamp("2024-01-01T12:00:00Z")
        datetime.datetime(2024, 1, 1, 12, 0, tzinfo=datetime.timezone.utc)
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")
    elif isinstance(value, (int, float)):
        return to_utc_datetime(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Empty timestamp")
        try:
            return to_utc_datetime(float(text))
        except ValueError:
            pass
        try:
            dt = dateparser.isoparse(text)
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid timestamp: {value!r}. Error: {e}")
    else:
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def datetime_to_timestamp(dt: datetime, milliseconds: bool = False) -> int:
    """
    Convert a datetime object to Unix timestamp.

    Examples:
        >>> dt = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        >>> datetime_to_timestamp(dt)
        1704110400

        >>> datetime_to_timestamp(dt, milliseconds=True)
        1704110400000

    Notes:
        - If datetime is naive (no timezone), UTC is assumed
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    if milliseconds:
        return int(dt.timestamp() * 1000)
    return int(dt.timestamp())


def current_utc_timestamp(milliseconds: bool = False) -> int:
    """
    Get current UTC timestamp.

    Examples:
        >>> current_utc_timestamp(milliseconds=True)
        1704110400000
    """
    return datetime_to_timestamp(datetime.now(timezone.utc), milliseconds)


def now_ms() -> int:
    """Millisecond clock used for signing and token expiry."""
    return current_utc_timestamp(milliseconds=True)


def current_utc_datetime() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)
