"""Time bucket keys for minute/hour rollups.

Keys are ISO-like strings truncated to the start of their interval
(``YYYY-MM-DDTHH:MM:00`` / ``YYYY-MM-DDTHH:00:00``), so lexicographic order
is chronological order. Naive datetimes are treated as UTC.
"""
from datetime import datetime, timezone

MINUTE_FORMAT = "%Y-%m-%dT%H:%M:00"
HOUR_FORMAT = "%Y-%m-%dT%H:00:00"
DAY_FORMAT = "%Y-%m-%dT00:00:00"

MINUTES_PER_HOUR = 60
MINUTES_PER_DAY = 1440


def to_utc(t: datetime) -> datetime:
    """Normalise to a naive UTC datetime"""
    if t.tzinfo is not None:
        t = t.astimezone(timezone.utc).replace(tzinfo=None)
    return t


def minute_key(t: datetime) -> str:
    return to_utc(t).strftime(MINUTE_FORMAT)


def hour_key(t: datetime) -> str:
    return to_utc(t).strftime(HOUR_FORMAT)


def day_key(t: datetime) -> str:
    return to_utc(t).strftime(DAY_FORMAT)


def parse_key(key: str) -> datetime:
    """Parse a bucket key back into a naive UTC datetime"""
    return datetime.strptime(key[:19], "%Y-%m-%dT%H:%M:%S")


def bucket_start(key: str, bucket_minutes: int) -> str:
    """
    Truncate an existing bucket key to a wider bucket.

    Daily (or multi-day) widths align on calendar days; other widths align
    on multiples of ``bucket_minutes`` since the UTC epoch.
    """
    t = parse_key(key)
    if bucket_minutes >= MINUTES_PER_DAY and bucket_minutes % MINUTES_PER_DAY == 0:
        days = bucket_minutes // MINUTES_PER_DAY
        ordinal = t.toordinal()
        return datetime.fromordinal(ordinal - (ordinal - 1) % days).strftime(DAY_FORMAT)

    width = bucket_minutes * 60
    epoch = int(t.replace(tzinfo=timezone.utc).timestamp())
    floored = datetime.fromtimestamp(epoch - epoch % width, tz=timezone.utc)
    return floored.strftime(MINUTE_FORMAT)
