"""Supported candle intervals and bucket-start normalization.

Every rule works in UTC. Minute and hour intervals truncate within the
enclosing hour/day, ``1d`` truncates to midnight, ``1w`` truncates to the
most recent Sunday midnight. ``3d`` is the exception: it is aligned to the
Unix epoch (multiples of 259200000 ms), not to any calendar boundary.
Historical rows were bucketed that way, so the rule must not change.
"""

from datetime import datetime, timedelta, timezone

INTERVALS: tuple[str, ...] = (
    "1m", "3m", "5m", "15m", "30m",
    "1h", "2h", "4h", "6h", "12h",
    "1d", "3d", "1w",
)

INTERVAL_TIMEDELTA: dict[str, timedelta] = {
    "1m": timedelta(minutes=1),
    "3m": timedelta(minutes=3),
    "5m": timedelta(minutes=5),
    "15m": timedelta(minutes=15),
    "30m": timedelta(minutes=30),
    "1h": timedelta(hours=1),
    "2h": timedelta(hours=2),
    "4h": timedelta(hours=4),
    "6h": timedelta(hours=6),
    "12h": timedelta(hours=12),
    "1d": timedelta(days=1),
    "3d": timedelta(days=3),
    "1w": timedelta(weeks=1),
}

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
THREE_DAYS_MS = 3 * 24 * 60 * 60 * 1000

_MINUTE_WIDTHS = {"3m": 3, "5m": 5, "15m": 15, "30m": 30}
_HOUR_WIDTHS = {"1h": 1, "2h": 2, "4h": 4, "6h": 6, "12h": 12}


def _to_utc(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def bucket_start(timestamp: datetime, interval: str) -> datetime:
    """Return the start of the ``interval`` bucket containing ``timestamp``.

    Naive datetimes are taken as UTC. The result is always UTC-aware.

    Raises:
        ValueError: ``interval`` is not one of INTERVALS.
    """
    ts = _to_utc(timestamp)

    if interval == "1m":
        return ts.replace(second=0, microsecond=0)

    if interval in _MINUTE_WIDTHS:
        width = _MINUTE_WIDTHS[interval]
        return ts.replace(minute=ts.minute // width * width, second=0, microsecond=0)

    if interval in _HOUR_WIDTHS:
        width = _HOUR_WIDTHS[interval]
        return ts.replace(hour=ts.hour // width * width, minute=0, second=0, microsecond=0)

    if interval == "1d":
        return ts.replace(hour=0, minute=0, second=0, microsecond=0)

    if interval == "3d":
        epoch_ms = (ts - EPOCH) // timedelta(milliseconds=1)
        return EPOCH + timedelta(milliseconds=epoch_ms // THREE_DAYS_MS * THREE_DAYS_MS)

    if interval == "1w":
        # Python weekday(): Monday=0 .. Sunday=6
        days_since_sunday = (ts.weekday() + 1) % 7
        day = ts.replace(hour=0, minute=0, second=0, microsecond=0)
        return day - timedelta(days=days_since_sunday)

    raise ValueError(f"Unknown interval: {interval}. Valid: {list(INTERVALS)}")
