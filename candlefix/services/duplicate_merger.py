"""Collapse candles that share one normalized bucket into a single row.

Pure logic, no I/O. The orchestrator decides what to write and delete.

Exports:
    MergeResult       -- canonical candle plus the rows to delete
    group_by_bucket   -- bucket a partition's rows by normalized start time
    merge             -- merge one bucket's rows
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from candlefix.models.candle import Candle
from candlefix.services.interval_calendar import bucket_start


@dataclass
class MergeResult:
    """Outcome of merging one bucket.

    ``canonical`` keeps the identity (createdAt) of the earliest row.
    ``discarded`` is empty when the bucket already held a single row.
    """

    canonical: Candle
    discarded: list[Candle] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.discarded)


def _max(a: Optional[Decimal], b: Optional[Decimal]) -> Optional[Decimal]:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def _min(a: Optional[Decimal], b: Optional[Decimal]) -> Optional[Decimal]:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def group_by_bucket(candles: Iterable[Candle], interval: str) -> dict[datetime, list[Candle]]:
    """Group candles by ``bucket_start(created_at, interval)``, preserving input order."""
    groups: dict[datetime, list[Candle]] = {}
    for candle in candles:
        groups.setdefault(bucket_start(candle.created_at, interval), []).append(candle)
    return groups


def merge(candles: list[Candle]) -> MergeResult:
    """Merge candles that all fall in one (symbol, interval, bucket).

    Rows are folded in createdAt order: high/low widen, close is taken from
    the latest row and volumes are summed. The earliest row's open is kept
    as-is; continuity is corrected in a later pass.

    Raises:
        ValueError: ``candles`` is empty.
    """
    if not candles:
        raise ValueError("merge() needs at least one candle")

    if len(candles) == 1:
        return MergeResult(canonical=candles[0])

    ordered = sorted(candles, key=lambda c: c.created_at)
    keeper = ordered[0]

    high = keeper.high
    low = keeper.low
    close = keeper.close
    volume = keeper.volume

    for row in ordered[1:]:
        high = _max(high, row.high)
        low = _min(low, row.low)
        close = row.close
        volume += row.volume

    canonical = keeper.copy(high=high, low=low, close=close, volume=volume)
    return MergeResult(canonical=canonical, discarded=ordered[1:])
