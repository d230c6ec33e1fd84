"""OHLCV candle entity as stored in the `candles` table of each keyspace."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, NamedTuple, Optional

# Maximum |open - previous close| still considered continuous.
PRICE_TOLERANCE = Decimal("1e-10")


class CandleDataError(ValueError):
    """A stored row carries a price or volume that cannot be parsed."""


class CandleKey(NamedTuple):
    """Full row identity: partition key (symbol, interval) plus clustering key."""

    symbol: str
    interval: str
    created_at: datetime


def _as_utc(value: datetime) -> datetime:
    # The driver hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_decimal(value: Any, field: str, *, nullable: bool = False) -> Optional[Decimal]:
    if value is None:
        if nullable:
            return None
        raise CandleDataError(f"{field} is null")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise CandleDataError(f"{field} is not numeric: {value!r}") from exc
    if not result.is_finite():
        raise CandleDataError(f"{field} is not finite: {value!r}")
    return result


@dataclass
class Candle:
    """One candle row.

    ``created_at`` is the clustering key and never changes for a stored row.
    ``high``/``low`` may be missing on rows written by a partial producer;
    ``volume`` is always present (NULL reads as zero).
    """

    symbol: str
    interval: str
    created_at: datetime
    updated_at: Optional[datetime]
    open: Decimal
    high: Optional[Decimal]
    low: Optional[Decimal]
    close: Decimal
    volume: Decimal = Decimal(0)

    @classmethod
    def from_row(cls, row: Any) -> "Candle":
        """Build a Candle from a driver row (attribute access, camelCase columns).

        Raises:
            CandleDataError: a price is null, unparsable or not finite.
        """
        created_at = getattr(row, "createdAt")
        if created_at is None:
            raise CandleDataError("createdAt is null")
        updated_at = getattr(row, "updatedAt", None)
        volume = _to_decimal(getattr(row, "volume", None), "volume", nullable=True)
        if volume is not None and volume < 0:
            raise CandleDataError(f"volume is negative: {volume}")

        return cls(
            symbol=row.symbol,
            interval=row.interval,
            created_at=_as_utc(created_at),
            updated_at=_as_utc(updated_at) if updated_at is not None else None,
            open=_to_decimal(row.open, "open"),
            high=_to_decimal(row.high, "high", nullable=True),
            low=_to_decimal(row.low, "low", nullable=True),
            close=_to_decimal(row.close, "close"),
            volume=volume if volume is not None else Decimal(0),
        )

    @property
    def key(self) -> CandleKey:
        return CandleKey(self.symbol, self.interval, self.created_at)

    def copy(self, **changes: Any) -> "Candle":
        """Return a new Candle with ``changes`` applied."""
        return dataclasses.replace(self, **changes)

    def is_well_formed(self) -> bool:
        """True when low <= open <= high and low <= close <= high."""
        if self.high is None or self.low is None:
            return False
        return (
            self.low <= self.open <= self.high
            and self.low <= self.close <= self.high
        )
