"""Candle builders and an in-memory candle store shared by the test modules."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from candlefix.models.candle import Candle, CandleKey
from candlefix.services.candle_repository import CandleRepository, StaleCandleError

T0 = datetime(2026, 2, 16, 10, 0, tzinfo=timezone.utc)
LOADED_AT = datetime(2026, 2, 16, 9, 0, tzinfo=timezone.utc)


def make_candle(
    created_at: datetime = T0,
    open: str = "100",
    high: Optional[str] = "110",
    low: Optional[str] = "90",
    close: str = "105",
    volume: str = "1",
    symbol: str = "BTC/USDT",
    interval: str = "1h",
    updated_at: Optional[datetime] = LOADED_AT,
) -> Candle:
    """Build a Candle from string prices without touching any store."""
    return Candle(
        symbol=symbol,
        interval=interval,
        created_at=created_at,
        updated_at=updated_at,
        open=Decimal(open),
        high=Decimal(high) if high is not None else None,
        low=Decimal(low) if low is not None else None,
        close=Decimal(close),
        volume=Decimal(volume),
    )


def continuous_series(count: int, start: datetime = T0, step: timedelta = timedelta(hours=1), **kwargs) -> list[Candle]:
    """``count`` candles whose open always equals the previous close."""
    candles = []
    price = Decimal("100")
    for i in range(count):
        close = price + Decimal("1.5")
        candles.append(
            make_candle(
                created_at=start + step * i,
                open=str(price),
                high=str(close + 1),
                low=str(price - 1),
                close=str(close),
                **kwargs,
            )
        )
        price = close
    return candles


class InMemoryCandleRepository(CandleRepository):
    """Dict-backed CandleRepository that records every mutation it receives."""

    def __init__(self) -> None:
        self.keyspaces: dict[str, dict[CandleKey, Candle]] = {}
        self.updates: list[tuple[str, Candle]] = []
        self.deletes: list[tuple[str, CandleKey]] = []
        self.fail_fetch: set[tuple[str, str, str]] = set()
        self.fail_list: set[str] = set()

    def add(self, keyspace: str, *candles: Candle) -> None:
        rows = self.keyspaces.setdefault(keyspace, {})
        for candle in candles:
            rows[candle.key] = candle.copy()

    def rows(self, keyspace: str, symbol: str = "BTC/USDT", interval: str = "1h") -> list[Candle]:
        return sorted(
            (c for k, c in self.keyspaces.get(keyspace, {}).items() if k.symbol == symbol and k.interval == interval),
            key=lambda c: c.created_at,
        )

    @property
    def mutation_count(self) -> int:
        return len(self.updates) + len(self.deletes)

    async def keyspace_exists(self, keyspace: str) -> bool:
        return keyspace in self.keyspaces

    async def list_symbols(self, keyspace: str) -> list[str]:
        if keyspace in self.fail_list:
            raise RuntimeError(f"cannot list {keyspace}")
        return list(dict.fromkeys(k.symbol for k in self.keyspaces[keyspace]))

    async def fetch_candles(self, keyspace: str, symbol: str, interval: str) -> list[Candle]:
        if (keyspace, symbol, interval) in self.fail_fetch:
            raise RuntimeError(f"fetch failed for {symbol} {interval}")
        return [
            c.copy()
            for k, c in self.keyspaces.get(keyspace, {}).items()
            if k.symbol == symbol and k.interval == interval
        ]

    async def update_candle(self, keyspace, candle, updated_at, expected_updated_at=None, conditional=False):
        rows = self.keyspaces[keyspace]
        stored = rows.get(candle.key)
        if conditional and (stored is None or stored.updated_at != expected_updated_at):
            raise StaleCandleError(candle.key, stored.updated_at if stored else None)
        written = candle.copy(updated_at=updated_at)
        rows[candle.key] = written
        self.updates.append((keyspace, written))

    async def delete_candle(self, keyspace, key):
        self.keyspaces[keyspace].pop(key, None)
        self.deletes.append((keyspace, key))
