"""Candle store access: the repository interface and its Scylla adapter.

The repair logic only ever talks to ``CandleRepository``. The Scylla
adapter issues CQL through cassandra-driver, which is a blocking client,
so every call runs in a worker thread and is wrapped in a tenacity retry
for transient coordinator errors (timeouts, unavailable replicas).

Exports:
    CandleRepository        -- abstract store interface
    ScyllaCandleRepository  -- cassandra-driver implementation
    StaleCandleError        -- conditional update lost to a concurrent writer
    TRANSIENT_ERRORS        -- exception types retried before giving up
"""

from __future__ import annotations

import asyncio
import re
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from cassandra import OperationTimedOut, ReadTimeout, Unavailable, WriteTimeout
from cassandra.cluster import NoHostAvailable, Session
from loguru import logger
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from candlefix.models.candle import Candle, CandleKey
from candlefix.services.interval_calendar import EPOCH

TRANSIENT_ERRORS = (OperationTimedOut, ReadTimeout, WriteTimeout, Unavailable, NoHostAvailable)

_KEYSPACE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9_]{0,47}$")

_PRICE_COLUMNS = ("open", "high", "low", "close", "volume")


class StaleCandleError(RuntimeError):
    """A conditional update was rejected because updatedAt moved since the read."""

    def __init__(self, key: CandleKey, current_updated_at: Optional[datetime] = None) -> None:
        self.key = key
        self.current_updated_at = current_updated_at
        super().__init__(
            f"candle {key.symbol}/{key.interval}@{key.created_at.isoformat()} "
            f"was modified concurrently (updatedAt now {current_updated_at})"
        )


class CandleRepository(ABC):
    """Narrow view of the candle store needed by the repair job."""

    @abstractmethod
    async def keyspace_exists(self, keyspace: str) -> bool:
        ...

    @abstractmethod
    async def list_symbols(self, keyspace: str) -> list[str]:
        ...

    @abstractmethod
    async def fetch_candles(self, keyspace: str, symbol: str, interval: str) -> list[Candle]:
        ...

    @abstractmethod
    async def update_candle(
        self,
        keyspace: str,
        candle: Candle,
        updated_at: datetime,
        expected_updated_at: Optional[datetime] = None,
        conditional: bool = False,
    ) -> None:
        """Write open/high/low/close/volume/updatedAt for ``candle.key``.

        When ``conditional`` is set the write only applies if the stored
        updatedAt still equals ``expected_updated_at``; otherwise
        StaleCandleError is raised.
        """

    @abstractmethod
    async def delete_candle(self, keyspace: str, key: CandleKey) -> None:
        ...


def _validate_keyspace(keyspace: str) -> str:
    # Keyspace names are interpolated into CQL text, so only plain identifiers pass
    if not _KEYSPACE_RE.match(keyspace):
        raise ValueError(f"Invalid keyspace name: {keyspace!r}")
    return keyspace


def _coerce_price(value: Optional[Decimal], cql_type: Any) -> Any:
    """Convert a Decimal to what the bound column expects (text, float or decimal)."""
    if value is None:
        return None
    typename = getattr(cql_type, "typename", "decimal")
    if typename in ("text", "varchar", "ascii"):
        return str(value)
    if typename in ("double", "float"):
        return float(value)
    return value


def _same_millisecond(stored: datetime, written: datetime) -> bool:
    """Compare a read-back timestamp column with the value we bound to it.

    CQL timestamps keep millisecond precision and come back naive UTC.
    """

    def millis(value: datetime) -> int:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return (value - EPOCH) // timedelta(milliseconds=1)

    return millis(stored) == millis(written)


class ScyllaCandleRepository(CandleRepository):
    """CandleRepository over the ``candles`` table of each keyspace.

    Args:
        session: Connected cassandra-driver Session (thread-safe, pooled).
        max_attempts: Tries per statement for TRANSIENT_ERRORS.
        retry_multiplier: Exponential backoff multiplier in seconds.
    """

    def __init__(self, session: Session, max_attempts: int = 3, retry_multiplier: float = 0.5) -> None:
        self.session = session
        self._prepared: dict[tuple[str, str], Any] = {}
        self._retrying = Retrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=retry_multiplier, max=10),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            before_sleep=self._log_retry,
            reraise=True,
        )

    @staticmethod
    def _log_retry(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Transient store error, retrying | attempt={attempt} error={error}",
            attempt=retry_state.attempt_number,
            error=f"{type(exc).__name__}: {exc}",
        )

    # ------------------------------------------------------------------
    # Statement helpers (blocking; run in a worker thread)
    # ------------------------------------------------------------------

    def _retry(self, fn, *args):
        # Fresh controller per call; statements run concurrently on worker threads
        return self._retrying.copy()(fn, *args)

    def _prepare(self, keyspace: str, name: str, cql: str) -> Any:
        cache_key = (keyspace, name)
        statement = self._prepared.get(cache_key)
        if statement is None:
            statement = self._retry(self.session.prepare, cql)
            self._prepared[cache_key] = statement
        return statement

    def _execute(self, statement: Any, params: Optional[list] = None) -> Any:
        return self._retry(self.session.execute, statement, params)

    def _fetch_all(self, statement: Any, params: Optional[list] = None) -> list:
        # Materialize every page inside the retry so a timeout mid-paging restarts the read
        return self._retry(lambda: list(self.session.execute(statement, params)))

    def _price_types(self, statement: Any) -> dict[str, Any]:
        columns = getattr(statement, "column_metadata", None) or []
        return {col.name: col.type for col in columns if col.name in _PRICE_COLUMNS}

    # ------------------------------------------------------------------
    # Blocking implementations
    # ------------------------------------------------------------------

    def _keyspace_exists(self, keyspace: str) -> bool:
        statement = self._prepare(
            "system_schema",
            "keyspace_exists",
            "SELECT keyspace_name FROM system_schema.keyspaces WHERE keyspace_name = ?",
        )
        return bool(self._fetch_all(statement, [keyspace]))

    def _list_symbols(self, keyspace: str) -> list[str]:
        ks = _validate_keyspace(keyspace)
        rows = self._fetch_all(f"SELECT DISTINCT symbol FROM {ks}.candles")
        return list(dict.fromkeys(row.symbol for row in rows))

    def _fetch_candles(self, keyspace: str, symbol: str, interval: str) -> list[Candle]:
        ks = _validate_keyspace(keyspace)
        statement = self._prepare(
            ks,
            "fetch",
            'SELECT symbol, interval, "createdAt", "updatedAt", open, high, low, close, volume '
            f"FROM {ks}.candles WHERE symbol = ? AND interval = ?",
        )
        rows = self._fetch_all(statement, [symbol, interval])
        return [Candle.from_row(row) for row in rows]

    def _update_candle(
        self,
        keyspace: str,
        candle: Candle,
        updated_at: datetime,
        expected_updated_at: Optional[datetime],
        conditional: bool,
    ) -> None:
        ks = _validate_keyspace(keyspace)
        cql = (
            f"UPDATE {ks}.candles "
            'SET open = ?, high = ?, low = ?, close = ?, volume = ?, "updatedAt" = ? '
            'WHERE symbol = ? AND interval = ? AND "createdAt" = ?'
        )
        name = "update"
        if conditional:
            cql += ' IF "updatedAt" = ?'
            name = "update_if"
        statement = self._prepare(ks, name, cql)
        types = self._price_types(statement)

        params = [
            _coerce_price(candle.open, types.get("open")),
            _coerce_price(candle.high, types.get("high")),
            _coerce_price(candle.low, types.get("low")),
            _coerce_price(candle.close, types.get("close")),
            _coerce_price(candle.volume, types.get("volume")),
            updated_at,
            candle.symbol,
            candle.interval,
            candle.created_at,
        ]
        if conditional:
            params.append(expected_updated_at)

        result = self._execute(statement, params)

        if conditional and not result.was_applied:
            current = None
            row = result.one()
            if row is not None:
                current = getattr(row, "updatedAt", None)
            if current is not None and _same_millisecond(current, updated_at):
                # A timed-out attempt landed and the retry saw our own stamp
                logger.debug(
                    "Conditional update already applied by an earlier attempt | key={key}",
                    key=candle.key,
                )
                return
            raise StaleCandleError(candle.key, current)

    def _delete_candle(self, keyspace: str, key: CandleKey) -> None:
        ks = _validate_keyspace(keyspace)
        statement = self._prepare(
            ks,
            "delete",
            f'DELETE FROM {ks}.candles WHERE symbol = ? AND interval = ? AND "createdAt" = ?',
        )
        self._execute(statement, [key.symbol, key.interval, key.created_at])

    # ------------------------------------------------------------------
    # CandleRepository
    # ------------------------------------------------------------------

    async def keyspace_exists(self, keyspace: str) -> bool:
        return await asyncio.to_thread(self._keyspace_exists, keyspace)

    async def list_symbols(self, keyspace: str) -> list[str]:
        return await asyncio.to_thread(self._list_symbols, keyspace)

    async def fetch_candles(self, keyspace: str, symbol: str, interval: str) -> list[Candle]:
        return await asyncio.to_thread(self._fetch_candles, keyspace, symbol, interval)

    async def update_candle(
        self,
        keyspace: str,
        candle: Candle,
        updated_at: datetime,
        expected_updated_at: Optional[datetime] = None,
        conditional: bool = False,
    ) -> None:
        await asyncio.to_thread(
            self._update_candle, keyspace, candle, updated_at, expected_updated_at, conditional
        )

    async def delete_candle(self, keyspace: str, key: CandleKey) -> None:
        await asyncio.to_thread(self._delete_candle, keyspace, key)
