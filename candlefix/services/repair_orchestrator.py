"""Repair job driver: domains -> symbols -> intervals.

Each (domain, symbol, interval) partition is an independent unit of work.
Units go onto an asyncio queue drained by a bounded set of workers; every
unit is enqueued exactly once, so no partition is touched by two workers.
A unit returns a PartitionResult and the orchestrator folds those into
per-domain DomainStats. No counters are shared between workers.

Failures are contained at the narrowest boundary that makes sense:
    - a partition error is logged and recorded with whatever it had already
      applied, and the next unit runs
    - a domain error (keyspace check or symbol listing) zeroes that domain
      and the next domain still runs

Exports:
    Domain, WorkUnit, PartitionStatus, PartitionResult, PartitionProgress,
    DomainStats, PartitionPlan, plan_partition, RepairOrchestrator
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from loguru import logger

from candlefix.models.candle import PRICE_TOLERANCE, Candle
from candlefix.schemas.report import RepairReport
from candlefix.services import continuity_repairer, duplicate_merger
from candlefix.services.candle_repository import CandleRepository
from candlefix.services.continuity_repairer import OpenCorrection
from candlefix.services.duplicate_merger import MergeResult
from candlefix.services.interval_calendar import INTERVALS


@dataclass(frozen=True)
class Domain:
    """A market domain and the keyspace backing it."""

    name: str
    keyspace: str


@dataclass(frozen=True)
class WorkUnit:
    domain: Domain
    symbol: str
    interval: str


class PartitionStatus(str, enum.Enum):
    EMPTY = "empty"
    CLEAN = "clean"
    REPAIRED = "repaired"
    FAILED = "failed"


class DomainStatus(str, enum.Enum):
    OK = "ok"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class PartitionResult:
    unit: WorkUnit
    status: PartitionStatus
    scanned: int = 0
    duplicates_removed: int = 0
    open_fixed: int = 0
    error: Optional[str] = None


@dataclass
class PartitionProgress:
    """Mutations applied so far in one partition; survives a mid-partition failure."""

    scanned: int = 0
    duplicates_removed: int = 0
    open_fixed: int = 0

    def result(self, unit: WorkUnit, status: PartitionStatus, error: Optional[str] = None) -> PartitionResult:
        return PartitionResult(
            unit,
            status,
            scanned=self.scanned,
            duplicates_removed=self.duplicates_removed,
            open_fixed=self.open_fixed,
            error=error,
        )


@dataclass(frozen=True)
class DomainStats:
    """Accumulated outcome for one domain. Combine with ``fold``."""

    domain: Domain
    status: DomainStatus = DomainStatus.OK
    scanned: int = 0
    duplicates_removed: int = 0
    open_fixed: int = 0
    partitions_processed: int = 0
    partitions_empty: int = 0
    partitions_skipped: int = 0
    failures: tuple[PartitionResult, ...] = ()
    error: Optional[str] = None

    def fold(self, result: PartitionResult) -> "DomainStats":
        """Return a new DomainStats with ``result`` added."""
        failures = self.failures
        if result.status is PartitionStatus.FAILED:
            failures = failures + (result,)
        return dataclasses.replace(
            self,
            scanned=self.scanned + result.scanned,
            duplicates_removed=self.duplicates_removed + result.duplicates_removed,
            open_fixed=self.open_fixed + result.open_fixed,
            partitions_processed=self.partitions_processed + 1,
            partitions_empty=self.partitions_empty + (1 if result.status is PartitionStatus.EMPTY else 0),
            failures=failures,
        )


@dataclass
class PartitionPlan:
    """Writes and deletes needed to repair one partition, computed without I/O.

    ``writes`` holds each changed row once (merged and/or open-corrected),
    ordered by createdAt. ``deletes`` holds the surplus duplicate rows.
    """

    scanned: int
    merges: list[MergeResult] = field(default_factory=list)
    corrections: list[OpenCorrection] = field(default_factory=list)
    writes: list[Candle] = field(default_factory=list)
    deletes: list[Candle] = field(default_factory=list)
    series: list[Candle] = field(default_factory=list)

    @property
    def is_noop(self) -> bool:
        return not self.writes and not self.deletes


def plan_partition(
    candles: Sequence[Candle],
    interval: str,
    tolerance: Decimal = PRICE_TOLERANCE,
) -> PartitionPlan:
    """Merge duplicates then repair continuity for one (symbol, interval).

    Returns the final series (one row per bucket, ascending) and the
    minimal set of row writes and deletes that produces it.
    """
    groups = duplicate_merger.group_by_bucket(candles, interval)

    merges: list[MergeResult] = []
    canonical_by_bucket: dict[datetime, Candle] = {}
    for bucket in sorted(groups):
        result = duplicate_merger.merge(groups[bucket])
        canonical_by_bucket[bucket] = result.canonical
        if result.changed:
            merges.append(result)

    ordered = [canonical_by_bucket[bucket] for bucket in sorted(canonical_by_bucket)]
    continuity = continuity_repairer.repair(ordered, tolerance)

    dirty = {m.canonical.key for m in merges}
    dirty.update(c.candle.key for c in continuity.corrections)
    writes = [c for c in continuity.series if c.key in dirty]
    deletes = [row for m in merges for row in m.discarded]

    return PartitionPlan(
        scanned=len(candles),
        merges=merges,
        corrections=continuity.corrections,
        writes=writes,
        deletes=deletes,
        series=continuity.series,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RepairOrchestrator:
    """Run duplicate merge and continuity repair over every partition.

    Args:
        repository: Store access.
        domains: Domains to process, in order.
        intervals: Intervals to scan per symbol.
        workers: Size of the partition worker pool (>= 1).
        tolerance: Continuity tolerance passed to the repairer.
        conditional_writes: Guard updates with the updatedAt read earlier.
        clock: Source of the updatedAt stamp written on corrected rows.
    """

    def __init__(
        self,
        repository: CandleRepository,
        domains: Sequence[Domain],
        intervals: Sequence[str] = INTERVALS,
        workers: int = 1,
        tolerance: Decimal = PRICE_TOLERANCE,
        conditional_writes: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.repository = repository
        self.domains = list(domains)
        self.intervals = list(intervals)
        self.workers = workers
        self.tolerance = tolerance
        self.conditional_writes = conditional_writes
        self.clock = clock

    async def run(self, stop: Optional[asyncio.Event] = None) -> RepairReport:
        """Process every domain and return the combined report.

        ``stop`` is checked between partitions; once set, no new partition
        starts and the report is flagged as cancelled.
        """
        if stop is None:
            stop = asyncio.Event()
        started_at = self.clock()
        stats: list[DomainStats] = []

        for domain in self.domains:
            if stop.is_set():
                stats.append(DomainStats(domain, status=DomainStatus.CANCELLED))
                continue
            logger.info(
                "Processing domain | domain={domain} keyspace={keyspace}",
                domain=domain.name,
                keyspace=domain.keyspace,
            )
            stats.append(await self.process_domain(domain, stop))

        if stop.is_set():
            logger.warning("Repair cancelled before all partitions were processed")

        return RepairReport.build(
            stats,
            cancelled=stop.is_set(),
            started_at=started_at,
            finished_at=self.clock(),
        )

    async def process_domain(self, domain: Domain, stop: asyncio.Event) -> DomainStats:
        base = DomainStats(domain)
        try:
            if not await self.repository.keyspace_exists(domain.keyspace):
                logger.info(
                    "Keyspace does not exist, skipping | domain={domain} keyspace={keyspace}",
                    domain=domain.name,
                    keyspace=domain.keyspace,
                )
                return dataclasses.replace(base, status=DomainStatus.SKIPPED)

            symbols = await self.repository.list_symbols(domain.keyspace)
        except Exception as exc:
            logger.exception(
                "Domain failed before processing | domain={domain} keyspace={keyspace}",
                domain=domain.name,
                keyspace=domain.keyspace,
            )
            return dataclasses.replace(
                base, status=DomainStatus.FAILED, error=f"{type(exc).__name__}: {exc}"
            )

        logger.info(
            "Found {count} unique symbols | domain={domain}",
            count=len(symbols),
            domain=domain.name,
        )

        units = [WorkUnit(domain, symbol, interval) for symbol in symbols for interval in self.intervals]
        results = await self._drain(units, stop)

        stats = base
        for result in results:
            stats = stats.fold(result)
        stats = dataclasses.replace(stats, partitions_skipped=len(units) - len(results))

        logger.info(
            "Domain complete | domain={domain} scanned={scanned} duplicates_removed={dups} "
            "open_fixed={fixed} failed_partitions={failed}",
            domain=domain.name,
            scanned=stats.scanned,
            dups=stats.duplicates_removed,
            fixed=stats.open_fixed,
            failed=len(stats.failures),
        )
        return stats

    async def _drain(self, units: list[WorkUnit], stop: asyncio.Event) -> list[PartitionResult]:
        queue: asyncio.Queue[WorkUnit] = asyncio.Queue()
        for unit in units:
            queue.put_nowait(unit)

        results: list[PartitionResult] = []

        async def worker() -> None:
            while not stop.is_set():
                try:
                    unit = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                results.append(await self._process_unit(unit))

        await asyncio.gather(*(worker() for _ in range(min(self.workers, len(units)) or 1)))
        return results

    async def _process_unit(self, unit: WorkUnit) -> PartitionResult:
        progress = PartitionProgress()
        try:
            return await self.process_partition(unit, progress)
        except Exception as exc:
            logger.exception(
                "Partition failed | domain={domain} keyspace={keyspace} symbol={symbol} interval={interval} "
                "applied_deletes={dups} applied_fixes={fixed}",
                domain=unit.domain.name,
                keyspace=unit.domain.keyspace,
                symbol=unit.symbol,
                interval=unit.interval,
                dups=progress.duplicates_removed,
                fixed=progress.open_fixed,
            )
            return progress.result(unit, PartitionStatus.FAILED, error=f"{type(exc).__name__}: {exc}")

    async def process_partition(
        self, unit: WorkUnit, progress: Optional[PartitionProgress] = None
    ) -> PartitionResult:
        """Fetch, plan and apply the repair for one partition.

        Each merge group is settled on its own: the canonical row is written
        and only then are that group's duplicates deleted. Rows that only
        needed an open correction are written afterwards. A failed write leaves
        every earlier group fully merged and every later one untouched, so
        a re-run does not fold the same duplicate volume in twice.

        ``progress`` is updated as mutations land so the caller can report
        what was applied even if a later statement fails.
        """
        if progress is None:
            progress = PartitionProgress()
        keyspace = unit.domain.keyspace
        candles = await self.repository.fetch_candles(keyspace, unit.symbol, unit.interval)
        if not candles:
            return progress.result(unit, PartitionStatus.EMPTY)

        plan = plan_partition(candles, unit.interval, self.tolerance)
        progress.scanned = plan.scanned
        if plan.is_noop:
            return progress.result(unit, PartitionStatus.CLEAN)

        for correction in plan.corrections:
            logger.info(
                "Fixing open | symbol={symbol} interval={interval} at={at} open={old} -> {new}",
                symbol=unit.symbol,
                interval=unit.interval,
                at=correction.candle.created_at.isoformat(),
                old=correction.previous_open,
                new=correction.candle.open,
            )

        updated_at = self.clock()
        corrected = {c.candle.key for c in plan.corrections}
        final = {c.key: c for c in plan.writes}

        async def write(candle: Candle) -> None:
            await self.repository.update_candle(
                keyspace,
                candle,
                updated_at=updated_at,
                expected_updated_at=candle.updated_at,
                conditional=self.conditional_writes,
            )
            if candle.key in corrected:
                progress.open_fixed += 1

        for merged in plan.merges:
            logger.info(
                "Found {count} duplicates | symbol={symbol} interval={interval} bucket={bucket}",
                count=len(merged.discarded) + 1,
                symbol=unit.symbol,
                interval=unit.interval,
                bucket=merged.canonical.created_at.isoformat(),
            )
            await write(final.pop(merged.canonical.key))
            for row in merged.discarded:
                await self.repository.delete_candle(keyspace, row.key)
                progress.duplicates_removed += 1
                logger.info(
                    "Deleted duplicate | symbol={symbol} interval={interval} created_at={created_at}",
                    symbol=unit.symbol,
                    interval=unit.interval,
                    created_at=row.created_at.isoformat(),
                )

        for candle in final.values():
            await write(candle)

        logger.info(
            "Partition repaired | domain={domain} symbol={symbol} interval={interval} "
            "duplicates_removed={dups} open_fixed={fixed} scanned={scanned}",
            domain=unit.domain.name,
            symbol=unit.symbol,
            interval=unit.interval,
            dups=progress.duplicates_removed,
            fixed=progress.open_fixed,
            scanned=progress.scanned,
        )
        return progress.result(unit, PartitionStatus.REPAIRED)
