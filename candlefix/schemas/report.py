"""Pydantic schemas for the repair run summary, plus its text rendering."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from pydantic import BaseModel

if TYPE_CHECKING:
    from candlefix.services.repair_orchestrator import DomainStats

CACHE_RESTART_NOTICE = (
    "IMPORTANT: Restart the backend (or invalidate every candle cache) now. "
    "Long-lived consumers may still hold the pre-repair candles in memory."
)


class PartitionFailure(BaseModel):
    symbol: str
    interval: str
    error: str


class RepairTotals(BaseModel):
    scanned: int = 0
    duplicates_removed: int = 0
    open_fixed: int = 0


class DomainReport(BaseModel):
    """Outcome for one domain.

    ``status`` is ``ok`` when the keyspace was scanned, ``skipped`` when it
    does not exist, ``cancelled`` when the run was stopped before the domain
    started and ``failed`` when the keyspace could not be listed. Counts are
    zero unless status is ``ok``.
    """

    name: str
    keyspace: str
    status: str
    scanned: int = 0
    duplicates_removed: int = 0
    open_fixed: int = 0
    partitions_processed: int = 0
    partitions_empty: int = 0
    partitions_skipped: int = 0
    failed_partitions: list[PartitionFailure] = []
    error: Optional[str] = None

    @classmethod
    def from_stats(cls, stats: "DomainStats") -> "DomainReport":
        return cls(
            name=stats.domain.name,
            keyspace=stats.domain.keyspace,
            status=stats.status.value,
            scanned=stats.scanned,
            duplicates_removed=stats.duplicates_removed,
            open_fixed=stats.open_fixed,
            partitions_processed=stats.partitions_processed,
            partitions_empty=stats.partitions_empty,
            partitions_skipped=stats.partitions_skipped,
            failed_partitions=[
                PartitionFailure(
                    symbol=f.unit.symbol,
                    interval=f.unit.interval,
                    error=f.error or "unknown error",
                )
                for f in stats.failures
            ],
            error=stats.error,
        )

    @property
    def has_errors(self) -> bool:
        return self.status == "failed" or bool(self.failed_partitions)


class RepairReport(BaseModel):
    domains: list[DomainReport]
    totals: RepairTotals
    cancelled: bool = False
    started_at: datetime
    finished_at: datetime

    @classmethod
    def build(
        cls,
        stats: Iterable["DomainStats"],
        *,
        cancelled: bool,
        started_at: datetime,
        finished_at: datetime,
    ) -> "RepairReport":
        domains = [DomainReport.from_stats(s) for s in stats]
        totals = RepairTotals(
            scanned=sum(d.scanned for d in domains),
            duplicates_removed=sum(d.duplicates_removed for d in domains),
            open_fixed=sum(d.open_fixed for d in domains),
        )
        return cls(
            domains=domains,
            totals=totals,
            cancelled=cancelled,
            started_at=started_at,
            finished_at=finished_at,
        )

    @property
    def has_errors(self) -> bool:
        return any(d.has_errors for d in self.domains)

    def domain(self, name: str) -> DomainReport:
        for d in self.domains:
            if d.name == name:
                return d
        raise KeyError(name)


def render_report(report: RepairReport) -> str:
    """Human-readable summary: one block per domain, a TOTAL block, the cache notice."""
    rule = "=" * 60
    lines = [rule, "FIX COMPLETE - SUMMARY" if not report.cancelled else "FIX CANCELLED - PARTIAL SUMMARY", rule, ""]

    for d in report.domains:
        lines.append(f"{d.name.upper()} ({d.keyspace}):")
        if d.status == "skipped":
            lines.append("  Skipped (keyspace does not exist)")
        elif d.status == "cancelled":
            lines.append("  Not started (run cancelled)")
        elif d.status == "failed":
            lines.append(f"  ERROR, domain skipped: {d.error}")
        lines.append(f"  Scanned: {d.scanned} candles")
        lines.append(f"  Duplicates removed: {d.duplicates_removed}")
        lines.append(f"  Open prices fixed: {d.open_fixed}")
        if d.status == "ok":
            lines.append(
                f"  Partitions: {d.partitions_processed} processed, "
                f"{d.partitions_empty} empty, {len(d.failed_partitions)} failed"
                + (f", {d.partitions_skipped} not started" if d.partitions_skipped else "")
            )
        for failure in d.failed_partitions:
            lines.append(f"    FAILED {failure.symbol} {failure.interval}: {failure.error}")
        lines.append("")

    lines.append("TOTAL:")
    lines.append(f"  Scanned: {report.totals.scanned} candles")
    lines.append(f"  Duplicates removed: {report.totals.duplicates_removed}")
    lines.append(f"  Open prices fixed: {report.totals.open_fixed}")
    lines.append("")
    if report.has_errors:
        lines.append("Run finished with errors; re-run the failed partitions listed above.")
    lines.append(CACHE_RESTART_NOTICE)
    return "\n".join(lines)
