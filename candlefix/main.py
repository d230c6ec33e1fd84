"""Process entry point: connect, repair both domains, print the summary, exit.

Exit codes:
    0    clean run
    1    could not connect to the store (nothing was changed)
    2    run finished but a domain or partition failed
    130  cancelled by SIGINT/SIGTERM
"""

import asyncio
import signal
import sys
from contextlib import suppress

from loguru import logger

from candlefix.config import Settings, get_settings
from candlefix.database import connect, create_cluster
from candlefix.schemas.report import RepairReport, render_report
from candlefix.services.candle_repository import ScyllaCandleRepository
from candlefix.services.repair_orchestrator import Domain, RepairOrchestrator
from candlefix.utils.logging import setup_logging

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2
EXIT_CANCELLED = 130


def domains_from_settings(settings: Settings) -> list[Domain]:
    return [
        Domain(name="Ecosystem", keyspace=settings.scylla_keyspace),
        Domain(name="Futures", keyspace=settings.scylla_futures_keyspace),
    ]


def exit_code(report: RepairReport) -> int:
    if report.cancelled:
        return EXIT_CANCELLED
    if report.has_errors:
        return EXIT_PARTIAL
    return EXIT_OK


STOP_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _request_stop(loop: asyncio.AbstractEventLoop, stop: asyncio.Event) -> None:
    """Set ``stop`` and hand both signals back to their default handlers.

    In-flight partitions finish; a second Ctrl-C interrupts immediately.
    """
    stop.set()
    logger.warning("Stop requested; finishing in-flight partitions (signal again to abort)")
    for sig in STOP_SIGNALS:
        with suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(sig)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in STOP_SIGNALS:
        # add_signal_handler is unavailable on Windows event loops
        with suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _request_stop, loop, stop)


async def run(settings: Settings) -> int:
    """Run the repair job once and return the process exit code."""
    setup_logging(settings.log_level, settings.log_json)

    logger.info(
        "Connecting to store | hosts={hosts} datacenter={dc}",
        hosts=settings.contact_points,
        dc=settings.scylla_datacenter,
    )
    cluster = create_cluster(settings)
    try:
        try:
            session = await asyncio.to_thread(connect, cluster)
        except Exception:
            logger.exception("Could not connect to store, aborting; no candles were modified")
            return EXIT_FATAL
        logger.info("Connected")

        repository = ScyllaCandleRepository(session, max_attempts=settings.repair_max_attempts)
        orchestrator = RepairOrchestrator(
            repository,
            domains_from_settings(settings),
            workers=settings.repair_workers,
            tolerance=settings.price_tolerance,
            conditional_writes=settings.repair_conditional_writes,
        )

        stop = asyncio.Event()
        _install_signal_handlers(stop)
        report = await orchestrator.run(stop)

        print(render_report(report))
        if settings.log_json:
            logger.info("repair report | {report}", report=report.model_dump_json())
        return exit_code(report)
    finally:
        try:
            await asyncio.to_thread(cluster.shutdown)
        except Exception:
            logger.warning("Cluster shutdown raised; ignoring")


def main() -> None:
    sys.exit(asyncio.run(run(get_settings())))


if __name__ == "__main__":
    main()
