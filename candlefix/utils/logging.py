"""Logging for the repair job.

Every log record goes to stderr through loguru; stdout carries nothing but
the final run summary, so the summary can be piped or captured on its own.
With ``json_output`` each record is a serialized JSON line for log
shipping. cassandra-driver logs through the standard ``logging`` module and
is bridged into loguru here.
"""

import logging
import sys

from loguru import logger

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

DRIVER_LOGGER = "cassandra"


class InterceptHandler(logging.Handler):
    """Forward stdlib records (driver host up/down, pool churn) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk out of the logging module so loguru reports the driver's frame
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _route_driver_logs(level: str) -> None:
    # The driver is chatty below WARNING; only pass that through at DEBUG
    driver = logging.getLogger(DRIVER_LOGGER)
    driver.handlers = [InterceptHandler()]
    driver.propagate = False
    driver.setLevel(logging.DEBUG if level == "DEBUG" else logging.WARNING)


def setup_logging(log_level: str = "INFO", json_output: bool = False) -> None:
    """Install the stderr sink and bridge stdlib logging into it.

    Args:
        log_level: Minimum level for the job's own messages.
        json_output: Serialize each record as JSON instead of the coloured
            console format.
    """
    level = log_level.upper()
    logger.remove()
    if json_output:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT, colorize=True)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    _route_driver_logs(level)
