"""Loguru sinks and bound loggers for deployment runs.

Every record carries three extras: ``source`` (the component that logged it),
``job_id`` (one id per deployment, ``-`` outside of one) and ``tags``.
"""

from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

LOG_DIR_ENV = "WIM_DEPLOYER_LOG_DIR"

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[source]: <8}</cyan> | "
    "{message}"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[source]: <8} | {extra[job_id]: <16} | {message}"
)
DEBUG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[source]: <8} | {extra[job_id]: <16} | {extra[tags]} | "
    "{name}:{line} | {message}"
)


def default_log_dir() -> Path:
    """Log directory from WIM_DEPLOYER_LOG_DIR, else under the user's state dir."""
    override = os.environ.get(LOG_DIR_ENV)
    if override:
        return Path(override)
    return Path.home() / ".local" / "state" / "wim-deployer" / "logs"


def _should_log_progress(record) -> bool:
    """Drop DEBUG-level progress records; the throttled INFO ones are enough."""
    if "progress" not in record["extra"].get("tags", []):
        return True
    return record["level"].no != logger.level("DEBUG").no


def setup_logging(*, debug: bool = False, log_dir: Path | None = None) -> Logger:
    """
    Replace all sinks with the ones used by a deployment run.

    Sinks:
    - stderr: INFO+ (DEBUG+ with debug); stdout stays free for "Done."
    - deploy.log: INFO+ events, rotated at 5 MB, kept 14 days
    - debug.log: DEBUG+ events with call sites, only with debug, kept 3 days
    - deploy.jsonl: serialized INFO+ records, kept 14 days

    Args:
        debug: Log external commands and their output
        log_dir: Directory for the log files (default: default_log_dir())
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "app"})

    logger.add(
        sys.stderr,
        level="DEBUG" if debug else "INFO",
        format=CONSOLE_FORMAT,
        filter=_should_log_progress,
        colorize=sys.stderr.isatty(),
        backtrace=False,
        diagnose=False,
    )

    log_dir = Path(log_dir) if log_dir else default_log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.add(
        log_dir / "deploy.log",
        level="INFO",
        format=FILE_FORMAT,
        rotation="5 MB",
        retention="14 days",
        compression="zip",
        backtrace=False,
        diagnose=False,
    )
    if debug:
        logger.add(
            log_dir / "debug.log",
            level="DEBUG",
            format=DEBUG_FORMAT,
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            backtrace=True,
            diagnose=True,
        )
    logger.add(
        log_dir / "deploy.jsonl",
        level="INFO",
        serialize=True,
        rotation="10 MB",
        retention="14 days",
        compression="zip",
    )
    return logger


@contextmanager
def operation_context(operation: str, job_id: str | None = None, **details):
    """
    Log the start, end and duration of an operation.

    Every record logged inside the block, through any logger, carries the
    job id. Exceptions are logged with their type and re-raised unchanged.

    Example:
        with operation_context("deploy", disk=1, style="GPT") as log:
            log.debug("Allocating drive letters")
    """
    job_id = job_id or f"{operation}-{uuid.uuid4().hex[:8]}"
    title = operation.capitalize()

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        log = logger.bind(source=operation, job_id=job_id, tags=[operation])
        started = time.monotonic()
        log.info(f"{title} started", **details)
        try:
            yield log
        except Exception as error:
            log.error(
                f"{title} failed",
                error=str(error),
                error_type=type(error).__name__,
                duration_seconds=round(time.monotonic() - started, 2),
            )
            raise
        log.success(
            f"{title} completed",
            duration_seconds=round(time.monotonic() - started, 2),
        )


class LoggerFactory:
    """Per-component loggers; each binds its source and tags."""

    @staticmethod
    def for_storage() -> Logger:
        """Disk clearing, partitioning, formatting and safety checks."""
        return logger.bind(source="storage", tags=["storage", "disk"])

    @staticmethod
    def for_image() -> Logger:
        return logger.bind(source="image", tags=["image", "dism"])

    @staticmethod
    def for_boot() -> Logger:
        return logger.bind(source="boot", tags=["boot", "bcdboot"])

    @staticmethod
    def for_system() -> Logger:
        """Startup, external commands and drive letter queries."""
        return logger.bind(source="system", tags=["system"])


class ThrottledLogger:
    """Emit at most one record per key every ``interval`` seconds.

    DISM prints several progress lines per second; only some reach the logs.
    """

    def __init__(self, log: Logger, interval_seconds: float = 5.0):
        self.log = log
        self.interval = interval_seconds
        self.last_log_time: dict[str, float] = {}

    def info(self, key: str, message: str, **kwargs) -> None:
        self._emit("INFO", key, message, **kwargs)

    def _emit(self, level: str, key: str, message: str, **kwargs) -> None:
        now = time.time()
        if now - self.last_log_time.get(key, 0) < self.interval:
            return
        self.log.log(level, message, **kwargs)
        self.last_log_time[key] = now
