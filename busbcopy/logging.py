from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "BUSBCOPY_LOG_DIR",
        Path.home() / ".local" / "state" / "busbcopy" / "logs",
    )
)


def _poll_filter(show_poll: bool) -> Callable[[dict], bool]:
    """Filter device polling chatter - only show in TRACE mode."""

    def _should_log_poll(record) -> bool:
        tags = record["extra"].get("tags", [])
        if "poll" in tags and not show_poll:
            return record["level"].no >= logger.level("WARNING").no
        return True

    return _should_log_poll


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup console and file logging.

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug or --trace is enabled (3 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to ~/.local/state/busbcopy/logs)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    logger.add(
        sys.stderr,
        level=console_level,
        enqueue=True,
        backtrace=False,
        diagnose=False,
        filter=_poll_filter(trace),
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <8}</cyan> | "
            "<blue>{extra[job_id]: <10}</blue> | "
            "<level>{message}</level>"
        ),
    )

    log_dir = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <8} | "
            "{extra[job_id]: <10} | "
            "{message}"
        ),
    )

    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=False,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <8} | "
                "{extra[job_id]: <10} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        enqueue=True,
        serialize=True,
        format="{message}",
    )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking operations
        tags: Tags for filtering (e.g., ["copy", "usb"])
        source: Source component (e.g., "copy", "usb", "batch")
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Track a long-running operation with automatic timing.

    Logs start, completion and failure with the elapsed time.

    Example:
        with operation_context("round", round=2, devices=3) as log:
            log.debug("Launching jobs")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"
    log = logger.bind(source=operation, job_id=job_id, tags=[operation])
    start_time = time.time()
    log.debug(f"{operation.capitalize()} started", **details)
    try:
        yield log
    except BaseException as e:
        duration = time.time() - start_time
        log.debug(
            f"{operation.capitalize()} failed",
            error=str(e),
            error_type=type(e).__name__,
            duration_seconds=round(duration, 2),
        )
        raise
    duration = time.time() - start_time
    log.debug(
        f"{operation.capitalize()} completed", duration_seconds=round(duration, 2)
    )


class LoggerFactory:
    """Domain-specific loggers with source and tags pre-bound."""

    @staticmethod
    def for_copy(device: str, job_id: str | None = None) -> Logger:
        """Logger for a single device copy job."""
        if job_id is None:
            job_id = Path(device).name or device
        return get_logger(job_id=job_id, tags=["copy", "storage"], source="copy").bind(
            device=device
        )

    @staticmethod
    def for_usb() -> Logger:
        """Logger for USB device detection and validation."""
        return get_logger(tags=["usb", "hardware"], source="usb")

    @staticmethod
    def for_poll() -> Logger:
        """Logger for polling loops; kept off the console unless tracing."""
        return get_logger(tags=["batch", "poll"], source="batch")

    @staticmethod
    def for_verify() -> Logger:
        """Logger for checksum computation and comparison."""
        return get_logger(tags=["verify"], source="verify")

    @staticmethod
    def for_batch() -> Logger:
        """Logger for batch round orchestration."""
        return get_logger(tags=["batch"], source="batch")

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, commands, mounts)."""
        return get_logger(tags=["system"], source="system")
