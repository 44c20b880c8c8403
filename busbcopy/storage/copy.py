"""Copy a source onto a single device.

Image mode writes the source file raw onto the whole device with ``dd`` and,
when verification is on, reads it back and retries on a digest mismatch.
File-tree mode assumes the device is already partitioned and formatted and
mirrors the source directory onto its first partition with ``rsync``.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass
from typing import Optional

from busbcopy.config import settings
from busbcopy.domain.models import (
    CopyResult,
    Device,
    JobStatus,
    Source,
    SourceChecksum,
)
from busbcopy.logging import LoggerFactory

from .commands import run_cancellable, run_command
from .devices import require_valid_device
from .exceptions import (
    BusbcopyError,
    CommandError,
    CopyCancelledError,
    CopyOperationError,
    SourceNotReadableError,
)
from .mount import require_partition, temporary_mount
from .verification import ensure_checksum, verify_device

RSYNC_FLAGS = ("-qaAX", "--delete")


@dataclass(frozen=True)
class CopyOptions:
    verify: bool = False
    eject: bool = False
    max_retry: Optional[int] = None
    dd_block_size: Optional[str] = None
    poll_interval: Optional[float] = None

    def resolved_max_retry(self) -> int:
        if self.max_retry is not None:
            return self.max_retry
        return settings.get_int("dd_max_retry", settings.DEFAULT_DD_MAX_RETRY)

    def resolved_block_size(self) -> str:
        return self.dd_block_size or settings.get_setting(
            "dd_block_size", settings.DEFAULT_DD_BLOCK_SIZE
        )

    def resolved_poll_interval(self) -> float:
        if self.poll_interval is not None:
            return self.poll_interval
        return settings.get_float(
            "poll_interval_seconds", settings.DEFAULT_POLL_INTERVAL_SECONDS
        )


def copy_from_image(
    device: Device,
    source: Source,
    options: CopyOptions,
    checksum: Optional[SourceChecksum] = None,
    cancel_event: Optional[threading.Event] = None,
) -> int:
    """Write the image to ``device``; return the number of attempts used.

    Raises:
        SourceNotReadableError: If the image cannot be read
        CopyOperationError: If verification failed on every attempt
        CommandError: If ``dd`` itself fails
    """
    log = LoggerFactory.for_copy(device.path)
    if not os.access(source.path, os.R_OK):
        raise SourceNotReadableError(source.path)
    if options.verify and checksum is None:
        raise ValueError("verification requires a source checksum")

    max_retry = options.resolved_max_retry()
    command = [
        "dd",
        f"if={source.path}",
        f"of={device.path}",
        f"bs={options.resolved_block_size()}",
        "conv=fsync",
    ]
    for attempt in range(1, max_retry + 1):
        run_cancellable(command, cancel_event, options.resolved_poll_interval())
        if not options.verify:
            return attempt
        if verify_device(device, checksum):
            return attempt
        log.warning(f"Verification failed. Retrying {device.path} ...")
    raise CopyOperationError(f"Copying to {device.path} failed!", device=device.path)


def copy_from_files(
    device: Device,
    source: Source,
    options: CopyOptions,
    cancel_event: Optional[threading.Event] = None,
) -> int:
    """Mirror the source directory onto the device's first partition.

    Raises:
        PartitionNotFoundError: If the first partition node is missing
        MountFailedError: If the partition cannot be mounted
        CopyOperationError: If ``rsync`` fails
    """
    partition = require_partition(device.path)
    with temporary_mount(partition) as mountpoint:
        command = [
            "rsync",
            *RSYNC_FLAGS,
            f"{source.path.rstrip('/')}/",
            f"{mountpoint}/",
        ]
        try:
            run_cancellable(command, cancel_event, options.resolved_poll_interval())
        except CommandError as error:
            raise CopyOperationError(
                f"Rsync copy from {source.path} to {partition} failed!",
                device=device.path,
            ) from error
    return 1


def copy_to_device(
    device_path: str,
    source: Source,
    options: CopyOptions,
    checksum: Optional[SourceChecksum] = None,
    cancel_event: Optional[threading.Event] = None,
) -> CopyResult:
    """Validate, copy, optionally verify and eject a single device.

    Errors propagate to the caller; batch jobs wrap this with
    ``run_copy_job`` so one failing device never stops its siblings.
    """
    log = LoggerFactory.for_copy(device_path)
    device = require_valid_device(device_path)
    if options.verify:
        checksum = ensure_checksum(source, checksum)

    log.info(f"Copying to {device.path} ...")
    if source.is_image:
        attempts = copy_from_image(device, source, options, checksum, cancel_event)
    else:
        attempts = copy_from_files(device, source, options, cancel_event)

    if options.verify:
        log.success(f"Verified copy to {device.path} successful.")
    else:
        log.success(f"Copying to {device.path} successful.")

    if options.eject:
        run_command(["eject", device.path])
        log.info(f"Ejected {device.path}")

    return CopyResult(device=device.path, status=JobStatus.SUCCESS, attempts=attempts)


def run_copy_job(
    device_path: str,
    source: Source,
    options: CopyOptions,
    checksum: Optional[SourceChecksum] = None,
    cancel_event: Optional[threading.Event] = None,
) -> CopyResult:
    """Batch worker entry point; reports failures on the device instead of raising."""
    log = LoggerFactory.for_copy(device_path)
    try:
        return copy_to_device(device_path, source, options, checksum, cancel_event)
    except CopyCancelledError:
        log.warning(f"Copy to {device_path} cancelled; treat the device as untrusted")
        return CopyResult(device=device_path, status=JobStatus.CANCELLED)
    except BusbcopyError as error:
        log.error(str(error))
        return CopyResult(
            device=device_path, status=JobStatus.FAILED, message=str(error)
        )
    except Exception as error:
        log.exception(f"Unexpected error while copying to {device_path}: {error}")
        return CopyResult(
            device=device_path,
            status=JobStatus.FAILED,
            message=f"{type(error).__name__}: {error}",
        )
