"""Batch copy rounds.

Each round walks the same sequence::

    DETECT -> CONFIRM -> COPY -> AWAIT_COMPLETION -> AWAIT_REMOVAL -> (next round)

The operator confirms the device list before anything is written, one copy
job runs per device, and the next round starts only after the operator has
swapped media. AWAIT_REMOVAL is skipped when devices are ejected after
copying.

All run state lives on ``BatchContext``: the cached source checksum is
computed before any job is submitted and is read-only afterwards, and the
cancellation token is shared by every job in flight.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from busbcopy.config import settings
from busbcopy.domain.models import (
    BatchRound,
    CopyJob,
    Device,
    JobStatus,
    Source,
    SourceChecksum,
)
from busbcopy.logging import LoggerFactory, operation_context
from busbcopy.storage import devices
from busbcopy.storage.commands import run_command
from busbcopy.storage.copy import CopyOptions, run_copy_job
from busbcopy.storage.exceptions import InsufficientDevicesError, UserAbortError
from busbcopy.storage.verification import compute_source_checksum

CONFIRM_PROMPT = "Press ENTER to confirm..."

log = LoggerFactory.for_batch()
poll_log = LoggerFactory.for_poll()


def _default_prompt(message: str) -> str:
    return input(message)


@dataclass
class BatchContext:
    source: Source
    options: CopyOptions = field(default_factory=CopyOptions)
    poll_interval: Optional[float] = None
    checksum: Optional[SourceChecksum] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    current_round: Optional[BatchRound] = None
    rounds_completed: int = 0
    prompt: Callable[[str], str] = _default_prompt
    sleep: Callable[[float], None] = time.sleep
    list_devices: Callable[[], list[Device]] = devices.validated_usb_storage

    def resolved_poll_interval(self) -> float:
        if self.poll_interval is not None:
            return self.poll_interval
        return settings.get_float(
            "poll_interval_seconds", settings.DEFAULT_POLL_INTERVAL_SECONDS
        )


class BatchOrchestrator:
    def __init__(self, context: BatchContext):
        self.context = context
        self._executor: Optional[ThreadPoolExecutor] = None

    # -- phases ---------------------------------------------------------------

    def detect(self, min_count: int) -> list[Device]:
        """Re-enumerate devices; refuse the round if too few are attached."""
        found = self.context.list_devices()
        if len(found) < min_count:
            raise InsufficientDevicesError(len(found), min_count)
        return found

    def confirm(self, found: list[Device]) -> None:
        log.info(f"Detected {len(found)} USB storage device(s):")
        for device in found:
            log.opt(colors=True).info(f"  <yellow>{device.format_label()}</yellow>")
        self.context.prompt(CONFIRM_PROMPT)

    def launch(self, found: list[Device]) -> list[CopyJob]:
        self._executor = ThreadPoolExecutor(
            max_workers=max(len(found), 1), thread_name_prefix="busbcopy-job"
        )
        jobs = []
        for device in found:
            future = self._executor.submit(
                run_copy_job,
                device.path,
                self.context.source,
                self.context.options,
                self.context.checksum,
                self.context.cancel_event,
            )
            jobs.append(CopyJob(device=device, future=future))
        return jobs

    def await_completion(self, jobs: list[CopyJob]) -> None:
        """Block until every job has exited; job outcomes are only reported."""
        interval = self.context.resolved_poll_interval()
        while not all(job.done for job in jobs):
            poll_log.debug(
                f"{sum(1 for job in jobs if not job.done)} job(s) still running"
            )
            self.context.sleep(interval)
        self._shutdown_executor()
        run_command(["sync"])

    def await_removal(self) -> None:
        log.info("Please remove all USB storage devices ...")
        interval = self.context.resolved_poll_interval()
        while self.context.list_devices():
            poll_log.debug("Waiting for devices to be removed")
            self.context.sleep(interval)
        log.info("All devices removed.")

    # -- driver ---------------------------------------------------------------

    def run_round(self, number: int, min_count: int) -> BatchRound:
        found = self.detect(min_count)
        batch_round = BatchRound(number=number, devices=found)
        self.context.current_round = batch_round
        self.confirm(found)

        with operation_context("round", round=number, devices=len(found)):
            batch_round.started_at = datetime.now()
            log.info(f"Start time: {batch_round.started_at:%c}")
            batch_round.jobs = self.launch(found)
            self.await_completion(batch_round.jobs)
            batch_round.finished_at = datetime.now()
            log.info(f"Finish time: {batch_round.finished_at:%c}")
        self._log_summary(batch_round)

        if not self.context.options.eject:
            self.await_removal()
        self.context.rounds_completed += 1
        return batch_round

    def run(self, min_count: int = 1, max_rounds: Optional[int] = None) -> None:
        """Copy rounds until interrupted (or ``max_rounds`` have completed).

        Raises:
            InsufficientDevicesError: If a round detects fewer than ``min_count``
            UserAbortError: On keyboard interrupt
        """
        log.info("Batch copy mode starting ...")
        try:
            if self.context.options.verify:
                self.context.checksum = compute_source_checksum(self.context.source)
            number = 0
            while True:
                number += 1
                self.run_round(number, min_count)
                if max_rounds is not None and number >= max_rounds:
                    break
                log.info("Please insert next batch of USB storage devices.")
                self.context.prompt(CONFIRM_PROMPT)
        except (KeyboardInterrupt, EOFError) as interrupt:
            self.cancel()
            log.warning("User aborted!")
            raise UserAbortError() from interrupt
        finally:
            self._shutdown_executor()

    def cancel(self) -> None:
        """Signal every running job to terminate its child process and wait."""
        self.context.cancel_event.set()
        self._shutdown_executor()

    # -- helpers --------------------------------------------------------------

    def _shutdown_executor(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None

    def _log_summary(self, batch_round: BatchRound) -> None:
        succeeded = batch_round.count(JobStatus.SUCCESS)
        failed = batch_round.count(JobStatus.FAILED)
        cancelled = batch_round.count(JobStatus.CANCELLED)
        message = (
            f"Round {batch_round.number}: {succeeded} succeeded, "
            f"{failed} failed, {cancelled} cancelled"
        )
        if failed or cancelled:
            log.warning(message)
        else:
            log.info(message)
