"""External utility execution.

Every interaction with the system goes through this module: device size
queries, raw copies, file syncs, digests, mounts and ejects. Failures are
raised as ``CommandError`` so the caller can report the failing command and
its exit code.
"""

from __future__ import annotations

import shutil
import subprocess
import threading
from typing import IO, Iterable, Optional, Sequence

from busbcopy.logging import LoggerFactory

from .exceptions import CommandError, CopyCancelledError, MissingToolError

REQUIRED_TOOLS = ("blockdev", "dd", "rsync", "openssl", "eject", "mount", "umount", "sync")
TERMINATE_GRACE_SECONDS = 5.0

log = LoggerFactory.for_system()


def require_tools(tools: Iterable[str] = REQUIRED_TOOLS) -> None:
    """Raise MissingToolError for the first tool not found on PATH."""
    for tool in tools:
        if shutil.which(tool) is None:
            raise MissingToolError(tool)


def run_command(
    command: Sequence[str],
    check: bool = True,
    stdin: Optional[IO] = None,
    log_output: bool = True,
) -> subprocess.CompletedProcess:
    log.debug(f"Running command: {' '.join(command)}")
    result = subprocess.run(
        list(command),
        stdin=stdin,
        text=True,
        capture_output=True,
    )
    if result.stdout and (log_output or result.returncode != 0):
        log.trace(f"stdout: {result.stdout.strip()}")
    if result.stderr and (log_output or result.returncode != 0):
        log.debug(f"stderr: {result.stderr.strip()}")
    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, (result.stderr or "").strip())
    return result


def _terminate(process: subprocess.Popen) -> None:
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        process.kill()
        process.wait()


def run_cancellable(
    command: Sequence[str],
    cancel_event: Optional[threading.Event] = None,
    poll_interval: float = 1.0,
) -> None:
    """Run a long command, terminating it when ``cancel_event`` is set.

    stderr is drained on every poll so a chatty child never blocks on a
    full pipe.

    Raises:
        CopyCancelledError: The token fired before the command finished.
        CommandError: The command exited with a non-zero status.
    """
    log.debug(f"Starting command: {' '.join(command)}")
    process = subprocess.Popen(
        list(command),
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
    )
    try:
        while True:
            if cancel_event is not None and cancel_event.is_set():
                _terminate(process)
                raise CopyCancelledError(command)
            try:
                _, stderr = process.communicate(timeout=poll_interval)
                break
            except subprocess.TimeoutExpired:
                continue
    finally:
        _terminate(process)
    stderr = (stderr or "").strip()
    if process.returncode != 0:
        if cancel_event is not None and cancel_event.is_set():
            raise CopyCancelledError(command)
        raise CommandError(command, process.returncode, stderr)
    log.debug(f"Command completed: {' '.join(command)}")


def run_pipeline(
    producer: Sequence[str],
    consumer: Sequence[str],
) -> str:
    """Run ``producer | consumer`` and return the consumer's stdout."""
    log.debug(f"Running pipeline: {' '.join(producer)} | {' '.join(consumer)}")
    producer_proc = subprocess.Popen(
        list(producer),
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
    )
    consumer_proc = subprocess.Popen(
        list(consumer),
        stdin=producer_proc.stdout,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    )
    if producer_proc.stdout:
        producer_proc.stdout.close()
    out, err = consumer_proc.communicate()
    producer_proc.wait()
    if producer_proc.returncode != 0:
        raise CommandError(producer, producer_proc.returncode)
    if consumer_proc.returncode != 0:
        raise CommandError(consumer, consumer_proc.returncode, (err or "").strip())
    return out
