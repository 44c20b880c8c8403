"""Scoped temporary mounts for file-tree copies.

Each copy job mounts its device's first partition on its own temporary
directory, so concurrent jobs never share a mount point.
"""

from __future__ import annotations

import os
import re
import tempfile
from contextlib import contextmanager
from typing import Iterator

from busbcopy.logging import LoggerFactory

from .commands import run_command
from .exceptions import CommandError, MountFailedError, PartitionNotFoundError

log = LoggerFactory.for_system()


def first_partition(device: str) -> str:
    """Device node of the first partition.

    Devices whose names end in a digit (e.g. ``mmcblk0``, ``nvme0n1``) use a
    ``p`` separator.
    """
    if re.search(r"\d$", device):
        return f"{device}p1"
    return f"{device}1"


def require_partition(device: str) -> str:
    partition = first_partition(device)
    if not os.path.exists(partition):
        raise PartitionNotFoundError(partition)
    return partition


@contextmanager
def temporary_mount(partition: str) -> Iterator[str]:
    """Mount ``partition`` on a fresh temporary directory.

    The partition is unmounted and the directory removed on every exit path,
    including when the body raises.

    Raises:
        MountFailedError: If ``mount`` fails
    """
    mountpoint = tempfile.mkdtemp(prefix="busbcopy-")
    mounted = False
    try:
        try:
            run_command(["mount", partition, mountpoint])
        except CommandError as error:
            raise MountFailedError(partition, error.stderr) from error
        mounted = True
        log.debug(f"Mounted {partition} at {mountpoint}")
        yield mountpoint
    finally:
        try:
            if mounted:
                run_command(["umount", mountpoint])
                log.debug(f"Unmounted {mountpoint}")
        finally:
            _remove_mountpoint(mountpoint)


def _remove_mountpoint(mountpoint: str) -> None:
    # rmdir only: a directory still holding a mounted filesystem is never emptied.
    if os.path.ismount(mountpoint):
        log.warning(f"{mountpoint} is still mounted; leaving it in place")
        return
    try:
        os.rmdir(mountpoint)
    except OSError as error:
        log.warning(f"Could not remove {mountpoint}: {error}")
