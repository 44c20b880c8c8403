"""USB storage device enumeration and validation.

Candidates come from the ``usb-*`` symlinks under ``/dev/disk/by-id``, which
udev creates for every USB mass-storage disk and its partitions. Each link is
resolved to its device node, partition links are skipped and duplicates are
dropped.

Filtering Logic:
    A candidate is a validated device when:

    1. The resolved path is a block device node
    2. Its total size in MiB (``blockdev --getsize64``) is strictly below the
       safety cutoff (10240 MiB by default)

    The size check is a heuristic that keeps large internal disks out of the
    list even if they appear under a ``usb-`` identifier. Nothing else about
    the device (vendor, partition layout) is inspected.

Example:
    >>> from busbcopy.storage.devices import validated_usb_storage
    >>> for device in validated_usb_storage():
    ...     print(device.format_label())
    /dev/sdb (7.5GB)
"""

from __future__ import annotations

import os
import re
import stat
from pathlib import Path
from typing import Iterator, Optional

from busbcopy.config import settings
from busbcopy.domain.models import MIB, Device
from busbcopy.logging import LoggerFactory

from .commands import run_command
from .exceptions import CommandError, DeviceValidationError

USB_ID_PREFIX = "usb-"
PARTITION_LINK_RE = re.compile(r"-part\d+$")

log = LoggerFactory.for_usb()


def _by_id_dir(by_id_dir: Optional[str]) -> Path:
    return Path(by_id_dir or settings.get_setting("by_id_dir", settings.DEFAULT_BY_ID_DIR))


def _safety_cutoff(safety_cutoff_mib: Optional[int]) -> int:
    if safety_cutoff_mib is not None:
        return safety_cutoff_mib
    return settings.get_int("safety_cutoff_mib", settings.DEFAULT_SAFETY_CUTOFF_MIB)


def enumerate_usb_storage(by_id_dir: Optional[str] = None) -> Iterator[str]:
    """Yield resolved device paths for USB disks, deduplicated, in by-id order."""
    directory = _by_id_dir(by_id_dir)
    if not directory.is_dir():
        return
    seen: set[str] = set()
    for link in sorted(directory.glob(f"{USB_ID_PREFIX}*")):
        if PARTITION_LINK_RE.search(link.name):
            continue
        resolved = os.path.realpath(link)
        if resolved in seen:
            continue
        seen.add(resolved)
        yield resolved


def is_block_device(path: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def get_device_size(path: str) -> int:
    """Total size in bytes as reported by ``blockdev --getsize64``."""
    result = run_command(["blockdev", "--getsize64", path], log_output=False)
    return int(result.stdout.strip())


def is_within_safety_cutoff(size_bytes: int, safety_cutoff_mib: Optional[int] = None) -> bool:
    return size_bytes // MIB < _safety_cutoff(safety_cutoff_mib)


def probe_device(path: str, safety_cutoff_mib: Optional[int] = None) -> Optional[Device]:
    """Return a Device if ``path`` passes both checks, else None."""
    if not is_block_device(path):
        log.trace(f"{path} is not a block device")
        return None
    size_bytes = get_device_size(path)
    if not is_within_safety_cutoff(size_bytes, safety_cutoff_mib):
        log.debug(
            f"Skipping {path}: {size_bytes // MIB} MiB exceeds safety cutoff "
            f"of {_safety_cutoff(safety_cutoff_mib)} MiB"
        )
        return None
    return Device(path=path, size_bytes=size_bytes)


def validate_device(path: str, safety_cutoff_mib: Optional[int] = None) -> bool:
    return probe_device(path, safety_cutoff_mib) is not None


def require_valid_device(path: str, safety_cutoff_mib: Optional[int] = None) -> Device:
    """Validate a single requested device.

    Raises:
        DeviceValidationError: If the device fails either check
    """
    device = probe_device(path, safety_cutoff_mib)
    if device is None:
        raise DeviceValidationError(path)
    return device


def validated_usb_storage(
    by_id_dir: Optional[str] = None,
    safety_cutoff_mib: Optional[int] = None,
) -> list[Device]:
    devices = []
    for path in enumerate_usb_storage(by_id_dir):
        try:
            device = probe_device(path, safety_cutoff_mib)
        except CommandError as error:
            # Device vanished between enumeration and the size query.
            log.debug(f"Size query failed for {path}: {error}")
            continue
        if device is not None:
            devices.append(device)
    return devices
