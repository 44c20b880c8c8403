"""Image verification using MD5 digests from ``openssl dgst``.

The source digest is computed once per run. Each target is verified by
reading back exactly as many bytes as the source holds, using 512-byte
blocks when the size allows and single-byte blocks otherwise, and hashing
that range.
"""

from __future__ import annotations

import os
from typing import Optional, Union

from busbcopy.domain.models import Device, Source, SourceChecksum
from busbcopy.logging import LoggerFactory

from .commands import run_command, run_pipeline
from .exceptions import CommandError, ConfigurationError, SourceNotReadableError

SECTOR_SIZE = 512
DIGEST_COMMAND = ("openssl", "dgst", "-md5")

log = LoggerFactory.for_verify()


def compute_block_layout(size_bytes: int) -> tuple[int, int]:
    """Return ``(block_size, block_count)`` covering exactly ``size_bytes``."""
    if size_bytes % SECTOR_SIZE == 0:
        return SECTOR_SIZE, size_bytes // SECTOR_SIZE
    return 1, size_bytes


def parse_digest(output: str) -> str:
    """Extract the hex digest from ``MD5(stdin)= <hex>`` style output."""
    parts = output.split()
    return parts[-1] if parts else ""


def compute_source_checksum(source: Union[Source, str]) -> SourceChecksum:
    """Hash the source image and derive its read-back geometry.

    Raises:
        ConfigurationError: If the source is not a regular file
        SourceNotReadableError: If the image cannot be read
    """
    path = source.path if isinstance(source, Source) else source
    if not path or not os.path.isfile(path):
        raise ConfigurationError("Need source image to verify against!")
    if not os.access(path, os.R_OK):
        raise SourceNotReadableError(path)

    with open(path, "rb") as image:
        result = run_command(list(DIGEST_COMMAND), stdin=image)
    digest = parse_digest(result.stdout)
    log.info(f"Image checksum (MD5): {digest}")

    size_bytes = os.path.getsize(path)
    block_size, block_count = compute_block_layout(size_bytes)
    return SourceChecksum(
        digest=digest,
        block_size=block_size,
        block_count=block_count,
        size_bytes=size_bytes,
    )


def compute_device_checksum(device_path: str, block_size: int, block_count: int) -> str:
    output = run_pipeline(
        ["dd", f"if={device_path}", f"bs={block_size}", f"count={block_count}"],
        list(DIGEST_COMMAND),
    )
    return parse_digest(output)


def verify_device(device: Union[Device, str], checksum: SourceChecksum) -> bool:
    """Compare the device's leading bytes against the source digest."""
    device_path = device.path if isinstance(device, Device) else device
    try:
        device_digest = compute_device_checksum(
            device_path, checksum.block_size, checksum.block_count
        )
    except CommandError as error:
        log.warning(f"Reading back {device_path} failed: {error}")
        return False
    log.debug(f"Device checksum for {device_path}: {device_digest}")
    return device_digest == checksum.digest


def ensure_checksum(
    source: Source, checksum: Optional[SourceChecksum] = None
) -> SourceChecksum:
    """Return the cached checksum, computing it on first use."""
    if checksum is not None:
        return checksum
    return compute_source_checksum(source)
