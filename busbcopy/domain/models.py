"""Domain objects for a copy run.

Everything here is transient: devices are re-enumerated every round and
nothing outlives the process.
"""

from __future__ import annotations

import os
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from busbcopy.storage.exceptions import MissingSourceError, SourceNotReadableError

MIB = 1024 * 1024


# ==============================================================================
# Device Domain
# ==============================================================================


@dataclass(frozen=True)
class Device:
    """A validated block device, identified only by its resolved path."""

    path: str  # e.g., "/dev/sdb"
    size_bytes: int

    def format_label(self) -> str:
        """e.g., "/dev/sdb (7.5GB)"."""
        return f"{self.path} ({human_size(self.size_bytes)})"


def human_size(size_bytes):
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


# ==============================================================================
# Source Domain
# ==============================================================================


class SourceKind(Enum):
    IMAGE = "image"  # single regular file, copied raw onto the whole device
    FILES = "files"  # directory, synced onto the first partition


@dataclass(frozen=True)
class Source:
    path: str
    kind: SourceKind

    @property
    def is_image(self) -> bool:
        return self.kind is SourceKind.IMAGE

    @classmethod
    def from_path(cls, path: Optional[str]) -> Source:
        """Classify a source path.

        Raises:
            MissingSourceError: If no path was given or it does not exist
            SourceNotReadableError: If the path cannot be read
        """
        if not path:
            raise MissingSourceError()
        if not os.path.exists(path):
            raise MissingSourceError(path)
        if not os.access(path, os.R_OK):
            raise SourceNotReadableError(path)
        kind = SourceKind.FILES if os.path.isdir(path) else SourceKind.IMAGE
        return cls(path=path, kind=kind)


@dataclass(frozen=True)
class SourceChecksum:
    """MD5 of the source and the dd geometry needed to read the same range back."""

    digest: str
    block_size: int
    block_count: int
    size_bytes: int


# ==============================================================================
# Job Domain
# ==============================================================================


class JobStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CopyResult:
    device: str
    status: JobStatus
    attempts: int = 0
    message: str = ""


@dataclass
class CopyJob:
    """One in-flight copy, tracked by its future."""

    device: Device
    future: Future

    @property
    def done(self) -> bool:
        return self.future.done()

    @property
    def status(self) -> JobStatus:
        if not self.future.done():
            return JobStatus.PENDING
        if self.future.cancelled():
            return JobStatus.CANCELLED
        if self.future.exception() is not None:
            return JobStatus.FAILED
        return self.future.result().status


@dataclass
class BatchRound:
    number: int
    devices: list[Device] = field(default_factory=list)
    jobs: list[CopyJob] = field(default_factory=list)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def count(self, status: JobStatus) -> int:
        return sum(1 for job in self.jobs if job.status is status)
