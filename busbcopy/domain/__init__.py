"""Domain models for busbcopy."""

from .models import (
    BatchRound,
    CopyJob,
    CopyResult,
    Device,
    JobStatus,
    Source,
    SourceChecksum,
    SourceKind,
)

__all__ = [
    "BatchRound",
    "CopyJob",
    "CopyResult",
    "Device",
    "JobStatus",
    "Source",
    "SourceChecksum",
    "SourceKind",
]
