"""Custom exceptions for device copy operations.

Exception Hierarchy:
    BusbcopyError (base)
        ├── ConfigurationError
        │   ├── MissingSourceError
        │   ├── SourceNotReadableError
        │   └── MissingToolError
        ├── DeviceError
        │   ├── DeviceValidationError
        │   ├── PartitionNotFoundError
        │   └── InsufficientDevicesError
        ├── MountError
        │   └── MountFailedError
        ├── CopyError
        │   ├── CopyOperationError
        │   └── CopyCancelledError
        ├── CommandError
        └── UserAbortError

Configuration errors are raised before any device is touched. Copy errors
are scoped to a single device; in batch mode they never stop sibling jobs.

Usage:
    from busbcopy.storage.exceptions import DeviceValidationError

    if not validate_device(path):
        raise DeviceValidationError(path)
"""

from __future__ import annotations

from typing import Sequence


class BusbcopyError(Exception):
    """Base exception for all busbcopy errors."""


class ConfigurationError(BusbcopyError):
    """Invalid source or environment; fatal before any device interaction."""


class MissingSourceError(ConfigurationError):
    """No source was given or the source path does not exist."""

    def __init__(self, path: str | None = None):
        self.path = path
        if path:
            super().__init__(f"Source does not exist: {path}")
        else:
            super().__init__("Please specify source!")


class SourceNotReadableError(ConfigurationError):
    """Source exists but cannot be read."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Cannot read image {path}!")


class MissingToolError(ConfigurationError):
    """A required external utility is not installed."""

    def __init__(self, tool: str):
        self.tool = tool
        super().__init__(f"No {tool}!")


class DeviceError(BusbcopyError):
    """Base exception for device-related errors."""


class DeviceValidationError(DeviceError):
    """Device is not a block device or exceeds the safety cutoff."""

    def __init__(self, device: str):
        self.device = device
        super().__init__(f"Not a valid block device: {device}")


class PartitionNotFoundError(DeviceError):
    """The first partition of a device has no device node."""

    def __init__(self, partition: str):
        self.partition = partition
        super().__init__(f"Partition {partition} does not exist!")


class InsufficientDevicesError(DeviceError):
    """Fewer validated devices are attached than a batch requires."""

    def __init__(self, detected: int, required: int):
        self.detected = detected
        self.required = required
        super().__init__(
            f"Detected {detected} USB storage devices. Need at least {required}!"
        )


class MountError(BusbcopyError):
    """Base exception for mount-related errors."""


class MountFailedError(MountError):
    """Partition could not be mounted."""

    def __init__(self, partition: str, reason: str = ""):
        self.partition = partition
        self.reason = reason
        msg = f"Could not mount {partition}!"
        if reason:
            msg += f" {reason}"
        super().__init__(msg)


class CopyError(BusbcopyError):
    """Base exception for copy operations."""


class CopyOperationError(CopyError):
    """Copy to a device failed after all attempts."""

    def __init__(self, message: str, device: str = None):
        self.device = device
        super().__init__(message)


class CopyCancelledError(CopyError):
    """Copy was interrupted by the cancellation token."""

    def __init__(self, command: Sequence[str]):
        self.command = list(command)
        super().__init__(f"Cancelled: {' '.join(self.command)}")


class CommandError(BusbcopyError):
    """An external utility exited with a non-zero status."""

    def __init__(self, command: Sequence[str], returncode: int, stderr: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.stderr = stderr
        msg = f"'{' '.join(self.command)}' failed (code={returncode})"
        if stderr:
            msg += f": {stderr}"
        super().__init__(msg)


class UserAbortError(BusbcopyError):
    """Operator interrupted the run."""

    def __init__(self, message: str = "User aborted!"):
        super().__init__(message)
