"""Custom exceptions for deployment operations.

Exception Hierarchy:
    DeployerError (base)
        ├── ValidationError
        ├── SafetyAbort
        │   └── ClearDeclinedError
        ├── AllocationError
        └── UtilityFailure
            ├── StorageOperationError
            ├── ImageApplyError
            └── BootConfigError

ValidationError, SafetyAbort and AllocationError are raised before anything
is written to the disk. UtilityFailure carries the last workflow state that
was reached; once the disk has been cleared it is fatal.

Usage:
    from wim_deployer.storage.exceptions import SafetyAbort

    if "usb" in model.lower() and not force:
        raise SafetyAbort(model, "USB")
"""

from __future__ import annotations

from typing import Optional, Sequence


class DeployerError(Exception):
    """Base exception for all deployment operations."""


class ValidationError(DeployerError):
    """The request or the target disk failed a pre-flight check."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class SafetyAbort(DeployerError):
    """The target disk looks like removable or boot media."""

    def __init__(
        self, model: str, marker: str, reason: str = "", message: Optional[str] = None
    ):
        self.model = model
        self.marker = marker
        self.reason = reason
        if message is None:
            detail = reason or f"model '{model}' contains '{marker}'"
            message = (
                f"Target disk looks like removable media ({detail}). "
                f"The operation was canceled as a precaution; "
                f"use --force to override."
            )
        super().__init__(message)


class ClearDeclinedError(SafetyAbort):
    """The operator declined to clear an initialized disk."""

    def __init__(self, disk_number: int):
        self.disk_number = disk_number
        super().__init__(
            "",
            "",
            reason="declined",
            message=f"Clearing disk {disk_number} was declined; no changes were made.",
        )


class AllocationError(DeployerError):
    """Not enough unused drive letters for the new partitions."""

    def __init__(self, needed: int, available: Sequence[str], first: str, last: str):
        self.needed = needed
        self.available = list(available)
        self.first = first
        self.last = last
        free = ", ".join(self.available) if self.available else "none"
        super().__init__(
            f"Need {needed} unused drive letters in {first}-{last}, "
            f"found {len(self.available)} ({free})"
        )


class UtilityFailure(DeployerError):
    """An external storage, image or boot utility failed.

    Attributes:
        state: Last workflow state reached before the failure, if known
        fatal: True once the disk has been modified
        output: Captured utility output, if any
    """

    def __init__(
        self,
        message: str,
        *,
        state=None,
        fatal: bool = False,
        output: str = "",
    ):
        self.state = state
        self.fatal = fatal
        self.output = output
        super().__init__(message)


class StorageOperationError(UtilityFailure):
    """Clearing, initializing, partitioning or formatting failed."""

    def __init__(self, operation: str, message: str, **kwargs):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}", **kwargs)


class ImageApplyError(UtilityFailure):
    """The image could not be applied to the OS volume."""

    def __init__(
        self, image_path: str, index: Optional[int], message: str, **kwargs
    ):
        self.image_path = image_path
        self.index = index
        if index is None:
            prefix = f"Reading image {image_path} failed"
        else:
            prefix = f"Applying image {image_path} (index {index}) failed"
        super().__init__(f"{prefix}: {message}", **kwargs)


class BootConfigError(UtilityFailure):
    """Boot file installation failed or the tool is missing."""
