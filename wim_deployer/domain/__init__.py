"""Domain models for image deployment."""

from __future__ import annotations

from .models import (
    MB,
    BootCommand,
    DeploymentRequest,
    DeploymentResult,
    DeploymentState,
    DiskTarget,
    FileSystem,
    FirmwareType,
    PartitionLayout,
    PartitionRole,
    PartitionSpec,
    PartitionStyle,
)


__all__ = [
    "MB",
    "BootCommand",
    "DeploymentRequest",
    "DeploymentResult",
    "DeploymentState",
    "DiskTarget",
    "FileSystem",
    "FirmwareType",
    "PartitionLayout",
    "PartitionRole",
    "PartitionSpec",
    "PartitionStyle",
]
