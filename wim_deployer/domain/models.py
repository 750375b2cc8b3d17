"""Domain model for image deployment.

Type-safe objects passed between the deployment stages: the request, the
target disk, the planned partition layout and the boot command.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from wim_deployer.storage.exceptions import ValidationError


MB = 1024 * 1024


class PartitionStyle(Enum):
    """On-disk partition table format."""

    RAW = "RAW"  # Uninitialized
    MBR = "MBR"
    GPT = "GPT"

    @classmethod
    def parse(cls, value: Any) -> PartitionStyle:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationError(
                f"Unknown partition style: {value!r}", field="partition_style"
            ) from None


class PartitionRole(Enum):
    SYSTEM = "System"
    RESERVED = "Reserved"
    OS = "OS"


class FileSystem(Enum):
    NTFS = "NTFS"
    FAT32 = "FAT32"
    NONE = "none"


class FirmwareType(Enum):
    """Platform flag passed to the boot installer."""

    BIOS = "BIOS"
    UEFI = "UEFI"


class DeploymentState(Enum):
    """Workflow states, in the only order they can be reached."""

    IDLE = "idle"
    SAFETY_CHECKED = "safety_checked"
    DISK_CLEARED = "disk_cleared"
    INITIALIZED = "initialized"
    PARTITIONED = "partitioned"
    FORMATTED = "formatted"
    IMAGE_APPLIED = "image_applied"
    BOOT_CONFIGURED = "boot_configured"
    DONE = "done"

    @property
    def order(self) -> int:
        return list(DeploymentState).index(self)

    @property
    def disk_modified(self) -> bool:
        """True once anything may have been written to the disk."""
        return self.order >= DeploymentState.DISK_CLEARED.order


# ==============================================================================
# Request / Target
# ==============================================================================


@dataclass(frozen=True)
class DeploymentRequest:
    """A single deployment invocation. Read-only once created."""

    image_path: Path
    disk_number: Optional[int] = None
    disk_handle: Optional[str] = None
    image_index: int = 1
    partition_style: PartitionStyle = PartitionStyle.GPT
    confirm: bool = True
    force: bool = False
    os_label: str = "Windows"

    def validate(self) -> None:
        """Check the request before any disk is touched.

        Raises:
            ValidationError: If the target is ambiguous or a parameter is invalid
        """
        if (self.disk_number is None) == (self.disk_handle is None):
            raise ValidationError(
                "Exactly one of disk number or disk handle must identify the target",
                field="disk",
            )
        if self.disk_number is not None and self.disk_number < 0:
            raise ValidationError(
                f"Disk number must not be negative: {self.disk_number}",
                field="disk_number",
            )
        if self.disk_handle is not None and not self.disk_handle.strip():
            raise ValidationError("Disk handle is empty", field="disk_handle")
        if self.image_index < 1:
            raise ValidationError(
                f"Image index must be 1 or greater: {self.image_index}",
                field="image_index",
            )
        if self.partition_style is PartitionStyle.RAW:
            raise ValidationError(
                "Partition style must be MBR or GPT", field="partition_style"
            )
        if not self.os_label or len(self.os_label) > 32:
            raise ValidationError(
                "OS volume label must be 1-32 characters", field="os_label"
            )

    @property
    def disk_selector(self) -> str:
        if self.disk_number is not None:
            return f"disk {self.disk_number}"
        return f"disk {self.disk_handle}"


@dataclass
class DiskTarget:
    """The disk being deployed to.

    Mutated in place as the disk is cleared and initialized.
    """

    number: int
    model: str
    partition_style: PartitionStyle
    size_bytes: int = 0
    handle: Optional[str] = None
    is_boot: bool = False
    is_system: bool = False

    @property
    def is_initialized(self) -> bool:
        return self.partition_style is not PartitionStyle.RAW

    def format_label(self) -> str:
        """e.g. "Disk 1 Samsung SSD 870 (465.8GB, GPT)"."""
        size_str = f"{self.size_bytes / (1024**3):.1f}GB"
        model = self.model.strip() or "Unknown model"
        return f"Disk {self.number} {model} ({size_str}, {self.partition_style.value})"

    @classmethod
    def from_storage_dict(cls, disk: dict[str, Any]) -> DiskTarget:
        """Convert a Get-Disk JSON record to a DiskTarget.

        Raises:
            KeyError: If the disk number is missing
        """
        style_value = disk.get("PartitionStyle") or "RAW"
        # ConvertTo-Json emits the CIM enum as its integer value: 0 RAW, 1 MBR, 2 GPT
        if isinstance(style_value, int) or str(style_value).isdigit():
            style_value = {0: "RAW", 1: "MBR", 2: "GPT"}.get(int(style_value), "RAW")
        return cls(
            number=int(disk["Number"]),
            model=(disk.get("Model") or disk.get("FriendlyName") or "").strip(),
            partition_style=PartitionStyle.parse(style_value),
            size_bytes=int(disk.get("Size") or 0),
            handle=disk.get("Path"),
            is_boot=bool(disk.get("IsBoot")),
            is_system=bool(disk.get("IsSystem")),
        )


# ==============================================================================
# Partition Layout
# ==============================================================================


@dataclass(frozen=True)
class PartitionSpec:
    """One partition to create, in creation order.

    size_bytes of None means "use the remaining space".
    """

    role: PartitionRole
    size_bytes: Optional[int]
    filesystem: FileSystem
    label: Optional[str] = None
    drive_letter: Optional[str] = None
    gpt_type: Optional[str] = None
    mbr_type: Optional[int] = None
    is_active: bool = False

    @property
    def uses_remaining(self) -> bool:
        return self.size_bytes is None

    @property
    def volume_root(self) -> str:
        """Root path of the partition's volume, e.g. "F:\\"."""
        if not self.drive_letter:
            raise ValidationError(f"{self.role.value} partition has no drive letter")
        return f"{self.drive_letter}:\\"

    def with_letter(self, drive_letter: Optional[str]) -> PartitionSpec:
        return replace(self, drive_letter=drive_letter)


@dataclass(frozen=True)
class PartitionLayout:
    style: PartitionStyle
    partitions: tuple[PartitionSpec, ...] = field(default_factory=tuple)

    def __iter__(self):
        return iter(self.partitions)

    def __len__(self) -> int:
        return len(self.partitions)

    def _single(self, role: PartitionRole) -> PartitionSpec:
        matches = [spec for spec in self.partitions if spec.role is role]
        if len(matches) != 1:
            raise ValidationError(
                f"{self.style.value} layout must contain exactly one "
                f"{role.value} partition, found {len(matches)}"
            )
        return matches[0]

    @property
    def system(self) -> PartitionSpec:
        return self._single(PartitionRole.SYSTEM)

    @property
    def os(self) -> PartitionSpec:
        return self._single(PartitionRole.OS)

    @property
    def fixed_bytes(self) -> int:
        return sum(spec.size_bytes or 0 for spec in self.partitions)

    def validate(self) -> None:
        """Enforce the role counts and ordering rules of a layout.

        Raises:
            ValidationError: If the layout is malformed
        """
        self._single(PartitionRole.SYSTEM)
        self._single(PartitionRole.OS)
        reserved = [s for s in self.partitions if s.role is PartitionRole.RESERVED]
        expected_reserved = 1 if self.style is PartitionStyle.GPT else 0
        if len(reserved) != expected_reserved:
            raise ValidationError(
                f"{self.style.value} layout must contain {expected_reserved} "
                f"Reserved partition(s), found {len(reserved)}"
            )
        remaining = [i for i, s in enumerate(self.partitions) if s.uses_remaining]
        if len(remaining) > 1 or (
            remaining and remaining[0] != len(self.partitions) - 1
        ):
            raise ValidationError("Only the last partition may use the remaining space")


# ==============================================================================
# Boot Command
# ==============================================================================


@dataclass(frozen=True)
class BootCommand:
    """A resolved boot-file installation call.

    source_path: Windows directory on the OS volume (e.g. F:\\Windows)
    system_volume: System partition volume (e.g. E:)
    """

    source_path: str
    system_volume: str
    firmware: FirmwareType

    def argv(self, executable: str = "bcdboot.exe") -> list[str]:
        return [
            executable,
            self.source_path,
            "/s",
            self.system_volume,
            "/f",
            self.firmware.value,
        ]


@dataclass
class DeploymentResult:
    """Outcome of a completed deployment."""

    request: DeploymentRequest
    disk: DiskTarget
    layout: PartitionLayout
    boot_command: BootCommand
    state: DeploymentState
    job_id: str
    boot_output: str = ""
