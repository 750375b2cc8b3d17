"""Partition layouts per partition style.

Each LayoutStrategy turns a disk size and two allocated drive letters into an
ordered PartitionLayout. Creation order is System, then Reserved (GPT only),
then OS, which takes the remaining space.

    MBR:  System 350MB NTFS (active)  | OS remaining NTFS
    GPT:  System 100MB FAT32 (ESP)    | MSR 16MB | OS remaining NTFS

New styles register themselves with register_layout_strategy() and are picked
up by get_layout_strategy() without changes to the deployment workflow.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from wim_deployer.config.settings import DEFAULT_MIN_OS_PARTITION_MB, get_int
from wim_deployer.domain import (
    MB,
    FileSystem,
    PartitionLayout,
    PartitionRole,
    PartitionSpec,
    PartitionStyle,
)
from wim_deployer.storage.exceptions import ValidationError


SYSTEM_LABEL = "System"

GPT_TYPE_SYSTEM = "{c12a7328-f81f-11d2-ba4b-00a0c93ec93b}"
GPT_TYPE_RESERVED = "{e3c9e316-0b5c-4db8-817d-f92df00215ae}"
GPT_TYPE_BASIC_DATA = "{ebd0a0a2-b9e5-4433-87c0-68b6b72699c7}"

MBR_TYPE_IFS = 0x07  # NTFS/exFAT/IFS

MBR_SYSTEM_SIZE = 350 * MB
GPT_SYSTEM_SIZE = 100 * MB
GPT_RESERVED_SIZE = 16 * MB


class LayoutStrategy(ABC):
    """Produces the partition layout for one partition style."""

    style: PartitionStyle

    @abstractmethod
    def partitions(
        self, system_letter: str, os_letter: str, os_label: str
    ) -> list[PartitionSpec]:
        """Return the partitions in creation order."""

    def plan(
        self,
        disk_size: int,
        letters: Sequence[str],
        os_label: str = "Windows",
    ) -> PartitionLayout:
        """Build and check the layout for a disk.

        Args:
            disk_size: Disk capacity in bytes (0 if unknown, skips the size check)
            letters: Allocated letters; the first goes to System, the second to OS
            os_label: Volume label for the OS partition

        Raises:
            ValidationError: If fewer than two letters are given or the disk
                cannot hold the fixed partitions plus a minimal OS partition
        """
        if len(letters) < 2:
            raise ValidationError(
                f"Two drive letters are required, got {len(letters)}",
                field="drive_letter",
            )
        layout = PartitionLayout(
            style=self.style,
            partitions=tuple(self.partitions(letters[0], letters[1], os_label)),
        )
        layout.validate()

        if disk_size:
            min_os = get_int("min_os_partition_mb", DEFAULT_MIN_OS_PARTITION_MB) * MB
            required = layout.fixed_bytes + min_os
            if disk_size < required:
                raise ValidationError(
                    f"Disk is too small for a {self.style.value} layout: "
                    f"{disk_size} bytes available, {required} bytes required",
                    field="disk_size",
                )
        return layout


class MbrLayoutStrategy(LayoutStrategy):
    style = PartitionStyle.MBR

    def partitions(
        self, system_letter: str, os_letter: str, os_label: str
    ) -> list[PartitionSpec]:
        return [
            PartitionSpec(
                role=PartitionRole.SYSTEM,
                size_bytes=MBR_SYSTEM_SIZE,
                filesystem=FileSystem.NTFS,
                label=SYSTEM_LABEL,
                drive_letter=system_letter,
                mbr_type=MBR_TYPE_IFS,
                is_active=True,
            ),
            PartitionSpec(
                role=PartitionRole.OS,
                size_bytes=None,
                filesystem=FileSystem.NTFS,
                label=os_label,
                drive_letter=os_letter,
                mbr_type=MBR_TYPE_IFS,
            ),
        ]


class GptLayoutStrategy(LayoutStrategy):
    style = PartitionStyle.GPT

    def partitions(
        self, system_letter: str, os_letter: str, os_label: str
    ) -> list[PartitionSpec]:
        return [
            PartitionSpec(
                role=PartitionRole.SYSTEM,
                size_bytes=GPT_SYSTEM_SIZE,
                filesystem=FileSystem.FAT32,
                label=SYSTEM_LABEL,
                drive_letter=system_letter,
                gpt_type=GPT_TYPE_SYSTEM,
            ),
            PartitionSpec(
                role=PartitionRole.RESERVED,
                size_bytes=GPT_RESERVED_SIZE,
                filesystem=FileSystem.NONE,
                gpt_type=GPT_TYPE_RESERVED,
            ),
            PartitionSpec(
                role=PartitionRole.OS,
                size_bytes=None,
                filesystem=FileSystem.NTFS,
                label=os_label,
                drive_letter=os_letter,
                gpt_type=GPT_TYPE_BASIC_DATA,
            ),
        ]


_STRATEGIES: dict[PartitionStyle, LayoutStrategy] = {}


def register_layout_strategy(strategy: LayoutStrategy) -> None:
    _STRATEGIES[strategy.style] = strategy


def get_layout_strategy(style: PartitionStyle) -> LayoutStrategy:
    """Return the strategy for a partition style.

    Raises:
        ValidationError: If no strategy handles the style (e.g. RAW)
    """
    try:
        return _STRATEGIES[PartitionStyle.parse(style)]
    except KeyError:
        raise ValidationError(
            f"No partition layout for style {style}", field="partition_style"
        ) from None


register_layout_strategy(MbrLayoutStrategy())
register_layout_strategy(GptLayoutStrategy())
