"""Safety and pre-flight validation for deployment.

This module guards the destructive part of a deployment:
- Refuses disks whose model string looks like removable/flash media
- Refuses the disk the host is currently booted from
- Checks the image file, its index and its expanded size before the disk is
  touched

All validation functions raise specific exceptions from the exceptions module
rather than returning boolean values. Nothing here modifies a disk.

Example:
    from wim_deployer.storage.validation import check_removable_media

    check_removable_media(disk.model, force=request.force)
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional

from wim_deployer.config.settings import get_markers
from wim_deployer.domain import DiskTarget, PartitionLayout
from wim_deployer.logging import LoggerFactory
from wim_deployer.storage.exceptions import SafetyAbort, ValidationError


log = LoggerFactory.for_storage()


def find_removable_marker(
    model: str, markers: Optional[Iterable[str]] = None
) -> Optional[str]:
    """Return the first marker found in the model string, ignoring case."""
    markers = tuple(markers) if markers is not None else get_markers()
    lowered = (model or "").lower()
    for marker in markers:
        if marker.lower() in lowered:
            return marker
    return None


def check_removable_media(
    model: str, force: bool, markers: Optional[Iterable[str]] = None
) -> None:
    """Refuse a disk whose model looks like removable media.

    Args:
        model: Model string reported by the storage service
        force: Bypass the check (logged as a warning)
        markers: Markers to look for (default from settings: USB, Flash)

    Raises:
        SafetyAbort: If a marker is found and force is False
    """
    marker = find_removable_marker(model, markers)
    if marker is None:
        return
    if force:
        log.warning(
            "Disk model '{}' contains '{}'; continuing because --force was given",
            model,
            marker,
        )
        return
    raise SafetyAbort(model, marker)


def check_boot_disk(disk: DiskTarget, force: bool) -> None:
    """Refuse the disk the running system boots from.

    Raises:
        SafetyAbort: If the disk is the boot or system disk and force is False
    """
    if not (disk.is_boot or disk.is_system):
        return
    role = "boot" if disk.is_boot else "system"
    if force:
        log.warning(
            "Disk {} is the current {} disk; continuing because --force was given",
            disk.number,
            role,
        )
        return
    raise SafetyAbort(
        disk.model,
        role,
        reason=role,
        message=(
            f"Disk {disk.number} is the current {role} disk. "
            f"The operation was canceled as a precaution; use --force to override."
        ),
    )


def check_disk_safety(disk: DiskTarget, force: bool) -> None:
    """Run every safety check for the target disk."""
    check_removable_media(disk.model, force)
    check_boot_disk(disk, force)


def validate_image_path(image_path: Path) -> Path:
    path = Path(image_path)
    if not path.is_file():
        raise ValidationError(f"Image file not found: {path}", field="image_path")
    return path


def validate_image_file(image_path: Path, index: int, available: Iterable[int]) -> None:
    """Check the image exists and lists the requested index.

    Args:
        image_path: Path to the image file
        index: Requested image index
        available: Indexes listed in the image

    Raises:
        ValidationError: If the file is missing or the index is not listed
    """
    path = validate_image_path(image_path)
    indexes = sorted(set(available))
    if index not in indexes:
        listed = ", ".join(str(i) for i in indexes) or "none"
        raise ValidationError(
            f"Image {path} has no index {index} (available: {listed})",
            field="image_index",
        )


def check_image_fits(
    layout: PartitionLayout, disk_size: int, image_size: Optional[int]
) -> None:
    """Check the expanded image fits in the space left for the OS partition.

    Skipped when either size is unknown (0 or None).

    Raises:
        ValidationError: If the image is larger than the OS partition will be
    """
    if not disk_size or not image_size:
        return
    available = disk_size - layout.fixed_bytes
    if image_size > available:
        raise ValidationError(
            f"Image needs {image_size} bytes but the OS partition will only "
            f"have {available} bytes",
            field="image_size",
        )
    log.debug(f"Image size {image_size} bytes fits in {available} bytes")
