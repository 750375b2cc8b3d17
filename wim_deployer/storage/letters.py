"""Drive letter allocation for new volumes.

allocate_drive_letters() is a pure function over an explicit snapshot of the
letters already in use. get_used_drive_letters() takes that snapshot from the
host and is the only part of this module that touches the system.
"""

from __future__ import annotations

import string
from typing import Iterable

import psutil

from wim_deployer.config.settings import (
    DEFAULT_DRIVE_LETTER_FIRST,
    DEFAULT_DRIVE_LETTER_LAST,
    get_setting,
)
from wim_deployer.logging import LoggerFactory
from wim_deployer.storage.exceptions import AllocationError, ValidationError


log = LoggerFactory.for_system()


def normalize_letter(value: str) -> str:
    """Return the bare upper-case letter for "e", "E:", "E:\\" and the like.

    Raises:
        ValidationError: If the value is not a drive letter
    """
    letter = str(value).strip().rstrip("\\/").rstrip(":").upper()
    if len(letter) != 1 or letter not in string.ascii_uppercase:
        raise ValidationError(f"Not a drive letter: {value!r}", field="drive_letter")
    return letter


def letter_range(first: str, last: str) -> list[str]:
    first = normalize_letter(first)
    last = normalize_letter(last)
    if first > last:
        raise ValidationError(f"Empty drive letter range {first}-{last}")
    return [chr(code) for code in range(ord(first), ord(last) + 1)]


def allocate_drive_letters(
    in_use: Iterable[str],
    count: int = 2,
    first: str | None = None,
    last: str | None = None,
) -> list[str]:
    """Pick the lowest unused letters in the scanning range.

    Args:
        in_use: Letters currently assigned on the host (any case, colon optional)
        count: Number of letters needed
        first: First letter of the range (default from settings, "E")
        last: Last letter of the range (default from settings, "Z")

    Returns:
        ``count`` letters in ascending order

    Raises:
        AllocationError: If fewer than ``count`` letters are free
    """
    first = first or get_setting("drive_letter_first", DEFAULT_DRIVE_LETTER_FIRST)
    last = last or get_setting("drive_letter_last", DEFAULT_DRIVE_LETTER_LAST)
    used = {normalize_letter(letter) for letter in in_use}
    free = [letter for letter in letter_range(first, last) if letter not in used]
    if len(free) < count:
        raise AllocationError(count, free, normalize_letter(first), normalize_letter(last))
    return free[:count]


def get_used_drive_letters() -> set[str]:
    """Snapshot the drive letters currently mounted on the host."""
    used: set[str] = set()
    for partition in psutil.disk_partitions(all=True):
        mountpoint = partition.mountpoint or partition.device or ""
        head = mountpoint[:2]
        if len(head) == 2 and head[1] == ":" and head[0].isalpha():
            used.add(head[0].upper())
    log.debug(f"Drive letters in use: {sorted(used)}")
    return used
