"""Storage management service client.

Wraps the Windows Storage module cmdlets (Get-Disk, Clear-Disk,
Initialize-Disk, New-Partition, Format-Volume) behind the StorageService
protocol. Every value that reaches a PowerShell script is typed and checked
first: disk numbers are ints, letters are single A-Z characters, partition
types are GUIDs or ints, and labels are single-quoted with quotes doubled.

Example:
    >>> service = PowerShellStorageService()
    >>> disk = service.get_disk(number=1)
    >>> service.initialize_disk(disk.number, PartitionStyle.GPT)
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional, Protocol

from wim_deployer.config.settings import get_setting
from wim_deployer.domain import DiskTarget, FileSystem, PartitionSpec, PartitionStyle
from wim_deployer.logging import LoggerFactory
from wim_deployer.storage.commands import find_tool, run_command
from wim_deployer.storage.exceptions import StorageOperationError, ValidationError
from wim_deployer.storage.letters import normalize_letter


log = LoggerFactory.for_storage()

GUID_PATTERN = re.compile(r"^\{[0-9a-fA-F]{8}(-[0-9a-fA-F]{4}){3}-[0-9a-fA-F]{12}\}$")

DISK_PROPERTIES = (
    "Number",
    "Model",
    "FriendlyName",
    "PartitionStyle",
    "Size",
    "Path",
    "IsBoot",
    "IsSystem",
)


class StorageService(Protocol):
    """Disk operations the deployment workflow depends on."""

    def get_disk(
        self, number: Optional[int] = None, handle: Optional[str] = None
    ) -> DiskTarget: ...

    def list_disks(self) -> list[DiskTarget]: ...

    def clear_disk(self, number: int) -> None: ...

    def initialize_disk(self, number: int, style: PartitionStyle) -> None: ...

    def create_partition(self, number: int, spec: PartitionSpec) -> int: ...

    def format_volume(
        self, drive_letter: str, filesystem: FileSystem, label: Optional[str]
    ) -> None: ...


def ps_quote(value: str) -> str:
    """Quote a string as a PowerShell single-quoted literal."""
    return "'" + str(value).replace("'", "''") + "'"


def _records(output: str) -> list[dict[str, Any]]:
    output = output.strip()
    if not output:
        return []
    data = json.loads(output)
    if isinstance(data, dict):
        return [data]
    return [item for item in data if isinstance(item, dict)]


class PowerShellStorageService:
    """StorageService backed by the Windows Storage PowerShell module."""

    def __init__(self, executable: Optional[str] = None):
        self.executable = executable or get_setting("powershell_path", "powershell.exe")

    def _run(self, operation: str, script: str) -> str:
        if not find_tool(self.executable):
            raise StorageOperationError(
                operation, f"{self.executable} not found on PATH"
            )
        command = [
            self.executable,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy",
            "Bypass",
            "-Command",
            f"$ErrorActionPreference = 'Stop'; {script}",
        ]
        result = run_command(command, check=False)
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "").strip()
            raise StorageOperationError(
                operation,
                message or f"exit code {result.returncode}",
                output=result.stdout or "",
            )
        return result.stdout or ""

    def _select_disks(self, selector: str, operation: str) -> list[DiskTarget]:
        properties = ",".join(DISK_PROPERTIES)
        output = self._run(
            operation,
            f"{selector} | Select-Object {properties} | ConvertTo-Json -Compress",
        )
        try:
            return [DiskTarget.from_storage_dict(item) for item in _records(output)]
        except (ValueError, KeyError) as error:
            raise StorageOperationError(
                operation, f"unreadable disk information: {error}", output=output
            ) from error

    def get_disk(
        self, number: Optional[int] = None, handle: Optional[str] = None
    ) -> DiskTarget:
        if (number is None) == (handle is None):
            raise ValidationError(
                "Exactly one of disk number or disk handle must be given", field="disk"
            )
        if number is not None:
            selector = f"Get-Disk -Number {int(number)}"
        else:
            selector = f"Get-Disk -Path {ps_quote(handle)}"
        disks = self._select_disks(selector, "Get-Disk")
        if len(disks) != 1:
            raise ValidationError(
                f"Expected one disk for {number if number is not None else handle}, "
                f"found {len(disks)}",
                field="disk",
            )
        log.debug(f"Resolved target: {disks[0].format_label()}")
        return disks[0]

    def list_disks(self) -> list[DiskTarget]:
        return self._select_disks("Get-Disk", "Get-Disk")

    def clear_disk(self, number: int) -> None:
        log.info(f"Clearing all partition data on disk {int(number)}")
        self._run(
            "Clear-Disk",
            f"Clear-Disk -Number {int(number)} -RemoveData -RemoveOEM -Confirm:$false",
        )

    def initialize_disk(self, number: int, style: PartitionStyle) -> None:
        style = PartitionStyle.parse(style)
        if style is PartitionStyle.RAW:
            raise ValidationError("Cannot initialize a disk as RAW")
        log.info(f"Initializing disk {int(number)} as {style.value}")
        self._run(
            "Initialize-Disk",
            f"Initialize-Disk -Number {int(number)} "
            f"-PartitionStyle {style.value} -Confirm:$false",
        )

    def create_partition(self, number: int, spec: PartitionSpec) -> int:
        parts = [f"New-Partition -DiskNumber {int(number)}"]
        if spec.uses_remaining:
            parts.append("-UseMaximumSize")
        else:
            parts.append(f"-Size {int(spec.size_bytes)}")
        if spec.gpt_type:
            if not GUID_PATTERN.match(spec.gpt_type):
                raise ValidationError(f"Invalid GPT type: {spec.gpt_type!r}")
            parts.append(f"-GptType {ps_quote(spec.gpt_type)}")
        if spec.mbr_type is not None:
            parts.append(f"-MbrType {int(spec.mbr_type)}")
        if spec.is_active:
            parts.append("-IsActive")
        if spec.drive_letter:
            parts.append(f"-DriveLetter {normalize_letter(spec.drive_letter)}")
        script = " ".join(parts) + " | Select-Object -ExpandProperty PartitionNumber"

        log.info(
            "Creating {} partition on disk {} ({})",
            spec.role.value,
            int(number),
            "remaining space" if spec.uses_remaining else f"{spec.size_bytes} bytes",
        )
        output = self._run("New-Partition", script)
        try:
            return int(output.strip().splitlines()[-1])
        except (IndexError, ValueError) as error:
            raise StorageOperationError(
                "New-Partition", f"no partition number returned: {output!r}"
            ) from error

    def format_volume(
        self, drive_letter: str, filesystem: FileSystem, label: Optional[str]
    ) -> None:
        if filesystem is FileSystem.NONE:
            raise ValidationError("Cannot format a volume without a filesystem")
        letter = normalize_letter(drive_letter)
        script = f"Format-Volume -DriveLetter {letter} -FileSystem {filesystem.value}"
        if label:
            script += f" -NewFileSystemLabel {ps_quote(label)}"
        script += " -Confirm:$false -Force | Out-Null"
        log.info(f"Formatting {letter}: as {filesystem.value}")
        self._run("Format-Volume", script)
