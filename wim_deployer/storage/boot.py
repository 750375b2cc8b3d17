"""Boot configuration with bcdboot.

The boot command copies boot files from the deployed OS (``<OS>:\\Windows``)
onto the System partition. The firmware flag follows the partition style:
BIOS for MBR, UEFI for GPT.
"""

from __future__ import annotations

from typing import Optional, Protocol

from wim_deployer.config.settings import get_setting
from wim_deployer.domain import BootCommand, FirmwareType, PartitionLayout, PartitionStyle
from wim_deployer.logging import LoggerFactory
from wim_deployer.storage.commands import find_tool, run_command
from wim_deployer.storage.exceptions import BootConfigError, ValidationError
from wim_deployer.storage.letters import normalize_letter


log = LoggerFactory.for_boot()

FIRMWARE_BY_STYLE = {
    PartitionStyle.MBR: FirmwareType.BIOS,
    PartitionStyle.GPT: FirmwareType.UEFI,
}


class BootTool(Protocol):
    def run(self, command: BootCommand) -> str: ...


def firmware_for_style(style: PartitionStyle) -> FirmwareType:
    try:
        return FIRMWARE_BY_STYLE[style]
    except KeyError:
        raise ValidationError(
            f"No boot firmware for partition style {style}", field="partition_style"
        ) from None


def build_boot_command(layout: PartitionLayout) -> BootCommand:
    """Derive the boot command from a realized layout."""
    os_letter = normalize_letter(layout.os.drive_letter or "")
    system_letter = normalize_letter(layout.system.drive_letter or "")
    return BootCommand(
        source_path=f"{os_letter}:\\Windows",
        system_volume=f"{system_letter}:",
        firmware=firmware_for_style(layout.style),
    )


class BcdbootTool:
    """BootTool backed by bcdboot.exe."""

    def __init__(self, executable: Optional[str] = None):
        self.executable = executable or get_setting("bcdboot_path", "bcdboot.exe")

    def run(self, command: BootCommand) -> str:
        """Run bcdboot and return its output.

        Raises:
            BootConfigError: If bcdboot is missing, cannot be started or exits non-zero
        """
        if not find_tool(self.executable):
            raise BootConfigError(f"{self.executable} not found on PATH")

        log.info(
            "Writing {} boot files to {} from {}",
            command.firmware.value,
            command.system_volume,
            command.source_path,
        )
        try:
            result = run_command(command.argv(self.executable), check=False)
        except OSError as error:
            raise BootConfigError(f"Could not start bcdboot: {error}") from error
        output = "\n".join(
            part.strip() for part in (result.stdout, result.stderr) if part and part.strip()
        )
        if result.returncode != 0:
            raise BootConfigError(
                f"bcdboot failed with code {result.returncode}: "
                f"{output or 'no output'}",
                output=output,
            )
        return output
