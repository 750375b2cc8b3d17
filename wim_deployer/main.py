import argparse
import sys
from pathlib import Path

from wim_deployer.config import settings
from wim_deployer.domain import DeploymentRequest, DiskTarget, PartitionStyle
from wim_deployer.logging import LoggerFactory, setup_logging
from wim_deployer.services.deployment import deploy
from wim_deployer.storage.boot import BcdbootTool
from wim_deployer.storage.diskmgmt import PowerShellStorageService
from wim_deployer.storage.exceptions import (
    AllocationError,
    DeployerError,
    SafetyAbort,
    UtilityFailure,
    ValidationError,
)
from wim_deployer.storage.image import DismImageTool

EXIT_OK = 0
EXIT_VALIDATION = 2
EXIT_SAFETY = 3
EXIT_ALLOCATION = 4
EXIT_UTILITY = 5


def build_parser():
    parser = argparse.ArgumentParser(
        prog="wim-deployer",
        description="Partition a disk, apply a Windows image and make it bootable",
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--disk-number", type=int, help="Target disk number")
    target.add_argument("--disk-handle", help="Target disk path as reported by Get-Disk")
    parser.add_argument("--image", type=Path, help="Path to the WIM/ESD image file")
    parser.add_argument("--index", type=int, default=1, help="Image index (default: 1)")
    parser.add_argument(
        "--style",
        choices=[PartitionStyle.MBR.value, PartitionStyle.GPT.value],
        default=PartitionStyle.GPT.value,
        type=str.upper,
        help="Partition style (default: GPT)",
    )
    parser.add_argument(
        "--no-confirm",
        dest="confirm",
        action="store_false",
        help="Do not ask before clearing an initialized disk",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Deploy even to disks that look like removable or boot media",
    )
    parser.add_argument(
        "--label",
        default=None,
        help="OS volume label (default from settings)",
    )
    parser.add_argument(
        "--list-disks", action="store_true", help="List disks and exit"
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for log files")
    return parser


def prompt_clear(disk: DiskTarget) -> bool:
    """Ask the operator before an initialized disk is wiped."""
    print(
        f"{disk.format_label()} already has a partition table.\n"
        f"ALL DATA ON THIS DISK WILL BE DESTROYED.",
        file=sys.stderr,
    )
    try:
        answer = input("Clear the disk and continue? [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def list_disks(storage) -> int:
    for disk in storage.list_disks():
        flags = [flag for flag, on in (("boot", disk.is_boot), ("system", disk.is_system)) if on]
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"{disk.format_label()}{suffix}")
    return EXIT_OK


def exit_code_for(error: DeployerError) -> int:
    if isinstance(error, ValidationError):
        return EXIT_VALIDATION
    if isinstance(error, SafetyAbort):
        return EXIT_SAFETY
    if isinstance(error, AllocationError):
        return EXIT_ALLOCATION
    return EXIT_UTILITY


def describe_error(error: DeployerError) -> str:
    if not (isinstance(error, UtilityFailure) and error.fatal):
        return f"Error: {error}"
    state = error.state
    if state is not None and state.disk_modified:
        return (
            f"FATAL: {error}\n"
            f"The disk was left in state '{state.value}' and needs to be redeployed."
        )
    reached = state.value if state is not None else "unknown"
    return (
        f"FATAL: {error}\n"
        f"The disk was left in state '{reached}' while clearing; "
        "its contents are unknown."
    )


def main(argv=None, storage=None, image_tool=None, boot_tool=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(debug=args.debug, log_dir=args.log_dir)
    log = LoggerFactory.for_system()

    storage = storage or PowerShellStorageService()
    try:
        if args.list_disks:
            return list_disks(storage)

        if args.disk_number is None and args.disk_handle is None:
            parser.error("one of --disk-number or --disk-handle is required")
        if args.image is None:
            parser.error("--image is required")

        request = DeploymentRequest(
            image_path=args.image,
            disk_number=args.disk_number,
            disk_handle=args.disk_handle,
            image_index=args.index,
            partition_style=PartitionStyle.parse(args.style),
            confirm=args.confirm,
            force=args.force,
            os_label=args.label or settings.get_setting("os_label", settings.DEFAULT_OS_LABEL),
        )
        result = deploy(
            request,
            storage=storage,
            image_tool=image_tool or DismImageTool(),
            boot_tool=boot_tool or BcdbootTool(),
            confirm_clear=prompt_clear,
        )
    except DeployerError as error:
        log.debug(f"Deployment stopped: {type(error).__name__}")
        print(describe_error(error), file=sys.stderr)
        return exit_code_for(error)

    log.info(
        "Deployed to disk {} (System {}:, OS {}:)",
        result.disk.number,
        result.layout.system.drive_letter,
        result.layout.os.drive_letter,
    )
    print("Done.")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
