"""Disk preparation: clear, initialize, partition and format.

prepare_disk() is the first destructive step of a deployment. It assumes the
safety checks have already passed and the layout has been planned.

Sequence:
    1. Clear existing partition data (skipped for RAW disks). Needs operator
       confirmation unless confirm is False.
    2. Initialize the disk with the layout's partition style.
    3. Create each partition in layout order and format it right after it is
       created. Reserved partitions are left unformatted.

Any failure from step 1 onwards is fatal: the disk is left as it is and the
error records the last state reached. Nothing is retried.
"""

from __future__ import annotations

from typing import Callable, Optional

from wim_deployer.domain import (
    DeploymentState,
    DiskTarget,
    FileSystem,
    PartitionLayout,
    PartitionStyle,
)
from wim_deployer.logging import LoggerFactory
from wim_deployer.storage.diskmgmt import StorageService
from wim_deployer.storage.exceptions import (
    ClearDeclinedError,
    StorageOperationError,
    UtilityFailure,
)


log = LoggerFactory.for_storage()

ConfirmCallback = Callable[[DiskTarget], bool]
StateCallback = Callable[[DeploymentState], None]


def _needs_clear(disk: DiskTarget) -> bool:
    return disk.partition_style is not PartitionStyle.RAW


def confirm_clear_disk(
    disk: DiskTarget, confirm: bool, confirm_clear: Optional[ConfirmCallback]
) -> None:
    """Ask before clearing an initialized disk.

    A RAW disk is never cleared, so no question is asked whatever the confirm
    flag says. Without a callback an explicit confirmation cannot be given and
    the clear is declined.

    Raises:
        ClearDeclinedError: If confirmation was required and not given
    """
    if not _needs_clear(disk) or not confirm:
        return
    if confirm_clear is None or not confirm_clear(disk):
        raise ClearDeclinedError(disk.number)


def prepare_disk(
    storage: StorageService,
    disk: DiskTarget,
    layout: PartitionLayout,
    *,
    confirm: bool = True,
    confirm_clear: Optional[ConfirmCallback] = None,
    on_state: Optional[StateCallback] = None,
) -> PartitionLayout:
    """Clear, initialize, partition and format the target disk.

    Args:
        storage: Storage management service
        disk: Target disk; its partition_style is updated in place
        layout: Planned layout, including drive letters
        confirm: Ask before clearing an initialized disk
        confirm_clear: Callback returning True to allow the clear
        on_state: Called with each workflow state as it is reached

    Returns:
        The realized layout

    Raises:
        ClearDeclinedError: If clearing was declined (disk untouched)
        StorageOperationError: Fatal failure of any storage operation
    """
    confirm_clear_disk(disk, confirm, confirm_clear)

    state = DeploymentState.SAFETY_CHECKED

    def reach(new_state: DeploymentState) -> None:
        nonlocal state
        state = new_state
        if on_state is not None:
            on_state(new_state)

    try:
        if _needs_clear(disk):
            log.warning(
                "Clearing {} ({} partition table)",
                disk.format_label(),
                disk.partition_style.value,
            )
            storage.clear_disk(disk.number)
            disk.partition_style = PartitionStyle.RAW
            reach(DeploymentState.DISK_CLEARED)
        else:
            log.debug(f"Disk {disk.number} is uninitialized; nothing to clear")

        storage.initialize_disk(disk.number, layout.style)
        disk.partition_style = layout.style
        reach(DeploymentState.INITIALIZED)

        for spec in layout:
            storage.create_partition(disk.number, spec)
            if state is DeploymentState.INITIALIZED:
                reach(DeploymentState.PARTITIONED)
            if spec.filesystem is not FileSystem.NONE:
                storage.format_volume(spec.drive_letter, spec.filesystem, spec.label)
        reach(DeploymentState.FORMATTED)
    except UtilityFailure as error:
        error.state = state
        error.fatal = True
        log.critical(
            "Disk {} left in state '{}' after failure: {}", disk.number, state.value, error
        )
        raise
    except OSError as error:
        log.critical(
            "Disk {} left in state '{}' after failure: {}", disk.number, state.value, error
        )
        raise StorageOperationError(
            "Disk preparation", str(error), state=state, fatal=True
        ) from error

    log.info(
        "Disk {} partitioned as {}: {}",
        disk.number,
        layout.style.value,
        ", ".join(
            f"{spec.role.value}={spec.drive_letter or '-'}" for spec in layout
        ),
    )
    return layout
