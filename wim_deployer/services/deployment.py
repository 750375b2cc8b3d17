"""Deployment workflow.

Runs one deployment from request to bootable disk:

    validate request -> resolve disk -> allocate letters -> safety checks
    -> pre-flight (image + layout) -> clear/initialize/partition/format
    -> apply image -> write boot files -> done

Everything before the clear step is read-only and fails cleanly.
Everything from the clear step on is a one-way transition: a failure raises
a fatal UtilityFailure naming the last state reached, with no retry and no
rollback.
"""

from __future__ import annotations

import uuid
from typing import Iterable, Optional

from wim_deployer.domain import (
    DeploymentRequest,
    DeploymentResult,
    DeploymentState,
    PartitionLayout,
)
from wim_deployer.logging import operation_context
from wim_deployer.storage.boot import BootTool, build_boot_command
from wim_deployer.storage.diskmgmt import StorageService
from wim_deployer.storage.exceptions import UtilityFailure
from wim_deployer.storage.image import ImageTool, ProgressCallback
from wim_deployer.storage.layout import get_layout_strategy
from wim_deployer.storage.letters import allocate_drive_letters, get_used_drive_letters
from wim_deployer.storage.partitioner import ConfirmCallback, prepare_disk
from wim_deployer.storage.validation import (
    check_disk_safety,
    check_image_fits,
    validate_image_file,
    validate_image_path,
)


class StateTracker:
    """Holds the current workflow state and only lets it move forward."""

    def __init__(self, log) -> None:
        self.state = DeploymentState.IDLE
        self.log = log

    def advance(self, new_state: DeploymentState) -> None:
        if new_state.order <= self.state.order:
            raise RuntimeError(
                f"Illegal state transition {self.state.value} -> {new_state.value}"
            )
        self.log.debug(f"State: {self.state.value} -> {new_state.value}")
        self.state = new_state


def deploy(
    request: DeploymentRequest,
    *,
    storage: StorageService,
    image_tool: ImageTool,
    boot_tool: BootTool,
    used_letters: Optional[Iterable[str]] = None,
    confirm_clear: Optional[ConfirmCallback] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> DeploymentResult:
    """Deploy an image onto a disk and make it bootable.

    Args:
        request: What to deploy, and where
        storage: Storage management service
        image_tool: Image application utility
        boot_tool: Boot file installation utility
        used_letters: Snapshot of drive letters in use (queried from the host
            when omitted)
        confirm_clear: Asked before an initialized disk is cleared, when
            request.confirm is True
        progress_callback: Optional callback(lines, ratio) for image progress

    Returns:
        DeploymentResult in state DONE

    Raises:
        ValidationError: Bad request, missing image, unknown image index, disk
            too small for the layout or the image
        SafetyAbort: Removable/boot media without force, or clear declined
        AllocationError: Fewer than two free drive letters
        UtilityFailure: A storage, image or boot utility failed
    """
    request.validate()
    details = {
        "disk": request.disk_selector,
        "style": request.partition_style.value,
    }

    job_id = f"deploy-{uuid.uuid4().hex[:8]}"
    with operation_context("deploy", job_id=job_id, **details) as log:
        tracker = StateTracker(log)

        disk = storage.get_disk(number=request.disk_number, handle=request.disk_handle)
        log.info(f"Target: {disk.format_label()}")

        if used_letters is None:
            used_letters = get_used_drive_letters()
        letters = allocate_drive_letters(used_letters, count=2)
        log.info(f"Allocated drive letters {letters[0]}: and {letters[1]}:")

        check_disk_safety(disk, request.force)
        tracker.advance(DeploymentState.SAFETY_CHECKED)

        validate_image_path(request.image_path)
        images = image_tool.get_image_info(request.image_path)
        validate_image_file(request.image_path, request.image_index, images)
        strategy = get_layout_strategy(request.partition_style)
        layout: PartitionLayout = strategy.plan(
            disk.size_bytes, letters, os_label=request.os_label
        )
        check_image_fits(layout, disk.size_bytes, images.get(request.image_index))

        layout = prepare_disk(
            storage,
            disk,
            layout,
            confirm=request.confirm,
            confirm_clear=confirm_clear,
            on_state=tracker.advance,
        )

        try:
            image_tool.apply_image(
                request.image_path,
                request.image_index,
                layout.os.volume_root,
                progress_callback=progress_callback,
            )
            tracker.advance(DeploymentState.IMAGE_APPLIED)

            boot_command = build_boot_command(layout)
            log.debug(f"Boot command: {' '.join(boot_command.argv())}")
            boot_output = boot_tool.run(boot_command)
            if boot_output:
                log.info(f"bcdboot: {boot_output}")
            tracker.advance(DeploymentState.BOOT_CONFIGURED)
        except UtilityFailure as error:
            error.state = tracker.state
            error.fatal = True
            log.critical(
                "Disk {} left in state '{}' after failure: {}",
                disk.number,
                tracker.state.value,
                error,
            )
            raise
        except OSError as error:
            log.critical(
                "Disk {} left in state '{}' after failure: {}",
                disk.number,
                tracker.state.value,
                error,
            )
            raise UtilityFailure(
                f"Image or boot stage failed: {error}", state=tracker.state, fatal=True
            ) from error

        tracker.advance(DeploymentState.DONE)
        return DeploymentResult(
            request=request,
            disk=disk,
            layout=layout,
            boot_command=boot_command,
            state=tracker.state,
            job_id=job_id,
            boot_output=boot_output,
        )
