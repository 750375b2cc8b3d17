"""
Pytest configuration and shared fixtures for wim-deployer tests.

The storage, image and boot utilities are replaced by in-memory fakes that
record every call, so the workflow can be checked without a Windows host.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from loguru import logger

from wim_deployer.config import settings
from wim_deployer.domain import (
    MB,
    BootCommand,
    DeploymentRequest,
    DiskTarget,
    FileSystem,
    PartitionSpec,
    PartitionStyle,
)
from wim_deployer.storage.exceptions import (
    BootConfigError,
    ImageApplyError,
    StorageOperationError,
)


DISK_SIZE = 64 * 1024 * MB  # 64 GiB


# ==============================================================================
# Fake collaborators
# ==============================================================================


class FakeStorageService:
    """Records storage calls; raises on the operation named in ``fail_on``."""

    def __init__(self, disk: DiskTarget, fail_on: Optional[str] = None):
        self.disk = disk
        self.fail_on = fail_on
        self.calls: List[tuple] = []
        self._next_partition = 1

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if self.fail_on == name:
            raise StorageOperationError(name, "simulated failure")

    @property
    def mutations(self) -> List[tuple]:
        return [call for call in self.calls if call[0] not in ("get_disk", "list_disks")]

    def get_disk(self, number=None, handle=None) -> DiskTarget:
        self.calls.append(("get_disk", number, handle))
        return self.disk

    def list_disks(self) -> List[DiskTarget]:
        self.calls.append(("list_disks",))
        return [self.disk]

    def clear_disk(self, number: int) -> None:
        self._record("clear_disk", number)

    def initialize_disk(self, number: int, style: PartitionStyle) -> None:
        self._record("initialize_disk", number, style)

    def create_partition(self, number: int, spec: PartitionSpec) -> int:
        self._record("create_partition", number, spec)
        partition_number = self._next_partition
        self._next_partition += 1
        return partition_number

    def format_volume(
        self, drive_letter: str, filesystem: FileSystem, label: Optional[str]
    ) -> None:
        self._record("format_volume", drive_letter, filesystem, label)


class FakeImageTool:
    def __init__(self, indexes=(1, 2), fail: bool = False, sizes=None):
        self.indexes = list(indexes)
        self.sizes = dict(sizes or {})
        self.fail = fail
        self.applied: List[tuple] = []

    def get_image_info(self, image_path: Path) -> Dict[int, Optional[int]]:
        return {index: self.sizes.get(index) for index in self.indexes}

    def apply_image(self, image_path, index, target_root, progress_callback=None):
        self.applied.append((Path(image_path), index, target_root))
        if self.fail:
            raise ImageApplyError(str(image_path), index, "insufficient space (error 112)")
        if progress_callback:
            progress_callback(["Image applied"], 1.0)


class FakeBootTool:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.commands: List[BootCommand] = []

    def run(self, command: BootCommand) -> str:
        self.commands.append(command)
        if self.fail:
            raise BootConfigError("bcdboot failed with code 1: Failure when attempting to copy boot files.")
        return "Boot files successfully created."


# ==============================================================================
# Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def default_settings():
    """Run every test against the built-in defaults, not the user's settings file."""
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)
    yield settings.settings_store
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)


@pytest.fixture
def log_records():
    """Capture loguru records emitted during the test."""
    records: List[Dict[str, Any]] = []
    handler_id = logger.add(lambda message: records.append(message.record), level="TRACE")
    yield records
    logger.remove(handler_id)


@pytest.fixture
def image_file(tmp_path) -> Path:
    path = tmp_path / "install.wim"
    path.write_bytes(b"MSWIM\0\0\0")
    return path


@pytest.fixture
def raw_disk() -> DiskTarget:
    return DiskTarget(
        number=1,
        model="Samsung SSD 870 EVO 500GB",
        partition_style=PartitionStyle.RAW,
        size_bytes=DISK_SIZE,
    )


@pytest.fixture
def gpt_disk() -> DiskTarget:
    return DiskTarget(
        number=1,
        model="Samsung SSD 870 EVO 500GB",
        partition_style=PartitionStyle.GPT,
        size_bytes=DISK_SIZE,
    )


@pytest.fixture
def usb_disk() -> DiskTarget:
    return DiskTarget(
        number=2,
        model="SanDisk Cruzer USB Device",
        partition_style=PartitionStyle.MBR,
        size_bytes=DISK_SIZE,
    )


@pytest.fixture
def make_request(image_file):
    def _make(**overrides) -> DeploymentRequest:
        values = {"image_path": image_file, "disk_number": 1}
        values.update(overrides)
        return DeploymentRequest(**values)

    return _make


@pytest.fixture
def image_tool() -> FakeImageTool:
    return FakeImageTool()


@pytest.fixture
def boot_tool() -> FakeBootTool:
    return FakeBootTool()


@pytest.fixture
def disk_json() -> Dict[str, Any]:
    """A Get-Disk record as emitted by ConvertTo-Json."""
    return {
        "Number": 1,
        "Model": "Samsung SSD 870 EVO 500GB ",
        "FriendlyName": "Samsung SSD 870 EVO 500GB",
        "PartitionStyle": 2,
        "Size": 500107862016,
        "Path": "\\\\?\\scsi#disk&ven_samsung&prod_ssd_870#4&1a2b3c4d&0&000100#{53f56307-b6bf-11d0-94f2-00a0c91efb8b}",
        "IsBoot": False,
        "IsSystem": False,
    }
