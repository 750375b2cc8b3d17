"""Tests for main.py - command-line entry point and exit codes."""

import pytest
from loguru import logger

from wim_deployer import main as main_module
from wim_deployer.domain import DeploymentState, PartitionStyle
from wim_deployer.main import (
    EXIT_ALLOCATION,
    EXIT_OK,
    EXIT_SAFETY,
    EXIT_UTILITY,
    EXIT_VALIDATION,
    build_parser,
    describe_error,
    main,
    prompt_clear,
)
from wim_deployer.storage.boot import BcdbootTool
from wim_deployer.storage.exceptions import ImageApplyError, StorageOperationError

from conftest import FakeBootTool, FakeImageTool, FakeStorageService


@pytest.fixture(autouse=True)
def isolated_logging():
    """main() reconfigures loguru; drop its sinks afterwards."""
    yield
    logger.remove()


@pytest.fixture
def free_letters(mocker):
    return mocker.patch(
        "wim_deployer.services.deployment.get_used_drive_letters",
        return_value={"C"},
    )


def _argv(tmp_path, image_file, *extra):
    return [
        "--disk-number",
        "1",
        "--image",
        str(image_file),
        "--log-dir",
        str(tmp_path / "logs"),
        *extra,
    ]


class TestParser:
    def test_defaults(self):
        args = build_parser().parse_args(["--disk-number", "1", "--image", "x.wim"])
        assert args.index == 1
        assert args.style == "GPT"
        assert args.confirm is True
        assert args.force is False

    def test_style_case_insensitive(self):
        args = build_parser().parse_args(["--style", "mbr"])
        assert args.style == "MBR"

    def test_disk_number_and_handle_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--disk-number", "1", "--disk-handle", "x"])

    def test_unknown_style_rejected(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--style", "APM"])


class TestMain:
    """Tests for main() with fake storage, image and boot tools."""

    def test_success_prints_done(self, tmp_path, image_file, raw_disk, free_letters, capsys):
        storage = FakeStorageService(raw_disk)
        boot_tool = FakeBootTool()

        code = main(
            _argv(tmp_path, image_file, "--style", "mbr"),
            storage=storage,
            image_tool=FakeImageTool(),
            boot_tool=boot_tool,
        )

        assert code == EXIT_OK
        assert capsys.readouterr().out.strip() == "Done."
        assert raw_disk.partition_style is PartitionStyle.MBR
        assert boot_tool.commands[0].firmware.value == "BIOS"
        assert (tmp_path / "logs" / "deploy.log").exists()

    def test_usb_disk_exit_code(self, tmp_path, image_file, usb_disk, free_letters, capsys):
        storage = FakeStorageService(usb_disk)

        code = main(
            _argv(tmp_path, image_file),
            storage=storage,
            image_tool=FakeImageTool(),
            boot_tool=FakeBootTool(),
        )

        assert code == EXIT_SAFETY
        captured = capsys.readouterr()
        assert "Done." not in captured.out
        assert "--force" in captured.err
        assert storage.mutations == []

    def test_declined_prompt(self, tmp_path, image_file, gpt_disk, free_letters, monkeypatch):
        monkeypatch.setattr("builtins.input", lambda prompt: "n")
        storage = FakeStorageService(gpt_disk)

        code = main(
            _argv(tmp_path, image_file),
            storage=storage,
            image_tool=FakeImageTool(),
            boot_tool=FakeBootTool(),
        )

        assert code == EXIT_SAFETY
        assert storage.mutations == []

    def test_no_confirm(self, tmp_path, image_file, gpt_disk, free_letters, monkeypatch):
        monkeypatch.setattr(
            "builtins.input", lambda prompt: pytest.fail("must not prompt")
        )

        code = main(
            _argv(tmp_path, image_file, "--no-confirm"),
            storage=FakeStorageService(gpt_disk),
            image_tool=FakeImageTool(),
            boot_tool=FakeBootTool(),
        )

        assert code == EXIT_OK

    def test_unknown_index_exit_code(self, tmp_path, image_file, raw_disk, free_letters):
        code = main(
            _argv(tmp_path, image_file, "--index", "4"),
            storage=FakeStorageService(raw_disk),
            image_tool=FakeImageTool(indexes=[1]),
            boot_tool=FakeBootTool(),
        )
        assert code == EXIT_VALIDATION

    def test_no_free_letters_exit_code(self, tmp_path, image_file, raw_disk, mocker):
        mocker.patch(
            "wim_deployer.services.deployment.get_used_drive_letters",
            return_value={chr(c) for c in range(ord("A"), ord("Z") + 1)},
        )

        code = main(
            _argv(tmp_path, image_file),
            storage=FakeStorageService(raw_disk),
            image_tool=FakeImageTool(),
            boot_tool=FakeBootTool(),
        )

        assert code == EXIT_ALLOCATION

    def test_fatal_failure_reports_state(
        self, tmp_path, image_file, raw_disk, free_letters, capsys
    ):
        code = main(
            _argv(tmp_path, image_file),
            storage=FakeStorageService(raw_disk),
            image_tool=FakeImageTool(fail=True),
            boot_tool=FakeBootTool(),
        )

        assert code == EXIT_UTILITY
        err = capsys.readouterr().err
        assert "FATAL" in err
        assert "formatted" in err

    def test_tool_start_failure_reports_state(
        self, tmp_path, image_file, raw_disk, free_letters, mocker, capsys
    ):
        mocker.patch("wim_deployer.storage.boot.find_tool", return_value="C:\\bcdboot.exe")
        mocker.patch(
            "wim_deployer.storage.boot.run_command",
            side_effect=OSError(193, "%1 is not a valid Win32 application"),
        )

        code = main(
            _argv(tmp_path, image_file),
            storage=FakeStorageService(raw_disk),
            image_tool=FakeImageTool(),
            boot_tool=BcdbootTool("bcdboot.exe"),
        )

        assert code == EXIT_UTILITY
        err = capsys.readouterr().err
        assert "FATAL" in err
        assert "image_applied" in err

    def test_label_from_settings(
        self, tmp_path, image_file, raw_disk, free_letters, default_settings
    ):
        default_settings.values["os_label"] = "Deployed"
        storage = FakeStorageService(raw_disk)

        main(
            _argv(tmp_path, image_file),
            storage=storage,
            image_tool=FakeImageTool(),
            boot_tool=FakeBootTool(),
        )

        formats = [call for call in storage.calls if call[0] == "format_volume"]
        assert formats[-1][3] == "Deployed"

    def test_missing_disk_is_usage_error(self, tmp_path, image_file, raw_disk):
        with pytest.raises(SystemExit) as exc_info:
            main(
                ["--image", str(image_file), "--log-dir", str(tmp_path)],
                storage=FakeStorageService(raw_disk),
            )
        assert exc_info.value.code == 2

    def test_missing_image_is_usage_error(self, tmp_path, raw_disk):
        with pytest.raises(SystemExit):
            main(
                ["--disk-number", "1", "--log-dir", str(tmp_path)],
                storage=FakeStorageService(raw_disk),
            )

    def test_list_disks(self, tmp_path, gpt_disk, capsys):
        gpt_disk.is_boot = True
        storage = FakeStorageService(gpt_disk)

        code = main(["--list-disks", "--log-dir", str(tmp_path)], storage=storage)

        assert code == EXIT_OK
        out = capsys.readouterr().out
        assert "Disk 1 Samsung SSD 870 EVO 500GB" in out
        assert "[boot]" in out
        assert storage.mutations == []


class TestPromptClear:
    @pytest.mark.parametrize("answer,expected", [("y", True), ("YES", True), ("", False), ("no", False)])
    def test_answers(self, gpt_disk, monkeypatch, answer, expected):
        monkeypatch.setattr("builtins.input", lambda prompt: answer)
        assert prompt_clear(gpt_disk) is expected

    def test_eof_declines(self, gpt_disk, monkeypatch):
        def no_input(prompt):
            raise EOFError

        monkeypatch.setattr("builtins.input", no_input)
        assert prompt_clear(gpt_disk) is False

    def test_warning_on_stderr(self, gpt_disk, monkeypatch, capsys):
        monkeypatch.setattr("builtins.input", lambda prompt: "n")
        prompt_clear(gpt_disk)
        assert "DESTROYED" in capsys.readouterr().err


class TestDescribeError:
    def test_fatal_error(self):
        error = StorageOperationError(
            "Format-Volume", "access denied", state=DeploymentState.INITIALIZED, fatal=True
        )
        message = describe_error(error)
        assert message.startswith("FATAL:")
        assert "initialized" in message

    def test_failed_clear_reports_unknown_contents(self):
        error = StorageOperationError(
            "Clear-Disk", "device busy", state=DeploymentState.SAFETY_CHECKED, fatal=True
        )
        message = describe_error(error)
        assert message.startswith("FATAL:")
        assert "safety_checked" in message
        assert "contents are unknown" in message
        assert "redeployed" not in message

    def test_non_fatal_error(self):
        error = ImageApplyError("install.wim", None, "image file not found")
        assert describe_error(error).startswith("Error:")

    def test_exit_codes_are_distinct(self):
        codes = {EXIT_OK, EXIT_VALIDATION, EXIT_SAFETY, EXIT_ALLOCATION, EXIT_UTILITY}
        assert len(codes) == 5
        assert main_module.EXIT_OK == 0
