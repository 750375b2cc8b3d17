"""
Tests for wim_deployer.config.settings module.

This test suite covers:
- Settings loading
- Defaults merged under the user's values
- Error handling for corrupted settings files
- Type conversion helpers (get_int, get_markers)
"""

import json

from wim_deployer.config import settings


class TestLoadSettings:
    """Tests for load_settings() function."""

    def test_load_defaults_when_no_file(self, tmp_path, monkeypatch):
        """Test that default settings are loaded when file doesn't exist."""
        monkeypatch.setattr(
            "wim_deployer.config.settings.SETTINGS_PATH", tmp_path / "missing.json"
        )

        settings.settings_store.values = {}
        settings.load_settings()

        assert settings.settings_store.values == settings.DEFAULT_SETTINGS

    def test_load_merges_with_defaults(self, tmp_path):
        settings_file = tmp_path / "settings.json"
        settings_file.write_text(json.dumps({"os_label": "Deployed", "extra": 1}))

        settings.load_settings(settings_file)

        assert settings.get_setting("os_label") == "Deployed"
        assert settings.get_setting("extra") == 1
        assert settings.get_setting("drive_letter_first") == "E"

    def test_corrupted_file_falls_back_to_defaults(self, tmp_path):
        settings_file = tmp_path / "settings.json"
        settings_file.write_text("{ not json")

        settings.load_settings(settings_file)

        assert settings.settings_store.values == settings.DEFAULT_SETTINGS

    def test_non_object_json_ignored(self, tmp_path):
        settings_file = tmp_path / "settings.json"
        settings_file.write_text(json.dumps(["USB"]))

        settings.load_settings(settings_file)

        assert settings.get_markers() == ("USB", "Flash")



class TestHelpers:
    def test_get_int(self, default_settings):
        default_settings.values["min_os_partition_mb"] = "8192"
        assert settings.get_int("min_os_partition_mb", 4096) == 8192

    def test_get_int_invalid_value(self, default_settings):
        default_settings.values["min_os_partition_mb"] = "lots"
        assert settings.get_int("min_os_partition_mb", 4096) == 4096

    def test_get_markers_single_string(self, default_settings):
        default_settings.values["removable_markers"] = "SD Card"
        assert settings.get_markers() == ("SD Card",)

    def test_get_markers_drops_empty(self, default_settings):
        default_settings.values["removable_markers"] = ["USB", "", None]
        assert settings.get_markers() == ("USB",)
