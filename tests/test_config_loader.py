"""Tests for configuration loading and override resolution."""

import json

import pytest

from shellyrpc.config_loader import (
    DEFAULT_DATA_UUID,
    DEFAULT_SERVICE_UUID,
    SOURCE_NAME,
    Config,
    GattConfig,
    resolve,
)


class TestResolve:
    """Test suite for resolve()."""

    @pytest.mark.parametrize("override, default, expected", [
        (None, "hci0", "hci0"),
        ("", "hci0", "hci0"),
        ("hci1", "hci0", "hci1"),
        (5.0, 10.0, 5.0),
        (None, 10.0, 10.0),
    ])
    def test_override_or_default(self, override, default, expected):
        assert resolve(override, default) == expected


class TestConfig:
    """Test suite for Config."""

    def test_defaults(self):
        config = Config()
        assert config.adapter == "hci0"
        assert config.gatt.service_uuid == DEFAULT_SERVICE_UUID
        assert config.gatt.data_uuid == DEFAULT_DATA_UUID
        assert config.source == SOURCE_NAME

    def test_missing_file_uses_defaults(self, tmp_path):
        assert Config.load(tmp_path / "missing.json") == Config()

    def test_default_path_in_home(self, tmp_path):
        path = tmp_path / ".config" / "shellyrpc" / "config.json"
        path.parent.mkdir(parents=True)
        path.write_text(json.dumps({"ADAPTER": "hci2"}))
        assert Config.load().adapter == "hci2"

    def test_load_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "ADAPTER": "hci1",
            "DATA_UUID": "AAAAAAAA-0000-0000-0000-000000000001",
            "TIMEOUT": 3,
            "SOURCE": "kitchen-panel",
        }))

        config = Config.load(path)

        assert config.adapter == "hci1"
        assert config.gatt.data_uuid == "aaaaaaaa-0000-0000-0000-000000000001"
        assert config.gatt.service_uuid == DEFAULT_SERVICE_UUID
        assert config.timeout == 3.0
        assert config.source == "kitchen-panel"

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"ADAPTER": "hci1", "CONNECT_TIMEOUT": 20}))
        monkeypatch.setenv("SHELLYRPC_ADAPTER", "hci3")
        monkeypatch.setenv("SHELLYRPC_CONNECT_TIMEOUT", "2.5")

        config = Config.load(path)

        assert config.adapter == "hci3"
        assert config.connect_timeout == 2.5

    def test_config_env_var_selects_file(self, tmp_path, monkeypatch):
        path = tmp_path / "other.json"
        path.write_text(json.dumps({"SOURCE": "via-env"}))
        monkeypatch.setenv("SHELLYRPC_CONFIG", str(path))
        assert Config.load().source == "via-env"

    def test_non_object_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[]")
        with pytest.raises(ValueError):
            Config.load(path)

    def test_with_overrides(self):
        config = Config().with_overrides(
            adapter="hci1",
            tx_ctrl_uuid="BBBBBBBB-0000-0000-0000-000000000002",
            timeout=None,
            service_uuid="",
        )
        assert config.adapter == "hci1"
        assert config.gatt.tx_ctrl_uuid == "bbbbbbbb-0000-0000-0000-000000000002"
        assert config.gatt.service_uuid == DEFAULT_SERVICE_UUID
        assert config.timeout == Config().timeout

    def test_with_overrides_leaves_original_alone(self):
        config = Config()
        config.with_overrides(adapter="hci9")
        assert config.adapter == "hci0"

    @pytest.mark.parametrize("value", ["not-a-uuid", "1234"])
    def test_invalid_uuid(self, value):
        with pytest.raises(ValueError):
            GattConfig(data_uuid=value)

    def test_invalid_timeout(self):
        with pytest.raises(ValueError):
            Config(timeout=0)

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "config.json"
        config = Config(adapter="hci1", connect_timeout=4.0, source="saved")
        config.save(path)
        assert Config.load(path) == config

    @pytest.mark.parametrize("adapter", ["hci 0", "hci0\n", "/org/bluez/hci0", "", "HCI0"])
    def test_invalid_adapter(self, adapter):
        with pytest.raises(ValueError, match="adapter"):
            Config(adapter=adapter)

    def test_invalid_adapter_from_env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("SHELLYRPC_ADAPTER", "hci-1")
        with pytest.raises(ValueError, match="adapter"):
            Config.load(tmp_path / "missing.json")
