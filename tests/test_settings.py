"""Tests for SandboxSettings and SettingsLoader."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from pathlib import Path

from isoenv.settings import SandboxSettings, SettingsError, SettingsLoader

_VALID_YAML = """\
temp_prefix: acceptance
poweroff_timeout: 10
apps:
  vagrant: /opt/vagrant/bin/vagrant
env:
  VAGRANT_LOG: debug
"""


class TestSandboxSettings:
    def test_defaults(self) -> None:
        cfg = SandboxSettings()
        assert cfg.temp_prefix == "isoenv"
        assert cfg.home_env_var == "VBOX_USER_HOME"
        assert cfg.manage_command == "VBoxManage"
        assert cfg.service_process == "VBoxSVC"
        assert cfg.poll_interval == 5.0
        assert cfg.drain_interval == 0.5
        assert cfg.poweroff_timeout == 5.0
        assert cfg.settle_delay == 0.5
        assert cfg.apps == {}
        assert cfg.env == {}


class TestSettingsLoader:
    def test_load_valid(self, tmp_path: Path) -> None:
        f = tmp_path / "isoenv.yaml"
        f.write_text(_VALID_YAML)
        cfg = SettingsLoader(f).load()
        assert cfg.temp_prefix == "acceptance"
        assert cfg.poweroff_timeout == 10.0
        assert cfg.apps == {"vagrant": "/opt/vagrant/bin/vagrant"}
        assert cfg.env == {"VAGRANT_LOG": "debug"}

    def test_env_var_interpolation(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("VAGRANT_BIN", "/custom/vagrant")
        f = tmp_path / "isoenv.yaml"
        f.write_text(_VALID_YAML.replace("/opt/vagrant/bin/vagrant", "${VAGRANT_BIN}"))
        assert SettingsLoader(f).load().apps["vagrant"] == "/custom/vagrant"

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        f = tmp_path / "empty.yaml"
        f.write_text("")
        assert SettingsLoader(f).load() == SandboxSettings()

    def test_file_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(SettingsError, match="Cannot read"):
            SettingsLoader(tmp_path / "missing.yaml").load()

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        f = tmp_path / "bad.yaml"
        f.write_text("{{{{invalid")
        with pytest.raises(SettingsError, match="YAML parse error"):
            SettingsLoader(f).load()

    def test_yaml_not_mapping(self, tmp_path: Path) -> None:
        f = tmp_path / "list.yaml"
        f.write_text("- item1\n- item2\n")
        with pytest.raises(SettingsError, match="must be a mapping"):
            SettingsLoader(f).load()

    def test_validation_error(self, tmp_path: Path) -> None:
        f = tmp_path / "neg.yaml"
        f.write_text("poweroff_timeout: -1\n")
        with pytest.raises(SettingsError, match="poweroff_timeout"):
            SettingsLoader(f).load()
