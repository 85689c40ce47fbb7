"""Sandbox settings and their YAML loader."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError


class SettingsError(Exception):
    """Raised when a settings file fails parsing or validation."""


class SandboxSettings(BaseModel):
    """Configuration shared by the environment, executor and VM cleanup."""

    temp_prefix: str = Field(default="isoenv", description="Prefix for the ephemeral root directory.")
    home_env_var: str = Field(default="VBOX_USER_HOME", description="Provider-specific home variable.")
    manage_command: str = Field(default="VBoxManage", description="Provider management CLI.")
    service_process: str = Field(default="VBoxSVC", description="Provider backing service process name.")
    poll_interval: float = Field(default=5.0, gt=0, description="Readiness wait bound when no timeout is set.")
    drain_interval: float = Field(default=0.5, gt=0, description="Sleep between exit probes once output has ended.")
    read_chunk_size: int = Field(default=4096, gt=0, description="Max bytes read per ready stream.")
    poweroff_timeout: float = Field(default=5.0, gt=0, description="Timeout for a VM power-off command.")
    settle_delay: float = Field(default=0.5, ge=0, description="Pause between power-off and unregister.")
    apps: dict[str, str] = Field(default_factory=dict, description="Command name -> replacement executable.")
    env: dict[str, str] = Field(default_factory=dict, description="Extra env vars for every command.")


class SettingsLoader:
    """Load and validate a YAML settings file into :class:`SandboxSettings`."""

    def __init__(self, path: Path) -> None:
        self._path = path

    def load(self) -> SandboxSettings:
        """Read YAML, interpolate env vars, and validate.

        ``${VAR}`` and ``$VAR`` references are expanded with
        :func:`os.path.expandvars` before parsing.  An empty file yields
        the defaults.

        Raises:
            SettingsError: On read, YAML or validation failures.
        """
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise SettingsError(f"Cannot read {self._path}: {exc}") from exc

        try:
            data: Any = yaml.safe_load(os.path.expandvars(raw))
        except yaml.YAMLError as exc:
            raise SettingsError(f"YAML parse error: {exc}") from exc

        if data is None:
            return SandboxSettings()
        if not isinstance(data, dict):
            raise SettingsError("Settings YAML must be a mapping")

        try:
            return SandboxSettings.model_validate(data)
        except ValidationError as exc:
            raise SettingsError(str(exc)) from exc
