"""isoenv — isolated environments for driving a virtualization CLI from tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

if TYPE_CHECKING:
    from isoenv.runtime.environment import IsolatedEnvironment as IsolatedEnvironment
    from isoenv.settings import SandboxSettings as SandboxSettings

_LAZY_EXPORTS = {
    "IsolatedEnvironment": "isoenv.runtime.environment",
    "SandboxSettings": "isoenv.settings",
}


def __getattr__(name: str) -> object:
    module_path = _LAZY_EXPORTS.get(name)
    if module_path is not None:
        import importlib

        mod = importlib.import_module(module_path)
        return getattr(mod, name)
    raise AttributeError(f"module 'isoenv' has no attribute {name!r}")
