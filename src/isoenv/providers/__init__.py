"""Virtualization provider integrations."""

from isoenv.providers.virtualbox import (
    VirtualMachine,
    VMCleaner,
    find_service_process,
    parse_vm_list,
)

__all__ = [
    "VMCleaner",
    "VirtualMachine",
    "find_service_process",
    "parse_vm_list",
]
