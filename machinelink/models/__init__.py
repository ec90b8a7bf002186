"""Models package for MachineLink."""
from .machine_config import MachineOptions
from .records import Access, ProcessRecord, StatRecord

__all__ = [
    "MachineOptions",
    "Access",
    "ProcessRecord",
    "StatRecord",
]
