"""
MachineLink: one file, process and command interface for local and remote
machines (direct syscalls, SSH/SFTP, or the HTTP agent).
"""

from .models.entries import Dir, Entry, File
from .models.machine_config import MachineOptions
from .services.machine import Machine
from .utils.errors import (
    BashFailed,
    CrossNetworkMove,
    DoesNotExist,
    FailedTransmit,
    MachineLinkError,
    NameAlreadyExists,
    NameCannotContainSlash,
    NotAnEntry,
    NotAuthorized,
    PasswordRequired,
    RefusedPath,
    UnknownAction,
    UnknownOwner,
    UnsupportedTransfer,
)

__version__ = "0.1.0"

__all__ = [
    "Machine",
    "MachineOptions",
    "Entry",
    "File",
    "Dir",
    "MachineLinkError",
    "DoesNotExist",
    "NameAlreadyExists",
    "NameCannotContainSlash",
    "BashFailed",
    "NotAuthorized",
    "FailedTransmit",
    "UnknownAction",
    "NotAnEntry",
    "CrossNetworkMove",
    "PasswordRequired",
    "UnsupportedTransfer",
    "RefusedPath",
    "UnknownOwner",
]
