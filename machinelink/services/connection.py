"""
Connection capability contract.

Every transport (local syscalls, SSH/SFTP, the HTTP agent) implements the
same set of file, directory, process and command operations with the same
external semantics. Transport-native failures (errno, SFTP status codes,
HTTP status codes) are translated into machinelink.utils.errors before
they leave a connection.
"""

from __future__ import annotations

import abc
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from machinelink.models.records import Access, ProcessRecord, StatRecord
from machinelink.utils.errors import NameCannotContainSlash, RefusedPath

logger = logging.getLogger(__name__)


class ConnectionType(str, Enum):
    """Transports a Machine can use."""
    LOCAL = "local"
    SSH = "ssh"
    AGENT = "agent"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ERROR = "error"


class Connection(abc.ABC):
    """Abstract base class for all connections."""

    connection_type: ConnectionType

    def __init__(self):
        self.state = ConnectionState.DISCONNECTED
        self.last_activity: Optional[datetime] = None

    @property
    def is_remote(self) -> bool:
        return self.connection_type != ConnectionType.LOCAL

    # File contents

    @abc.abstractmethod
    def read(self, path: str) -> bytes:
        """Return the raw contents of a file."""

    @abc.abstractmethod
    def write(self, path: str, data: Union[bytes, str]) -> bool:
        """Overwrite a file with ``data``."""

    # Entries

    @abc.abstractmethod
    def destroy(self, path: str) -> None:
        """Remove a file or a whole directory tree."""

    @abc.abstractmethod
    def purge(self, path: str) -> None:
        """Remove the contents of a directory, keeping the directory."""

    @abc.abstractmethod
    def create_dir(self, path: str, attrs: Optional[Dict[str, Any]] = None) -> None:
        """Create a directory and any missing parents."""

    @abc.abstractmethod
    def rename(self, path: str, name: str, new_name: str) -> bool:
        """Rename ``name`` to ``new_name`` inside directory ``path``."""

    @abc.abstractmethod
    def copy(self, src: str, dst: str) -> bool:
        """Recursively copy an entry on this machine."""

    @abc.abstractmethod
    def move(self, src: str, dst: str) -> bool:
        """Move an entry on this machine."""

    @abc.abstractmethod
    def touch(self, path: str) -> None:
        """Create an empty file or bump its timestamps."""

    @abc.abstractmethod
    def is_directory(self, path: str) -> bool:
        pass

    @abc.abstractmethod
    def exists(self, path: str) -> bool:
        pass

    @abc.abstractmethod
    def list_entries(self, path: str, include_hidden: bool = False) -> List[str]:
        """Sorted names in ``path``; directories carry a trailing slash."""

    @abc.abstractmethod
    def glob(self, path: str, pattern: Optional[str] = None) -> List[str]:
        """Names under ``path`` matching ``pattern``, directories first."""

    @abc.abstractmethod
    def stat(self, path: str) -> StatRecord:
        pass

    @abc.abstractmethod
    def set_access(self, path: str, access: Access) -> None:
        pass

    @abc.abstractmethod
    def size(self, path: str) -> int:
        """Size in bytes, recursive for directories."""

    @abc.abstractmethod
    def read_archive(self, path: str) -> bytes:
        """Tar archive of an entry; the entry name is the archive root."""

    @abc.abstractmethod
    def write_archive(self, archive: bytes, dir_path: str) -> None:
        """Extract a tar archive into ``dir_path``."""

    # Processes and commands

    @abc.abstractmethod
    def list_processes(self) -> List[ProcessRecord]:
        pass

    @abc.abstractmethod
    def is_process_alive(self, pid: int) -> bool:
        pass

    @abc.abstractmethod
    def kill_process(self, pid: int) -> None:
        """Terminate a process; a process that is already gone is not an error."""

    @abc.abstractmethod
    def execute(self, command: str, user: Optional[str] = None, background: bool = False) -> Union[str, int]:
        """Run a shell command.

        Returns stdout in the foreground, or the pid of the spawned shell when
        ``background`` is set.
        """

    # Transport

    @abc.abstractmethod
    def is_alive(self) -> bool:
        pass

    def ensure_tunnel(self, options: Optional[Dict[str, Any]] = None) -> None:
        """Set up the transport ahead of time (no-op unless overridden)."""

    def close(self) -> None:
        """Release transport handles."""
        self._update_state(ConnectionState.DISCONNECTED)

    # Context manager support
    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # Shared helpers

    @staticmethod
    def _check_new_name(path: str, name: str, new_name: str) -> None:
        if "/" in new_name:
            raise NameCannotContainSlash(f"{path} rename {name} to {new_name}")

    @staticmethod
    def _refuse_root(path: str, operation: str) -> None:
        if path.rstrip("/") == "":
            raise RefusedPath(f"refusing to {operation} /")

    @staticmethod
    def _sorted_listing(dirs: Iterable[str], files: Iterable[str]) -> List[str]:
        """Directories (slash-suffixed, sorted) followed by sorted files."""
        return sorted(d.rstrip("/") + "/" for d in dirs) + sorted(files)

    @staticmethod
    def _is_hidden(name: str) -> bool:
        return name.startswith(".")

    @staticmethod
    def _as_bytes(data: Union[bytes, str]) -> bytes:
        if isinstance(data, str):
            return data.encode("utf-8")
        return data

    @staticmethod
    def _normalize_attrs(attrs: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """Accept both ``mode`` and ``permissions`` for the same setting."""
        attrs = dict(attrs or {})
        if "permissions" in attrs and "mode" not in attrs:
            attrs["mode"] = attrs["permissions"]
        attrs.pop("permissions", None)
        return attrs

    def _update_state(self, state: ConnectionState) -> None:
        self.state = state
        self.last_activity = datetime.now()
        logger.debug(f"{self.connection_type.value} connection state updated to {state.value}")
