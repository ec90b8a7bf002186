"""
Thin handles for files and directories on a Machine.

Handles carry only a path and the machine it lives on; every operation goes
straight to the machine's connection. Directory paths always end with "/".
"""

import posixpath
from typing import TYPE_CHECKING, List, Union

from machinelink.models.records import StatRecord

if TYPE_CHECKING:
    from machinelink.services.machine import Machine


class Entry:
    """A path on a machine."""

    is_dir = False

    def __init__(self, full_path: str, machine: "Machine"):
        self.full_path = full_path
        self.machine = machine

    @staticmethod
    def factory(full_path: str, machine: "Machine") -> "Entry":
        """Dir when the path ends with a slash, File otherwise."""
        if full_path.endswith("/"):
            return Dir(full_path, machine)
        return File(full_path, machine)

    @property
    def name(self) -> str:
        return posixpath.basename(self.full_path.rstrip("/"))

    @property
    def parent(self) -> "Dir":
        return Dir(posixpath.dirname(self.full_path.rstrip("/")), self.machine)

    @property
    def connection(self):
        return self.machine.connection

    @property
    def is_local(self) -> bool:
        return not self.machine.is_remote

    def exists(self) -> bool:
        return self.connection.exists(self.full_path)

    def stat(self) -> StatRecord:
        return self.connection.stat(self.full_path)

    def size(self) -> int:
        return self.connection.size(self.full_path)

    def destroy(self) -> None:
        self.connection.destroy(self.full_path)

    def rename(self, new_name: str) -> "Entry":
        self.connection.rename(self.parent.full_path, self.name, new_name)
        return type(self)(self.parent.full_path + new_name, self.machine)

    def copy_to(self, dst: "Entry") -> "Entry":
        return self.machine.copy(self, dst)

    def move_to(self, dst: "Entry") -> "Entry":
        return self.machine.move(self, dst)

    def __eq__(self, other):
        if not isinstance(other, Entry):
            return NotImplemented
        return (
            type(self) is type(other)
            and self.full_path == other.full_path
            and self.machine == other.machine
        )

    def __hash__(self):
        return hash((type(self).__name__, self.full_path, str(self.machine)))

    def __str__(self):
        return f"{self.machine}:{self.full_path}"

    def __repr__(self):
        return f"{type(self).__name__}({self.full_path!r}, {self.machine!r})"


class File(Entry):
    def contents(self) -> str:
        return self.connection.read(self.full_path).decode("utf-8")

    def write(self, data: Union[bytes, str]) -> "File":
        self.connection.write(self.full_path, data)
        return self

    def touch(self) -> "File":
        self.connection.touch(self.full_path)
        return self


class Dir(Entry):
    is_dir = True

    def __init__(self, full_path: str, machine: "Machine"):
        if not full_path.endswith("/"):
            full_path += "/"
        super().__init__(full_path, machine)

    def entries(self, include_hidden: bool = False) -> List[Entry]:
        names = self.connection.list_entries(self.full_path, include_hidden=include_hidden)
        return [Entry.factory(self.full_path + name, self.machine) for name in names]

    def glob(self, pattern: str = "*") -> List[Entry]:
        names = self.connection.glob(self.full_path, pattern)
        return [Entry.factory(self.full_path + name, self.machine) for name in names]

    def create(self) -> "Dir":
        self.connection.create_dir(self.full_path)
        return self

    def purge(self) -> None:
        self.connection.purge(self.full_path)

    def __getitem__(self, name: str) -> Entry:
        return Entry.factory(self.full_path + name.lstrip("/"), self.machine)
