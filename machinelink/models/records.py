"""
Records returned by connections: stat results, process entries, access specs.
"""

import os
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from machinelink.utils.errors import UnknownOwner


class StatRecord(BaseModel):
    """Stat information for a file or directory.

    ``ctime`` is only available from local connections; remote transports
    leave it as None.
    """

    size: int = Field(..., ge=0, description="Size in bytes (not recursive for dirs)")
    mode: int = Field(..., ge=0, description="Raw st_mode bits")
    atime: datetime = Field(..., description="Last access time")
    mtime: datetime = Field(..., description="Last modification time")
    ctime: Optional[datetime] = Field(None, description="Inode change time")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "StatRecord":
        return cls(**data)


class ProcessRecord(BaseModel):
    """Normalized process metadata."""

    pid: int = Field(..., description="Process id")
    parent_pid: int = Field(0, description="Parent process id")
    uid: int = Field(0, description="Owning uid")
    user: Optional[str] = Field(None, description="User name resolved from uid")
    command: str = Field("", description="Executable name")
    cmdline: str = Field("", description="Full command line")
    mem: int = Field(0, description="Resident memory in KB")
    cpu: int = Field(0, description="CPU time in ticks")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "ProcessRecord":
        return cls(**data)


ROLES = ("user", "group", "other")
PERMISSIONS = ("read", "write", "execute")

_BITS = {
    ("user", "read"): 0o400,
    ("user", "write"): 0o200,
    ("user", "execute"): 0o100,
    ("group", "read"): 0o040,
    ("group", "write"): 0o020,
    ("group", "execute"): 0o010,
    ("other", "read"): 0o004,
    ("other", "write"): 0o002,
    ("other", "execute"): 0o001,
}


class Access(BaseModel):
    """Ownership and permission bits to apply to an entry."""

    user: Optional[str] = None
    group: Optional[str] = None
    user_read: bool = False
    user_write: bool = False
    user_execute: bool = False
    group_read: bool = False
    group_write: bool = False
    group_execute: bool = False
    other_read: bool = False
    other_write: bool = False
    other_execute: bool = False

    @property
    def octal_permissions(self) -> int:
        mode = 0
        for (role, perm), bit in _BITS.items():
            if getattr(self, f"{role}_{perm}"):
                mode |= bit
        return mode

    @classmethod
    def from_mode(cls, mode: int, user: Optional[str] = None, group: Optional[str] = None) -> "Access":
        flags = {
            f"{role}_{perm}": bool(mode & bit) for (role, perm), bit in _BITS.items()
        }
        return cls(user=user, group=group, **flags)

    def to_fields(self) -> Dict[str, str]:
        """Flatten into string fields for the agent wire format."""
        fields = {}
        if self.user:
            fields["user"] = self.user
        if self.group:
            fields["group"] = self.group
        for role in ROLES:
            for perm in PERMISSIONS:
                if getattr(self, f"{role}_{perm}"):
                    fields[f"{role}_{perm}"] = "1"
        return fields

    @classmethod
    def from_fields(cls, fields: Dict[str, str]) -> "Access":
        data: Dict[str, Any] = {
            "user": fields.get("user") or None,
            "group": fields.get("group") or None,
        }
        for role in ROLES:
            for perm in PERMISSIONS:
                key = f"{role}_{perm}"
                data[key] = fields.get(key) in ("1", "true", "True")
        return cls(**data)

    def apply(self, full_path: str) -> None:
        uid = gid = -1
        if self.user or self.group:
            import grp
            import pwd

            if self.user:
                try:
                    uid = pwd.getpwnam(self.user).pw_uid
                except KeyError:
                    raise UnknownOwner(f"no such user: {self.user}") from None
            if self.group:
                try:
                    gid = grp.getgrnam(self.group).gr_gid
                except KeyError:
                    raise UnknownOwner(f"no such group: {self.group}") from None

        os.chmod(full_path, self.octal_permissions)
        if uid != -1 or gid != -1:
            os.chown(full_path, uid, gid)
