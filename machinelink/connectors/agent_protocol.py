"""
Wire format spoken between AgentConnection and the agent server.

A request is an HTTP POST to ``http://<host>:9000/?action=<name>&<field>=<value>...``
whose body is the raw payload (file contents, archive bytes, command text)
or empty. The response body is the raw result: strings and bytes as-is,
anything structured as YAML.

Errors come back as status 400 with ``<Kind>\\n<message>`` in the body. Only
the kinds listed in ERROR_KINDS can be reconstructed on the client.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Type
from urllib.parse import parse_qsl, urlencode

import yaml

from machinelink.utils.errors import (
    BashFailed,
    DoesNotExist,
    FailedTransmit,
    MachineLinkError,
    NameAlreadyExists,
    NameCannotContainSlash,
    NotAnEntry,
    NotAuthorized,
    RefusedPath,
    UnknownAction,
    UnknownOwner,
)

AGENT_PORT = 9000


class AgentAction(str, Enum):
    """Every capability the agent can be asked to perform."""
    WRITE_FILE = "write_file"
    FILE_CONTENTS = "file_contents"
    DESTROY = "destroy"
    PURGE = "purge"
    CREATE_DIR = "create_dir"
    RENAME = "rename"
    COPY = "copy"
    MOVE = "move"
    TOUCH = "touch"
    IS_DIRECTORY = "is_directory"
    EXISTS = "exists"
    ENTRIES = "entries"
    INDEX = "index"
    STAT = "stat"
    SET_ACCESS = "set_access"
    SIZE = "size"
    READ_ARCHIVE = "read_archive"
    WRITE_ARCHIVE = "write_archive"
    PROCESSES = "processes"
    PROCESS_ALIVE = "process_alive"
    KILL_PROCESS = "kill_process"
    BASH = "bash"


ERROR_KINDS: Dict[str, Type[MachineLinkError]] = {
    "DoesNotExist": DoesNotExist,
    "NameAlreadyExists": NameAlreadyExists,
    "NameCannotContainSlash": NameCannotContainSlash,
    "BashFailed": BashFailed,
    "UnknownAction": UnknownAction,
    "NotAnEntry": NotAnEntry,
    "RefusedPath": RefusedPath,
    "UnknownOwner": UnknownOwner,
}


@dataclass
class AgentMessage:
    """One request: an action, its string fields in order, and an optional body."""

    action: str
    fields: Dict[str, str] = field(default_factory=dict)
    payload: Optional[bytes] = None

    def encode(self) -> Tuple[str, bytes]:
        """Return (query string, request body)."""
        pairs = [("action", self.action)]
        pairs.extend((key, _to_field(value)) for key, value in self.fields.items())
        body = self.payload if self.payload is not None else b""
        if isinstance(body, str):
            body = body.encode("utf-8")
        return urlencode(pairs), body

    @classmethod
    def decode(cls, query_string: str, body: bytes) -> "AgentMessage":
        pairs = parse_qsl(query_string, keep_blank_values=True)
        fields = {}
        action = ""
        for key, value in pairs:
            if key == "action":
                action = value
            else:
                fields[key] = value
        return cls(action=action, fields=fields, payload=body or None)


def _to_field(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


def parse_bool(value: Optional[str]) -> bool:
    return (value or "").lower() in ("1", "true", "yes")


def encode_result(result: Any) -> bytes:
    """Serialize a capability result for the response body."""
    if result is None:
        return b""
    if isinstance(result, bytes):
        return result
    if isinstance(result, str):
        return result.encode("utf-8")
    if hasattr(result, "to_wire"):
        result = result.to_wire()
    elif isinstance(result, list):
        result = [item.to_wire() if hasattr(item, "to_wire") else item for item in result]
    return yaml.safe_dump(result).encode("utf-8")


def decode_structured(body: bytes) -> Any:
    return yaml.safe_load(body.decode("utf-8")) if body else None


def encode_error(error: MachineLinkError) -> bytes:
    return f"{type(error).__name__}\n{error.message}".encode("utf-8")


def parse_error(body: bytes) -> Tuple[Type[MachineLinkError], str]:
    """Split an error body into (exception class, message).

    Raises FailedTransmit when the kind is not one the agent may send.
    """
    text = body.decode("utf-8", errors="replace")
    kind, _, message = text.partition("\n")
    kind = kind.strip()
    if kind not in ERROR_KINDS:
        raise FailedTransmit(f"agent sent an unrecognized error kind: {kind!r}")
    return ERROR_KINDS[kind], message.rstrip("\n")


def raise_for_status(status_code: int, body: bytes) -> None:
    """Map an agent response status onto the error taxonomy."""
    if 200 <= status_code < 300:
        return
    if status_code == 401:
        raise NotAuthorized(body.decode("utf-8", errors="replace"))
    if status_code == 400:
        error_class, message = parse_error(body)
        raise error_class(message)
    raise FailedTransmit(f"agent responded with HTTP {status_code}")
