"""
Agent connection: every capability call becomes one HTTP request to the
machinelink agent listening on the target host.
"""

import logging
from typing import Any, Dict, List, Optional, Union

import httpx

from machinelink.connectors.agent_protocol import (
    AGENT_PORT,
    AgentAction,
    AgentMessage,
    decode_structured,
    raise_for_status,
)
from machinelink.models.records import Access, ProcessRecord, StatRecord
from machinelink.services.connection import Connection, ConnectionState, ConnectionType
from machinelink.utils.errors import FailedTransmit

logger = logging.getLogger(__name__)


class AgentConnection(Connection):
    """Connection to a remote machine through the HTTP agent."""

    connection_type = ConnectionType.AGENT

    def __init__(self, host: str, port: int = AGENT_PORT, secret: Optional[str] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.BaseTransport] = None):
        super().__init__()
        self.host = host
        self.port = port
        self.secret = secret
        self.timeout = timeout
        self._transport = transport
        self.client: Optional[httpx.Client] = None

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def _connect(self, timeout: Optional[float] = None) -> httpx.Client:
        headers = {}
        if self.secret:
            headers["Authorization"] = f"Bearer {self.secret}"
        self.client = httpx.Client(
            base_url=self.base_url,
            timeout=timeout if timeout is not None else self.timeout,
            headers=headers,
            transport=self._transport,
        )
        self._update_state(ConnectionState.CONNECTED)
        logger.info(f"Agent connection ready for {self.base_url}")
        return self.client

    def transmit(self, message: AgentMessage) -> bytes:
        """Send one message and return the raw response body."""
        client = self.client or self._connect()
        query, body = message.encode()
        try:
            response = client.post(f"/?{query}", content=body)
        except httpx.RequestError as e:
            self._update_state(ConnectionState.ERROR)
            raise FailedTransmit(f"{self.base_url}: {e}")

        raise_for_status(response.status_code, response.content)
        return response.content

    def _call(self, action: AgentAction, payload: Optional[bytes] = None, **fields) -> bytes:
        return self.transmit(AgentMessage(action=action.value, fields=fields, payload=payload))

    def read(self, path: str) -> bytes:
        return self._call(AgentAction.FILE_CONTENTS, full_path=path)

    def write(self, path: str, data: Union[bytes, str]) -> bool:
        self._call(AgentAction.WRITE_FILE, payload=self._as_bytes(data), full_path=path)
        return True

    def destroy(self, path: str) -> None:
        self._call(AgentAction.DESTROY, full_path=path)

    def purge(self, path: str) -> None:
        self._call(AgentAction.PURGE, full_path=path)

    def create_dir(self, path: str, attrs: Optional[Dict[str, Any]] = None) -> None:
        attrs = self._normalize_attrs(attrs)
        fields = {"full_path": path}
        if "mode" in attrs:
            fields["mode"] = oct(attrs["mode"])
        self._call(AgentAction.CREATE_DIR, **fields)

    def rename(self, path: str, name: str, new_name: str) -> bool:
        self._check_new_name(path, name, new_name)
        self._call(AgentAction.RENAME, path=path, name=name, new_name=new_name)
        return True

    def copy(self, src: str, dst: str) -> bool:
        self._call(AgentAction.COPY, src=src, dst=dst)
        return True

    def move(self, src: str, dst: str) -> bool:
        self._call(AgentAction.MOVE, src=src, dst=dst)
        return True

    def touch(self, path: str) -> None:
        self._call(AgentAction.TOUCH, full_path=path)

    def is_directory(self, path: str) -> bool:
        return bool(decode_structured(self._call(AgentAction.IS_DIRECTORY, full_path=path)))

    def exists(self, path: str) -> bool:
        return bool(decode_structured(self._call(AgentAction.EXISTS, full_path=path)))

    def list_entries(self, path: str, include_hidden: bool = False) -> List[str]:
        body = self._call(AgentAction.ENTRIES, full_path=path, include_hidden=include_hidden)
        return decode_structured(body) or []

    def glob(self, path: str, pattern: Optional[str] = None) -> List[str]:
        body = self._call(AgentAction.INDEX, base_path=path, glob=pattern or "*")
        return decode_structured(body) or []

    def stat(self, path: str) -> StatRecord:
        return StatRecord.from_wire(decode_structured(self._call(AgentAction.STAT, full_path=path)))

    def set_access(self, path: str, access: Access) -> None:
        self._call(AgentAction.SET_ACCESS, full_path=path, **access.to_fields())

    def size(self, path: str) -> int:
        return int(decode_structured(self._call(AgentAction.SIZE, full_path=path)))

    def read_archive(self, path: str) -> bytes:
        return self._call(AgentAction.READ_ARCHIVE, full_path=path)

    def write_archive(self, archive: bytes, dir_path: str) -> None:
        self._call(AgentAction.WRITE_ARCHIVE, payload=archive, dir=dir_path)

    def list_processes(self) -> List[ProcessRecord]:
        records = decode_structured(self._call(AgentAction.PROCESSES)) or []
        return [ProcessRecord.from_wire(record) for record in records]

    def is_process_alive(self, pid: int) -> bool:
        return bool(decode_structured(self._call(AgentAction.PROCESS_ALIVE, pid=int(pid))))

    def kill_process(self, pid: int) -> None:
        self._call(AgentAction.KILL_PROCESS, pid=int(pid))

    def execute(self, command: str, user: Optional[str] = None, background: bool = False) -> Union[str, int]:
        body = self._call(
            AgentAction.BASH,
            payload=command.encode("utf-8"),
            user=user or "",
            background=background,
        )
        if background:
            return int(decode_structured(body))
        return body.decode("utf-8")

    def is_alive(self) -> bool:
        """Alive means a trivial listing goes through."""
        try:
            self.glob("/")
        except Exception as e:
            logger.debug(f"Agent at {self.base_url} is not responding: {e}")
            return False
        return True

    def ensure_tunnel(self, options: Optional[Dict[str, Any]] = None) -> None:
        """Build the HTTP client (honouring ``timeout``) and check the agent answers."""
        timeout = (options or {}).get("timeout")
        if timeout == "infinite":
            timeout = None
        self._connect(timeout)
        if not self.is_alive():
            raise FailedTransmit(f"agent at {self.base_url} did not answer")

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None
        super().close()
