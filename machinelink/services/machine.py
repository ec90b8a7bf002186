"""
Machine: a single unix host, local or remote, behind one Connection.

No transport is opened when a Machine is built. A remote machine connects
on its first operation, or earlier through ``establish_connection``.
"""

import logging
import shlex
from typing import Any, Dict, List, Optional, Union

from machinelink.connectors.agent_connection import AgentConnection
from machinelink.models.entries import Entry
from machinelink.models.machine_config import MachineOptions, parse_host
from machinelink.models.records import Access, ProcessRecord, StatRecord
from machinelink.services.connection import Connection
from machinelink.services.local_connection import LocalConnection
from machinelink.services.ssh_connection import SSHConnection
from machinelink.services.transfer import TransferOrchestrator

logger = logging.getLogger(__name__)

LOCALHOST = "localhost"


class Machine:
    """A host identified by its hostname.

    Examples:
        local = Machine()
        local["/etc/hosts"].contents()

        web = Machine("deploy@web1:2222", password="...")
        web.bash("systemctl restart app", user="root")
    """

    def __init__(self, host: str = LOCALHOST, options: Optional[MachineOptions] = None, **overrides):
        if options is None:
            options = MachineOptions(**overrides)
        elif overrides:
            options = options.model_copy(update=overrides)
        self.options = options
        self.user: Optional[str] = None
        self.port: Optional[int] = None
        self.connection: Connection = self._build_connection(host)
        self._transfers = TransferOrchestrator()

    def _build_connection(self, host: str) -> Connection:
        options = self.options
        if host == LOCALHOST:
            self.host = host
            return LocalConnection(termination=options.termination)

        user, hostname, port = parse_host(host, options.user)
        self.host = hostname
        self.user = user

        if options.use_agent_protocol:
            self.port = options.agent_port
            logger.debug(f"Machine {hostname} uses the agent protocol on port {self.port}")
            return AgentConnection(
                hostname,
                port=options.agent_port,
                secret=options.agent_secret,
                timeout=options.connect_timeout,
            )

        self.port = port or options.port
        return SSHConnection(
            hostname,
            user,
            password=options.password,
            port=self.port,
            key_path=options.key_path,
            connect_timeout=options.connect_timeout,
            auto_add_host_keys=options.auto_add_host_keys,
            termination=options.termination,
        )

    @property
    def is_remote(self) -> bool:
        return self.connection.is_remote

    def establish_connection(self, options: Optional[Dict[str, Any]] = None) -> None:
        """Open the transport ahead of time.

        ``options`` may carry ``timeout`` in seconds, or ``"infinite"``.
        """
        self.connection.ensure_tunnel(options or {})

    def is_alive(self) -> bool:
        return self.connection.is_alive()

    def close(self) -> None:
        self.connection.close()

    def __getitem__(self, path: str) -> Entry:
        return Entry.factory(path, self)

    # Cross-machine operations

    def copy(self, src: Entry, dst: Entry) -> Entry:
        return self._transfers.copy(src, dst)

    def move(self, src: Entry, dst: Entry) -> Entry:
        return self._transfers.move(src, dst)

    # Commands and processes

    def bash(self, command: str, user: Optional[str] = None,
             env: Optional[Dict[str, Any]] = None,
             background: bool = False) -> Union[str, ProcessRecord]:
        """Run a shell command.

        Returns stdout, or with ``background`` the ProcessRecord of the
        spawned shell. Raises BashFailed on a non-zero exit.
        """
        command = command_with_environment(command, env)
        if not background:
            return self.connection.execute(command, user=user, background=False)

        pid = self.connection.execute(command, user=user, background=True)
        for process in self.processes():
            if process.pid == pid:
                return process
        # exited before the listing was taken
        return ProcessRecord(pid=pid)

    def processes(self) -> List[ProcessRecord]:
        return self.connection.list_processes()

    def is_process_alive(self, pid: int) -> bool:
        return self.connection.is_process_alive(pid)

    def kill_process(self, pid: int) -> None:
        self.connection.kill_process(pid)

    # Single-machine capabilities

    def read(self, path: str) -> bytes:
        return self.connection.read(path)

    def write(self, path: str, data: Union[bytes, str]) -> bool:
        return self.connection.write(path, data)

    def destroy(self, path: str) -> None:
        self.connection.destroy(path)

    def purge(self, path: str) -> None:
        self.connection.purge(path)

    def create_dir(self, path: str, attrs: Optional[Dict[str, Any]] = None) -> None:
        self.connection.create_dir(path, attrs)

    def rename(self, path: str, name: str, new_name: str) -> bool:
        return self.connection.rename(path, name, new_name)

    def touch(self, path: str) -> None:
        self.connection.touch(path)

    def is_directory(self, path: str) -> bool:
        return self.connection.is_directory(path)

    def exists(self, path: str) -> bool:
        return self.connection.exists(path)

    def list_entries(self, path: str, include_hidden: bool = False) -> List[str]:
        return self.connection.list_entries(path, include_hidden=include_hidden)

    def glob(self, path: str, pattern: Optional[str] = None) -> List[str]:
        return self.connection.glob(path, pattern)

    def stat(self, path: str) -> StatRecord:
        return self.connection.stat(path)

    def set_access(self, path: str, access: Access) -> None:
        self.connection.set_access(path, access)

    def size(self, path: str) -> int:
        return self.connection.size(path)

    def read_archive(self, path: str) -> bytes:
        return self.connection.read_archive(path)

    def write_archive(self, archive: bytes, dir_path: str) -> None:
        self.connection.write_archive(archive, dir_path)

    # Identity

    def __eq__(self, other):
        if not isinstance(other, Machine):
            return NotImplemented
        return self.host == other.host

    def __hash__(self):
        return hash(self.host)

    def __str__(self):
        return self.host

    def __repr__(self):
        return self.host

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


def command_with_environment(command: str, env: Optional[Dict[str, Any]]) -> str:
    """Prefix ``command`` with one ``export`` line per variable."""
    if not env:
        return command
    lines = [f"export {key}={shlex.quote(str(value))}" for key, value in env.items()]
    lines.append(command)
    return "\n".join(lines)
