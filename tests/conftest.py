"""Shared pytest fixtures for MachineLink testing."""

import stat
from typing import List, Optional, Tuple
from unittest.mock import Mock

import paramiko
import pytest

from machinelink.services.local_connection import LocalConnection
from machinelink.services.machine import Machine
from machinelink.utils.retry import TerminationPolicy


# =============================================================================
# Local fixtures
# =============================================================================


@pytest.fixture
def sandbox(tmp_path):
    """Scratch directory path with a trailing slash, like Dir paths."""
    return str(tmp_path) + "/"


@pytest.fixture
def local_connection():
    """LocalConnection that never really sleeps while waiting on processes."""
    return LocalConnection(termination=TerminationPolicy(attempts=3, interval=0.0), sleep=Mock())


@pytest.fixture
def local_machine():
    return Machine("localhost")


# =============================================================================
# Fake paramiko objects
# =============================================================================


class FakeChannel:
    """Scripted stand-in for a paramiko Channel.

    ``stdout`` and ``stderr`` are queues of chunks handed out one per recv
    call. The exit status becomes ready once both queues are drained. Under a
    real pty the remote stderr arrives on stdout, so failing commands are
    scripted as stdout text plus a non-zero ``exit_status``.
    """

    def __init__(self, stdout: Optional[List[str]] = None, stderr: Optional[List[str]] = None,
                 exit_status: int = 0):
        self.exit_status = exit_status
        self.stdout = [chunk.encode("utf-8") for chunk in (stdout or [])]
        self.stderr = [chunk.encode("utf-8") for chunk in (stderr or [])]
        self.sent: List[bytes] = []
        self.calls: List[Tuple[str, str]] = []
        self.closed = False

    def get_pty(self, *args, **kwargs):
        self.calls.append(("get_pty", ""))

    def exec_command(self, command):
        self.calls.append(("exec_command", command))

    def recv_ready(self):
        return bool(self.stdout)

    def recv(self, nbytes):
        return self.stdout.pop(0)

    def recv_stderr_ready(self):
        return bool(self.stderr)

    def recv_stderr(self, nbytes):
        return self.stderr.pop(0)

    def exit_status_ready(self):
        return not self.stdout and not self.stderr

    def recv_exit_status(self):
        return self.exit_status

    def sendall(self, data):
        self.sent.append(data)

    def close(self):
        self.closed = True


class FakeTransport:
    """Hands out the given channels in order from open_session()."""

    def __init__(self, *channels: FakeChannel):
        self.channels = list(channels)
        self.opened: List[FakeChannel] = []

    def open_session(self):
        channel = self.channels.pop(0)
        self.opened.append(channel)
        return channel

    def is_active(self):
        return True


def sftp_attrs(filename: str, is_dir: bool = False, size: int = 0,
               mtime: int = 1700000000) -> paramiko.SFTPAttributes:
    attrs = paramiko.SFTPAttributes()
    attrs.filename = filename
    attrs.st_mode = (stat.S_IFDIR | 0o755) if is_dir else (stat.S_IFREG | 0o644)
    attrs.st_size = size
    attrs.st_atime = mtime
    attrs.st_mtime = mtime
    return attrs


@pytest.fixture
def fake_channel():
    return FakeChannel


@pytest.fixture
def fake_transport():
    return FakeTransport


@pytest.fixture
def mock_ssh_client():
    """Mock paramiko.SSHClient with an SFTP client and an active transport."""
    client = Mock()
    client.open_sftp.return_value = Mock()
    client.get_transport.return_value = FakeTransport()
    return client


@pytest.fixture
def ssh_connection(mock_ssh_client):
    from machinelink.services.ssh_connection import SSHConnection

    return SSHConnection(
        "web1",
        "deploy",
        password="hunter2",
        client_factory=lambda: mock_ssh_client,
        termination=TerminationPolicy(attempts=3, interval=0.0),
        sleep=Mock(),
    )
