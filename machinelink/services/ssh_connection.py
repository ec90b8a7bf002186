"""
SSH connection: SFTP for file operations, interactive shell sessions for
everything SFTP has no verb for (touch, mkdir -p, cp, processes, commands).
"""

import contextlib
import fnmatch
import logging
import os
import posixpath
import shlex
import socket
import stat as statmod
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

import paramiko

from machinelink.models.records import Access, ProcessRecord, StatRecord
from machinelink.services import process_snapshot
from machinelink.services.connection import Connection, ConnectionState, ConnectionType
from machinelink.services.shell_session import InteractiveShellSession
from machinelink.utils.errors import (
    DoesNotExist,
    FailedTransmit,
    NameAlreadyExists,
    NotAuthorized,
)
from machinelink.utils.retry import TerminationPolicy, poll_until

logger = logging.getLogger(__name__)


class SSHConnection(Connection):
    """Connection to a remote machine over SSH."""

    connection_type = ConnectionType.SSH

    def __init__(self, host: str, user: str, password: Optional[str] = None,
                 port: int = 22, key_path: Optional[str] = None,
                 connect_timeout: float = 10.0, auto_add_host_keys: bool = False,
                 termination: Optional[TerminationPolicy] = None,
                 client_factory: Callable[[], Any] = None,
                 sleep: Callable[[float], None] = time.sleep):
        super().__init__()
        self.host = host
        self.user = user
        self.password = password
        self.port = port or 22
        self.key_path = key_path
        self.connect_timeout = connect_timeout
        self.auto_add_host_keys = auto_add_host_keys
        self.termination = termination or TerminationPolicy()
        self._client_factory = client_factory or paramiko.SSHClient
        self._sleep = sleep
        self._client = None
        self._sftp = None

    # Transport

    @property
    def ssh(self):
        """The SSH client for this machine, connected on first use."""
        if self._client is None:
            self._connect(self.connect_timeout)
        return self._client

    @property
    def sftp(self):
        """SFTP sub-channel, opened once and reused."""
        if self._sftp is None:
            self._sftp = self.ssh.open_sftp()
        return self._sftp

    def _connect(self, timeout: Optional[float]) -> None:
        client = self._client_factory()
        client.load_system_host_keys()
        if self.auto_add_host_keys:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        else:
            client.set_missing_host_key_policy(paramiko.RejectPolicy())

        connect_params = {
            "hostname": self.host,
            "port": self.port,
            "username": self.user,
            "password": self.password,
            "timeout": timeout,
            "banner_timeout": timeout,
            "auth_timeout": timeout,
            "compress": False,
        }
        if self.key_path:
            connect_params["key_filename"] = os.path.expanduser(self.key_path)

        try:
            client.connect(**connect_params)
        except paramiko.AuthenticationException as e:
            self._update_state(ConnectionState.ERROR)
            raise NotAuthorized(f"{self.user}@{self.host}: {e}")
        except (paramiko.SSHException, socket.error) as e:
            self._update_state(ConnectionState.ERROR)
            raise FailedTransmit(f"{self.host}:{self.port}: {e}")

        self._client = client
        self._update_state(ConnectionState.CONNECTED)
        logger.info(f"SSH connection established to {self.user}@{self.host}:{self.port}")

    def ensure_tunnel(self, options: Optional[Dict[str, Any]] = None) -> None:
        """Open the SSH transport now instead of on first use."""
        if self._client is not None:
            return
        timeout = (options or {}).get("timeout", self.connect_timeout)
        if timeout == "infinite":
            timeout = None
        self._connect(timeout)

    def is_alive(self) -> bool:
        try:
            transport = self.ssh.get_transport()
        except (NotAuthorized, FailedTransmit):
            return False
        return bool(transport and transport.is_active())

    def close(self) -> None:
        if self._sftp is not None:
            self._sftp.close()
            self._sftp = None
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info(f"SSH connection closed to {self.host}:{self.port}")
        super().close()

    def session(self) -> InteractiveShellSession:
        """A fresh interactive session on this machine's transport."""
        return InteractiveShellSession(self.ssh.get_transport(), password=self.password)

    def run(self, command: str, missing_path: Optional[str] = None) -> str:
        """Run a command interactively.

        With ``missing_path`` set, output on stderr means that path does not
        exist; otherwise it is reported as BashFailed.
        """
        on_stderr = None
        if missing_path is not None:
            on_stderr = lambda data: DoesNotExist(missing_path)  # noqa: E731
        return self.session().run(command, on_stderr=on_stderr)

    @contextlib.contextmanager
    def _sftp_errors(self, path: str) -> Iterator[None]:
        """Translate SFTP status failures into DoesNotExist."""
        try:
            yield
        except PermissionError:
            raise
        except (IOError, paramiko.SFTPError):
            raise DoesNotExist(path)

    # File contents

    def read(self, path: str) -> bytes:
        with self._sftp_errors(path):
            with self.sftp.open(path, "rb") as f:
                f.prefetch()
                return f.read()

    def write(self, path: str, data: Union[bytes, str]) -> bool:
        with self._sftp_errors(path):
            with self.sftp.open(path, "wb") as f:
                f.write(self._as_bytes(data))
        return True

    # Entries

    def destroy(self, path: str) -> None:
        self._refuse_root(path, "destroy")
        with self._sftp_errors(path):
            attrs = self.sftp.lstat(path)
            if statmod.S_ISDIR(attrs.st_mode):
                self._rmtree(path)
            else:
                self.sftp.remove(path)

    def purge(self, path: str) -> None:
        self._refuse_root(path, "purge")
        with self._sftp_errors(path):
            for attrs in self.sftp.listdir_attr(path):
                child = posixpath.join(path, attrs.filename)
                if statmod.S_ISDIR(attrs.st_mode):
                    self._rmtree(child)
                else:
                    self.sftp.remove(child)

    def _rmtree(self, path: str) -> None:
        for attrs in self.sftp.listdir_attr(path):
            child = posixpath.join(path, attrs.filename)
            if statmod.S_ISDIR(attrs.st_mode):
                self._rmtree(child)
            else:
                self.sftp.remove(child)
        self.sftp.rmdir(path)

    def create_dir(self, path: str, attrs: Optional[Dict[str, Any]] = None) -> None:
        attrs = self._normalize_attrs(attrs)
        mode = f"-m {attrs['mode']:o} " if "mode" in attrs else ""
        self.run(f"mkdir -p {mode}{shlex.quote(path)}", missing_path=path)

    def rename(self, path: str, name: str, new_name: str) -> bool:
        self._check_new_name(path, name, new_name)
        old_full_path = posixpath.join(path, name)
        new_full_path = posixpath.join(path, new_name)
        if self.exists(new_full_path):
            raise NameAlreadyExists(f"{path} rename {name} to {new_name}")
        with self._sftp_errors(old_full_path):
            self.sftp.rename(old_full_path, new_full_path)
        return True

    def copy(self, src: str, dst: str) -> bool:
        self.run(f"cp -r {shlex.quote(src)} {shlex.quote(dst)}", missing_path=src)
        return True

    def move(self, src: str, dst: str) -> bool:
        self.run(f"mv {shlex.quote(src)} {shlex.quote(dst)}", missing_path=src)
        return True

    def touch(self, path: str) -> None:
        # no touch verb in SFTP
        self.run(f"touch {shlex.quote(path)}", missing_path=path)

    def is_directory(self, path: str) -> bool:
        with self._sftp_errors(path):
            return statmod.S_ISDIR(self.sftp.stat(path).st_mode)

    def exists(self, path: str) -> bool:
        try:
            self.is_directory(path)
        except DoesNotExist:
            return False
        return True

    def list_entries(self, path: str, include_hidden: bool = False) -> List[str]:
        with self._sftp_errors(path):
            listing = self.sftp.listdir_attr(path)

        results = []
        for attrs in listing:
            if attrs.filename in (".", ".."):
                continue
            if not include_hidden and self._is_hidden(attrs.filename):
                continue
            is_dir = statmod.S_ISDIR(attrs.st_mode)
            results.append(attrs.filename + "/" if is_dir else attrs.filename)
        return sorted(results)

    def glob(self, path: str, pattern: Optional[str] = None) -> List[str]:
        pattern = pattern or "*"
        dirs, files = [], []
        with self._sftp_errors(path):
            for name, is_dir in self._glob_walk(path, pattern.split("/"), ""):
                (dirs if is_dir else files).append(name)
        return self._sorted_listing(dirs, files)

    def _glob_walk(self, base: str, parts: List[str], prefix: str):
        """Match ``parts`` (a split glob) segment by segment under ``base``."""
        segment, rest = parts[0], parts[1:]
        listing = [a for a in self.sftp.listdir_attr(base) if a.filename not in (".", "..")]

        if segment == "**":
            # zero directories
            if rest:
                yield from self._glob_walk(base, rest, prefix)
            for attrs in listing:
                if self._is_hidden(attrs.filename):
                    continue
                is_dir = statmod.S_ISDIR(attrs.st_mode)
                if not rest:
                    yield prefix + attrs.filename, is_dir
                if is_dir:
                    child = posixpath.join(base, attrs.filename)
                    yield from self._glob_walk(child, parts, prefix + attrs.filename + "/")
            return

        for attrs in listing:
            name = attrs.filename
            if self._is_hidden(name) and not segment.startswith("."):
                continue
            if not fnmatch.fnmatchcase(name, segment):
                continue
            is_dir = statmod.S_ISDIR(attrs.st_mode)
            if not rest:
                yield prefix + name, is_dir
            elif is_dir:
                yield from self._glob_walk(posixpath.join(base, name), rest, prefix + name + "/")

    def stat(self, path: str) -> StatRecord:
        with self._sftp_errors(path):
            attrs = self.sftp.stat(path)
        # ctime is not carried by SFTP
        return StatRecord(
            size=attrs.st_size or 0,
            mode=attrs.st_mode or 0,
            atime=datetime.fromtimestamp(attrs.st_atime or 0),
            mtime=datetime.fromtimestamp(attrs.st_mtime or 0),
            ctime=None,
        )

    def set_access(self, path: str, access: Access) -> None:
        with self._sftp_errors(path):
            self.sftp.chmod(path, access.octal_permissions)
        if access.user:
            owner = f"{access.user}:{access.group}" if access.group else access.user
            self.run(f"chown {shlex.quote(owner)} {shlex.quote(path)}", missing_path=path)
        elif access.group:
            self.run(f"chgrp {shlex.quote(access.group)} {shlex.quote(path)}", missing_path=path)

    def size(self, path: str) -> int:
        output = self.run(f"du -sb {shlex.quote(path)}", missing_path=path)
        return int(output.split()[0])

    def read_archive(self, path: str) -> bytes:
        parent, name = posixpath.split(path.rstrip("/"))
        command = f"cd {shlex.quote(parent or '/')} && tar c {shlex.quote(name)}"
        stdin, stdout, stderr = self.ssh.exec_command(command)
        archive = stdout.read()
        if stdout.channel.recv_exit_status() != 0:
            raise DoesNotExist(path)
        return archive

    def write_archive(self, archive: bytes, dir_path: str) -> None:
        stdin, stdout, stderr = self.ssh.exec_command(f"cd {shlex.quote(dir_path)} && tar x")
        stdin.write(archive)
        stdin.channel.shutdown_write()
        if stdout.channel.recv_exit_status() != 0:
            raise DoesNotExist(dir_path)

    # Transfers between this machine and the local one

    def upload(self, local_path: str, remote_path: str) -> None:
        """Recursive upload with ``scp -r`` semantics."""
        if not os.path.exists(local_path):
            raise DoesNotExist(local_path)
        target = remote_path
        if self._remote_isdir(remote_path):
            target = posixpath.join(remote_path, os.path.basename(local_path.rstrip("/")))

        with self._sftp_errors(remote_path):
            if not os.path.isdir(local_path):
                self.sftp.put(local_path, target)
                return
            for root, dirs, files in os.walk(local_path):
                rel = os.path.relpath(root, local_path)
                remote_root = target if rel == "." else posixpath.join(target, *rel.split(os.sep))
                if not self._remote_isdir(remote_root):
                    self.sftp.mkdir(remote_root)
                for name in files:
                    self.sftp.put(os.path.join(root, name), posixpath.join(remote_root, name))

    def download(self, remote_path: str, local_path: str) -> None:
        """Recursive download with ``scp -r`` semantics."""
        with self._sftp_errors(remote_path):
            attrs = self.sftp.stat(remote_path)
        target = local_path
        if os.path.isdir(local_path):
            target = os.path.join(local_path, posixpath.basename(remote_path.rstrip("/")))
        elif not os.path.isdir(os.path.dirname(local_path.rstrip("/")) or "/"):
            raise DoesNotExist(local_path)

        with self._sftp_errors(remote_path):
            if statmod.S_ISDIR(attrs.st_mode):
                self._download_tree(remote_path, target)
            else:
                self.sftp.get(remote_path, target)

    def _download_tree(self, remote_dir: str, local_dir: str) -> None:
        os.makedirs(local_dir, exist_ok=True)
        for attrs in self.sftp.listdir_attr(remote_dir):
            remote_child = posixpath.join(remote_dir, attrs.filename)
            local_child = os.path.join(local_dir, attrs.filename)
            if statmod.S_ISDIR(attrs.st_mode):
                self._download_tree(remote_child, local_child)
            else:
                self.sftp.get(remote_child, local_child)

    def _remote_isdir(self, path: str) -> bool:
        try:
            return statmod.S_ISDIR(self.sftp.stat(path).st_mode)
        except IOError:
            return False

    # Processes and commands

    def list_processes(self) -> List[ProcessRecord]:
        records = process_snapshot.parse_ps_output(self.run(process_snapshot.PS_COMMAND))
        # uid -> name bindings of the remote host, fetched for this call only
        passwd = {}
        for line in self.run("getent passwd").splitlines():
            fields = line.split(":")
            if len(fields) > 2 and fields[2].isdigit():
                passwd.setdefault(int(fields[2]), fields[0])
        return process_snapshot.resolve_users(records, lookup=passwd.__getitem__)

    def is_process_alive(self, pid: int) -> bool:
        output = self.run(f"kill -0 {int(pid)} 2>/dev/null && echo 1 || echo 0")
        return output.strip() == "1"

    def kill_process(self, pid: int) -> None:
        pid = int(pid)
        terminate = f"kill -TERM {pid} 2>/dev/null || true"
        self.run(terminate)
        gone = poll_until(
            lambda: not self.is_process_alive(pid),
            attempts=self.termination.attempts,
            interval=self.termination.interval,
            between=lambda: self.run(terminate),
            sleep=self._sleep,
        )
        if not gone:
            logger.warning(f"Remote process {pid} on {self.host} ignored SIGTERM, sending SIGKILL")
            self.run(f"kill -KILL {pid} 2>/dev/null || true")

    def execute(self, command: str, user: Optional[str] = None, background: bool = False) -> Union[str, int]:
        if user:
            command = f"cd / && sudo -p {shlex.quote('Password:')} -H -u {shlex.quote(user)} bash -c {shlex.quote(command)}"
        if background:
            output = self.run(f"nohup bash -c {shlex.quote(command)} > /dev/null 2>&1 & echo $!")
            return int(output.strip().splitlines()[-1])
        return self.run(command).replace("\r\n", "\n")

    def remote_copy_to(self, src: str, dst_user: str, dst_host: str, dst_path: str, dst_port: int = 22) -> None:
        """``scp -r`` from this machine straight to another remote machine."""
        port = f"-P {int(dst_port)} " if dst_port and dst_port != 22 else ""
        target = f"{dst_user}@{dst_host}:{dst_path}"
        self.run(f"scp -r {port}{shlex.quote(src)} {shlex.quote(target)}", missing_path=src)
