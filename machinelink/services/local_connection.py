"""
Local connection: direct filesystem and process syscalls.

This is also the workhorse behind the agent server, which decodes incoming
requests and calls into a LocalConnection.
"""

import errno
import glob as globmod
import io
import logging
import os
import shutil
import signal
import subprocess
import tarfile
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from machinelink.models.records import Access, ProcessRecord, StatRecord
from machinelink.services import process_snapshot
from machinelink.services.connection import Connection, ConnectionState, ConnectionType
from machinelink.utils.errors import BashFailed, DoesNotExist, NameAlreadyExists
from machinelink.utils.retry import TerminationPolicy, poll_until
from machinelink.utils.secure_logging import redact_command

logger = logging.getLogger(__name__)

_MISSING = (errno.ENOENT, errno.ENOTDIR)


def _missing(error: OSError) -> bool:
    return error.errno in _MISSING


class LocalConnection(Connection):
    """Connection to the machine this process runs on."""

    connection_type = ConnectionType.LOCAL

    def __init__(self, termination: Optional[TerminationPolicy] = None,
                 sleep: Callable[[float], None] = time.sleep):
        super().__init__()
        self.termination = termination or TerminationPolicy()
        self._sleep = sleep
        self._update_state(ConnectionState.CONNECTED)

    def read(self, path: str) -> bytes:
        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as e:
            if _missing(e):
                raise DoesNotExist(path)
            raise

    def write(self, path: str, data: Union[bytes, str]) -> bool:
        try:
            with open(path, "wb") as f:
                f.write(self._as_bytes(data))
        except OSError as e:
            if _missing(e):
                raise DoesNotExist(path)
            raise
        return True

    def destroy(self, path: str) -> None:
        self._refuse_root(path, "destroy")
        if not os.path.lexists(path):
            raise DoesNotExist(path)
        if os.path.isdir(path) and not os.path.islink(path):
            shutil.rmtree(path)
        else:
            os.unlink(path)

    def purge(self, path: str) -> None:
        self._refuse_root(path, "purge")
        if not os.path.isdir(path):
            raise DoesNotExist(path)
        for entry in os.scandir(path):
            if entry.is_dir(follow_symlinks=False):
                shutil.rmtree(entry.path)
            else:
                os.unlink(entry.path)

    def create_dir(self, path: str, attrs: Optional[Dict[str, Any]] = None) -> None:
        attrs = self._normalize_attrs(attrs)
        try:
            os.makedirs(path, mode=attrs.get("mode", 0o777), exist_ok=True)
        except FileExistsError:
            raise DoesNotExist(path)
        except OSError as e:
            if _missing(e):
                raise DoesNotExist(path)
            raise

    def rename(self, path: str, name: str, new_name: str) -> bool:
        self._check_new_name(path, name, new_name)
        old_full_path = os.path.join(path, name)
        new_full_path = os.path.join(path, new_name)
        if os.path.exists(new_full_path):
            raise NameAlreadyExists(f"{path} rename {name} to {new_name}")
        if not os.path.lexists(old_full_path):
            raise DoesNotExist(old_full_path)
        os.rename(old_full_path, new_full_path)
        return True

    def copy(self, src: str, dst: str) -> bool:
        if not os.path.exists(src):
            raise DoesNotExist(src)

        target = dst
        if os.path.isdir(dst):
            # cp -r semantics: copying into an existing directory
            target = os.path.join(dst, os.path.basename(src.rstrip("/")))
        elif not os.path.isdir(os.path.dirname(dst.rstrip("/")) or "/"):
            raise DoesNotExist(os.path.dirname(dst.rstrip("/")))

        if os.path.isdir(src):
            shutil.copytree(src, target, symlinks=True, dirs_exist_ok=True)
        else:
            shutil.copy2(src, target)
        return True

    def move(self, src: str, dst: str) -> bool:
        if not os.path.lexists(src):
            raise DoesNotExist(src)
        parent = dst if os.path.isdir(dst) else os.path.dirname(dst.rstrip("/")) or "/"
        if not os.path.isdir(parent):
            raise DoesNotExist(parent)
        shutil.move(src, dst)
        return True

    def touch(self, path: str) -> None:
        try:
            if os.path.exists(path):
                os.utime(path, None)
            else:
                with open(path, "ab"):
                    pass
        except OSError as e:
            if _missing(e):
                raise DoesNotExist(path)
            raise

    def is_directory(self, path: str) -> bool:
        if not os.path.exists(path):
            raise DoesNotExist(path)
        return os.path.isdir(path)

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def list_entries(self, path: str, include_hidden: bool = False) -> List[str]:
        try:
            entries = list(os.scandir(path))
        except OSError as e:
            if _missing(e):
                raise DoesNotExist(path)
            raise

        results = []
        for entry in entries:
            if not include_hidden and self._is_hidden(entry.name):
                continue
            results.append(entry.name + "/" if entry.is_dir() else entry.name)
        return sorted(results)

    def glob(self, path: str, pattern: Optional[str] = None) -> List[str]:
        pattern = pattern or "*"
        if not os.path.isdir(path):
            raise DoesNotExist(path)

        dirs, files = [], []
        for name in globmod.glob(pattern, root_dir=path, recursive=True):
            if os.path.isdir(os.path.join(path, name)):
                dirs.append(name)
            else:
                files.append(name)
        return self._sorted_listing(dirs, files)

    def stat(self, path: str) -> StatRecord:
        try:
            s = os.stat(path)
        except OSError as e:
            if _missing(e):
                raise DoesNotExist(path)
            raise
        return StatRecord(
            size=s.st_size,
            mode=s.st_mode,
            atime=datetime.fromtimestamp(s.st_atime),
            mtime=datetime.fromtimestamp(s.st_mtime),
            ctime=datetime.fromtimestamp(s.st_ctime),
        )

    def set_access(self, path: str, access: Access) -> None:
        if not os.path.lexists(path):
            raise DoesNotExist(path)
        access.apply(path)

    def size(self, path: str) -> int:
        if not os.path.lexists(path):
            raise DoesNotExist(path)
        total = os.lstat(path).st_size
        if os.path.isdir(path) and not os.path.islink(path):
            for root, dirs, files in os.walk(path):
                for name in dirs + files:
                    try:
                        total += os.lstat(os.path.join(root, name)).st_size
                    except FileNotFoundError:
                        continue
        return total

    def read_archive(self, path: str) -> bytes:
        if not os.path.lexists(path):
            raise DoesNotExist(path)
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w") as tar:
            tar.add(path, arcname=os.path.basename(path.rstrip("/")))
        return buffer.getvalue()

    def write_archive(self, archive: bytes, dir_path: str) -> None:
        if not os.path.isdir(dir_path):
            raise DoesNotExist(dir_path)
        with tarfile.open(fileobj=io.BytesIO(archive), mode="r") as tar:
            tar.extractall(dir_path, filter="data")

    def list_processes(self) -> List[ProcessRecord]:
        return process_snapshot.list_processes()

    def is_process_alive(self, pid: int) -> bool:
        try:
            os.kill(int(pid), 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # exists, owned by someone else
            return True
        return True

    def kill_process(self, pid: int) -> None:
        pid = int(pid)
        if not self._signal(pid, signal.SIGTERM):
            return

        gone = poll_until(
            lambda: not self.is_process_alive(pid),
            attempts=self.termination.attempts,
            interval=self.termination.interval,
            between=lambda: self._signal(pid, signal.SIGTERM),
            sleep=self._sleep,
        )
        if not gone:
            logger.warning(f"Process {pid} ignored SIGTERM, sending SIGKILL")
            self._signal(pid, signal.SIGKILL)

    def _signal(self, pid: int, sig: int) -> bool:
        """Send a signal; False when the process is already gone."""
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            return False
        return True

    def execute(self, command: str, user: Optional[str] = None, background: bool = False) -> Union[str, int]:
        if background:
            return self._execute_background(command, user)

        logger.debug(f"Executing locally: {redact_command(command)}")
        process = subprocess.run(
            self._shell_argv(user),
            input=command,
            capture_output=True,
            text=True,
            cwd="/" if user else None,
        )
        if process.returncode != 0:
            raise BashFailed(process.stderr)
        return process.stdout

    def _execute_background(self, command: str, user: Optional[str]) -> int:
        process = subprocess.Popen(
            self._shell_argv(user),
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            cwd="/" if user else None,
            start_new_session=True,
        )
        process.stdin.write(command.encode("utf-8"))
        process.stdin.close()

        # reap the child so it never lingers as a zombie
        reaper = threading.Thread(target=process.wait, name=f"reap-{process.pid}", daemon=True)
        reaper.start()

        logger.debug(f"Started background command as pid {process.pid}")
        return process.pid

    @staticmethod
    def _shell_argv(user: Optional[str]) -> List[str]:
        if user:
            return ["sudo", "-H", "-u", user, "bash"]
        return ["bash"]

    def is_alive(self) -> bool:
        return True
