"""
Process enumeration normalized into ProcessRecord.

Three sources, picked by what the host offers: a /proc filesystem, a
``ps`` binary, or the platform process API through psutil.
"""

import glob
import logging
import os
import shutil
import subprocess
from typing import Callable, Dict, Iterable, List, Optional

import psutil

from machinelink.models.records import ProcessRecord

logger = logging.getLogger(__name__)

PS_COMMAND = 'COLUMNS=9999 ps ax -o "pid uid ppid rss cpu command"'


def resolve_users(records: List[ProcessRecord], lookup: Optional[Callable[[int], str]] = None) -> List[ProcessRecord]:
    """Fill in ``user`` from ``uid``.

    The uid -> name mapping lives only for this call: bindings can change
    between two process listings, so nothing is cached across calls.
    """
    if lookup is None:
        lookup = _passwd_name

    uid_map: Dict[int, Optional[str]] = {}
    for record in records:
        if record.uid not in uid_map:
            try:
                uid_map[record.uid] = lookup(record.uid)
            except KeyError:
                uid_map[record.uid] = None
        record.user = uid_map[record.uid]
    return records


def _passwd_name(uid: int) -> str:
    import pwd

    return pwd.getpwuid(uid).pw_name


def parse_proc_stat(stat_line: str, cmdline: str, uid: int) -> ProcessRecord:
    """Parse one /proc/<pid>/stat line."""
    # command may contain spaces; it is the text between the outer parens
    open_paren = stat_line.index("(")
    close_paren = stat_line.rindex(")")
    pid = int(stat_line[:open_paren].strip())
    command = stat_line[open_paren + 1:close_paren]
    rest = stat_line[close_paren + 1:].split()

    # rest[0] is the state field
    parent_pid = int(rest[1])
    utime = int(rest[11])
    stime = int(rest[12])
    rss_pages = int(rest[21])

    return ProcessRecord(
        pid=pid,
        parent_pid=parent_pid,
        uid=uid,
        command=command,
        cmdline=cmdline.replace("\0", " ").strip(),
        mem=rss_pages * 4,
        cpu=utime + stime,
    )


def read_proc_file(stat_path: str) -> ProcessRecord:
    with open(stat_path, "r", encoding="utf-8", errors="replace") as f:
        stat_line = f.read()
    uid = os.stat(stat_path).st_uid
    proc_dir = os.path.dirname(stat_path)
    with open(os.path.join(proc_dir, "cmdline"), "r", encoding="utf-8", errors="replace") as f:
        cmdline = f.read()
    return parse_proc_stat(stat_line, cmdline, uid)


def linux_processes(proc_root: str = "/proc") -> List[ProcessRecord]:
    records = []
    for stat_path in glob.glob(os.path.join(proc_root, "*", "stat")):
        if not os.path.basename(os.path.dirname(stat_path)).isdigit():
            continue
        try:
            records.append(read_proc_file(stat_path))
        except (OSError, ValueError, IndexError):
            # process exited between the listing and the read
            continue
    return records


def parse_ps_line(line: str) -> ProcessRecord:
    """Parse one line of ``ps ax -o "pid uid ppid rss cpu command"``."""
    fields = line.split(None, 5)
    cmdline = fields[5] if len(fields) > 5 else ""
    return ProcessRecord(
        pid=int(fields[0]),
        uid=int(fields[1]),
        parent_pid=int(fields[2]),
        mem=int(fields[3]),
        cpu=_ps_number(fields[4]),
        cmdline=cmdline,
        command=cmdline.split(" ")[0] if cmdline else "",
    )


def _ps_number(value: str) -> int:
    # procps prints "-" for the deprecated cpu column
    try:
        return int(float(value))
    except ValueError:
        return 0


def parse_ps_output(output: str) -> List[ProcessRecord]:
    records = []
    for line in output.splitlines()[1:]:
        if not line.strip():
            continue
        try:
            records.append(parse_ps_line(line))
        except (ValueError, IndexError):
            logger.debug(f"Skipping unparseable ps line: {line!r}")
    return records


def ps_processes() -> List[ProcessRecord]:
    output = subprocess.run(
        PS_COMMAND, shell=True, capture_output=True, text=True
    ).stdout
    return parse_ps_output(output)


def psutil_processes(process_iter: Callable[..., Iterable] = psutil.process_iter) -> List[ProcessRecord]:
    """Process list through psutil, for hosts with neither /proc nor ps."""
    records = []
    attrs = ["pid", "ppid", "name", "cmdline", "memory_info", "cpu_times", "username"]
    if hasattr(psutil.Process, "uids"):
        attrs.append("uids")
    for proc in process_iter(attrs):
        info = proc.info
        cpu_times = info.get("cpu_times")
        memory = info.get("memory_info")
        uids = info.get("uids")
        cmdline = info.get("cmdline") or []
        records.append(
            ProcessRecord(
                pid=info["pid"],
                parent_pid=info.get("ppid") or 0,
                uid=uids.real if uids else 0,
                user=info.get("username"),
                command=info.get("name") or "",
                cmdline=" ".join(cmdline),
                mem=(memory.rss // 1024) if memory else 0,
                cpu=int((cpu_times.user + cpu_times.system) * 100) if cpu_times else 0,
            )
        )
    return records


def list_processes() -> List[ProcessRecord]:
    """Snapshot the local process table."""
    if os.path.isdir("/proc") and os.path.exists("/proc/self/stat"):
        return resolve_users(linux_processes())
    if shutil.which("ps"):
        return resolve_users(ps_processes())
    return psutil_processes()
