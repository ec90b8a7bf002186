"""
Copy and move of entries between one or two machines.

Every request is classified into exactly one strategy by comparing the two
endpoints' machines (identity by hostname) and their locality:

    LOCAL         same machine, local      -> filesystem copy / move
    SAME_REMOTE   same machine, remote     -> the remote's own cp -r / mv
    UPLOAD        local source, remote dst -> SFTP put through dst's connection
    DOWNLOAD      remote source, local dst -> SFTP get through src's connection
    CROSS_REMOTE  two different remotes    -> scp run on the source machine

Moves are only allowed for LOCAL and SAME_REMOTE. A move over the network
could lose the only copy if the remote leg fails after the source is gone,
so callers must copy, verify, then destroy.
"""

import logging
from enum import Enum

from machinelink.models.entries import Entry
from machinelink.services.connection import ConnectionType
from machinelink.utils.errors import CrossNetworkMove, NotAnEntry, UnsupportedTransfer

logger = logging.getLogger(__name__)


class TransferStrategy(str, Enum):
    LOCAL = "local"
    SAME_REMOTE = "same_remote"
    UPLOAD = "upload"
    DOWNLOAD = "download"
    CROSS_REMOTE = "cross_remote"


def classify(src: Entry, dst: Entry) -> TransferStrategy:
    """Pick the strategy for moving data from ``src`` to ``dst``."""
    _check_entries(src, dst)

    if src.machine == dst.machine:
        return TransferStrategy.SAME_REMOTE if src.machine.is_remote else TransferStrategy.LOCAL
    if src.is_local and not dst.is_local:
        return TransferStrategy.UPLOAD
    if not src.is_local and dst.is_local:
        return TransferStrategy.DOWNLOAD
    # two different local machines cannot exist, so both ends are remote
    return TransferStrategy.CROSS_REMOTE


def _check_entries(src, dst) -> None:
    if not (isinstance(src, Entry) and isinstance(dst, Entry)):
        raise NotAnEntry()


def _result(src: Entry, dst: Entry) -> Entry:
    new_full_path = dst.full_path + src.name if dst.is_dir else dst.full_path
    return type(src)(new_full_path, dst.machine)


def _require_ssh(entry: Entry, strategy: TransferStrategy):
    connection = entry.connection
    if connection.connection_type != ConnectionType.SSH:
        raise UnsupportedTransfer(
            f"{strategy.value} transfers need an SSH connection on {entry.machine}, "
            f"not {connection.connection_type.value}"
        )
    return connection


class TransferOrchestrator:
    """Dispatches copy/move requests to the right connection(s)."""

    def copy(self, src: Entry, dst: Entry) -> Entry:
        """Copy ``src`` to ``dst`` and return a handle to the new entry.

        When ``dst`` is a Dir the source lands inside it under its own name.
        """
        strategy = classify(src, dst)
        logger.debug(f"Copy {src} -> {dst} using {strategy.value}")

        if strategy in (TransferStrategy.LOCAL, TransferStrategy.SAME_REMOTE):
            src.connection.copy(src.full_path, dst.full_path)
        elif strategy == TransferStrategy.UPLOAD:
            _require_ssh(dst, strategy).upload(src.full_path, dst.full_path)
        elif strategy == TransferStrategy.DOWNLOAD:
            _require_ssh(src, strategy).download(src.full_path, dst.full_path)
        else:
            source = _require_ssh(src, strategy)
            target = _require_ssh(dst, strategy)
            # the source host talks to the destination directly
            source.remote_copy_to(src.full_path, target.user, target.host, dst.full_path, target.port)

        return _result(src, dst)

    def move(self, src: Entry, dst: Entry) -> Entry:
        """Move ``src`` to ``dst`` on the same machine.

        Raises CrossNetworkMove, before touching either side, for any pair of
        endpoints on different machines.
        """
        strategy = classify(src, dst)
        if strategy not in (TransferStrategy.LOCAL, TransferStrategy.SAME_REMOTE):
            logger.warning(f"Refusing to move {src} to {dst} across the network")
            raise CrossNetworkMove()

        logger.debug(f"Move {src} -> {dst} using {strategy.value}")
        src.connection.move(src.full_path, dst.full_path)
        return _result(src, dst)

