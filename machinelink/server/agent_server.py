"""
Agent server: receives encoded capability requests over HTTP and executes
them against the local machine.

The dispatcher is transport-free (message in, result out) so it can be
driven directly in tests; ``create_app`` wraps it in a Starlette app with a
single ``POST /`` route.
"""

import logging
from typing import Any, Callable, Dict, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Route

from machinelink.auth.agent_auth import SharedSecretVerifier
from machinelink.connectors.agent_protocol import (
    AgentAction,
    AgentMessage,
    encode_error,
    encode_result,
    parse_bool,
)
from machinelink.models.records import Access
from machinelink.server.config import AgentServerConfig
from machinelink.services.local_connection import LocalConnection
from machinelink.utils.errors import MachineLinkError, NotAuthorized, UnknownAction
from machinelink.utils.secure_logging import redact_command

logger = logging.getLogger(__name__)

Handler = Callable[[AgentMessage], Any]


class AgentDispatcher:
    """Maps each agent action onto the matching LocalConnection call."""

    def __init__(self, connection: Optional[LocalConnection] = None):
        self.connection = connection or LocalConnection()
        self._handlers: Dict[str, Handler] = {
            AgentAction.WRITE_FILE.value: self._write_file,
            AgentAction.FILE_CONTENTS.value: self._file_contents,
            AgentAction.DESTROY.value: self._destroy,
            AgentAction.PURGE.value: self._purge,
            AgentAction.CREATE_DIR.value: self._create_dir,
            AgentAction.RENAME.value: self._rename,
            AgentAction.COPY.value: self._copy,
            AgentAction.MOVE.value: self._move,
            AgentAction.TOUCH.value: self._touch,
            AgentAction.IS_DIRECTORY.value: self._is_directory,
            AgentAction.EXISTS.value: self._exists,
            AgentAction.ENTRIES.value: self._entries,
            AgentAction.INDEX.value: self._index,
            AgentAction.STAT.value: self._stat,
            AgentAction.SET_ACCESS.value: self._set_access,
            AgentAction.SIZE.value: self._size,
            AgentAction.READ_ARCHIVE.value: self._read_archive,
            AgentAction.WRITE_ARCHIVE.value: self._write_archive,
            AgentAction.PROCESSES.value: self._processes,
            AgentAction.PROCESS_ALIVE.value: self._process_alive,
            AgentAction.KILL_PROCESS.value: self._kill_process,
            AgentAction.BASH.value: self._bash,
        }

    def receive(self, message: AgentMessage) -> bytes:
        """Execute one message and return the encoded response body.

        Raises UnknownAction for an action with no handler; capability
        errors propagate unchanged.
        """
        handler = self._handlers.get(message.action)
        if handler is None:
            raise UnknownAction(message.action)
        logger.debug(f"Agent action {message.action}")
        return encode_result(handler(message))

    # Handlers

    def _write_file(self, message: AgentMessage):
        return self.connection.write(_field(message, "full_path"), message.payload or b"")

    def _file_contents(self, message: AgentMessage):
        return self.connection.read(_field(message, "full_path"))

    def _destroy(self, message: AgentMessage):
        return self.connection.destroy(_field(message, "full_path"))

    def _purge(self, message: AgentMessage):
        return self.connection.purge(_field(message, "full_path"))

    def _create_dir(self, message: AgentMessage):
        attrs = {}
        if message.fields.get("mode"):
            attrs["mode"] = int(message.fields["mode"], 0)
        return self.connection.create_dir(_field(message, "full_path"), attrs)

    def _rename(self, message: AgentMessage):
        return self.connection.rename(
            _field(message, "path"), _field(message, "name"), _field(message, "new_name")
        )

    def _copy(self, message: AgentMessage):
        return self.connection.copy(_field(message, "src"), _field(message, "dst"))

    def _move(self, message: AgentMessage):
        return self.connection.move(_field(message, "src"), _field(message, "dst"))

    def _touch(self, message: AgentMessage):
        return self.connection.touch(_field(message, "full_path"))

    def _is_directory(self, message: AgentMessage):
        return self.connection.is_directory(_field(message, "full_path"))

    def _exists(self, message: AgentMessage):
        return self.connection.exists(_field(message, "full_path"))

    def _entries(self, message: AgentMessage):
        return self.connection.list_entries(
            _field(message, "full_path"),
            include_hidden=parse_bool(message.fields.get("include_hidden")),
        )

    def _index(self, message: AgentMessage):
        return self.connection.glob(_field(message, "base_path"), message.fields.get("glob") or None)

    def _stat(self, message: AgentMessage):
        return self.connection.stat(_field(message, "full_path"))

    def _set_access(self, message: AgentMessage):
        access = Access.from_fields(message.fields)
        return self.connection.set_access(_field(message, "full_path"), access)

    def _size(self, message: AgentMessage):
        return self.connection.size(_field(message, "full_path"))

    def _read_archive(self, message: AgentMessage):
        return self.connection.read_archive(_field(message, "full_path"))

    def _write_archive(self, message: AgentMessage):
        return self.connection.write_archive(message.payload or b"", _field(message, "dir"))

    def _processes(self, message: AgentMessage):
        return self.connection.list_processes()

    def _process_alive(self, message: AgentMessage):
        return self.connection.is_process_alive(int(_field(message, "pid")))

    def _kill_process(self, message: AgentMessage):
        return self.connection.kill_process(int(_field(message, "pid")))

    def _bash(self, message: AgentMessage):
        command = (message.payload or b"").decode("utf-8")
        logger.info(f"Agent running command: {redact_command(command)}")
        return self.connection.execute(
            command,
            user=message.fields.get("user") or None,
            background=parse_bool(message.fields.get("background")),
        )


def _field(message: AgentMessage, name: str) -> str:
    return message.fields.get(name, "")


def create_app(dispatcher: Optional[AgentDispatcher] = None,
               config: Optional[AgentServerConfig] = None) -> Starlette:
    """Build the Starlette application serving the agent protocol."""
    dispatcher = dispatcher or AgentDispatcher()
    config = config or AgentServerConfig()
    verifier = SharedSecretVerifier(config.secret)

    async def handle(request: Request) -> Response:
        try:
            verifier.verify(request.headers.get("authorization"))
        except NotAuthorized as e:
            logger.warning(f"Rejected agent request from {request.client.host if request.client else '?'}: {e.message}")
            return Response(e.message, status_code=401, media_type="text/plain")

        body = await request.body()
        message = AgentMessage.decode(request.url.query, body)

        try:
            result = await run_in_threadpool(dispatcher.receive, message)
        except MachineLinkError as e:
            logger.info(f"Agent action {message.action} failed: {type(e).__name__}: {e.message}")
            return Response(encode_error(e), status_code=400, media_type="text/plain")
        except Exception as e:
            logger.error(f"Unexpected error in agent action {message.action}: {e}", exc_info=True)
            return Response(str(e), status_code=500, media_type="text/plain")

        return Response(result, status_code=200, media_type="application/octet-stream")

    return Starlette(routes=[Route("/", handle, methods=["POST"])])
