"""
Interactive SSH command execution with sudo password interception.

``exec_command`` on a bare channel cannot answer a sudo prompt, so every
command gets its own channel with a pseudo-terminal requested *before* the
exec. Output is then pumped by hand: a chunk that is exactly a password
prompt is answered (or the session is aborted when no password is
configured). Anything arriving on the stderr stream fails the session. A pty
merges the remote stderr into stdout, so a non-zero exit status fails it
too, with the accumulated output as the error text.
"""

import logging
import re
import time
from typing import Callable, Optional

from machinelink.utils.errors import BashFailed, MachineLinkError, PasswordRequired
from machinelink.utils.secure_logging import redact_command

logger = logging.getLogger(__name__)

PASSWORD_PROMPT = "Password:"

_PROMPT_PATTERN = re.compile(r"^(\[sudo\] )?[Pp]assword( for [^:\s]+)?: ?$")

RECV_BYTES = 4096


def is_password_prompt(data: str) -> bool:
    """True when a chunk of output is nothing but a password prompt."""
    return bool(_PROMPT_PATTERN.match(data.strip("\r\n")))


class InteractiveShellSession:
    """Runs commands one at a time over pty-backed channels of a transport.

    A session is strictly sequential; callers that need parallel remote
    commands open one session each.
    """

    def __init__(self, transport, password: Optional[str] = None,
                 poll_interval: float = 0.05,
                 sleep: Callable[[float], None] = time.sleep):
        self.transport = transport
        self.password = password
        self.poll_interval = poll_interval
        self._sleep = sleep

    def run(self, command: str,
            on_stderr: Optional[Callable[[str], MachineLinkError]] = None) -> str:
        """Execute ``command`` and return its output, trailing newlines stripped.

        ``on_stderr`` builds the exception raised when the command writes to
        its error stream; the default is BashFailed carrying that output.
        """
        on_stderr = on_stderr or BashFailed
        logger.debug(f"Executing over ssh: {redact_command(command)}")

        channel = self.transport.open_session()
        try:
            # must happen before exec or a sudo prompt can never be answered
            channel.get_pty()
            channel.exec_command(command)
            return self._pump(channel, on_stderr)
        finally:
            channel.close()

    def _pump(self, channel, on_stderr: Callable[[str], MachineLinkError]) -> str:
        result = []
        answered = False
        while True:
            if channel.recv_stderr_ready():
                data = channel.recv_stderr(RECV_BYTES).decode("utf-8", errors="replace")
                raise on_stderr(data)

            if channel.recv_ready():
                data = channel.recv(RECV_BYTES).decode("utf-8", errors="replace")
                if is_password_prompt(data):
                    self._answer_prompt(channel)
                    answered = True
                    continue
                if answered:
                    # the pty echoes the newline that followed the password
                    data = _drop_echoed_newline(data)
                    answered = False
                result.append(data)
                continue

            if channel.exit_status_ready():
                break

            self._sleep(self.poll_interval)

        output = "".join(result)
        # a pty merges stderr into stdout, so the exit code is the other signal
        status = channel.recv_exit_status()
        if status != 0:
            logger.debug(f"Remote command exited with status {status}")
            raise on_stderr(output)
        return output.rstrip("\r\n")

    def _answer_prompt(self, channel) -> None:
        if self.password is None:
            logger.warning("Remote command asked for a password but none is configured")
            raise PasswordRequired()
        channel.sendall(f"{self.password}\n".encode("utf-8"))


def _drop_echoed_newline(data: str) -> str:
    for newline in ("\r\n", "\n"):
        if data.startswith(newline):
            return data[len(newline):]
    return data
