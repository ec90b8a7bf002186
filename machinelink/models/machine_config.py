"""
Machine construction options and host string parsing.
"""

import getpass
import os
from typing import Optional, Tuple

from pydantic import BaseModel, Field

from machinelink.connectors.agent_protocol import AGENT_PORT
from machinelink.utils.retry import TerminationPolicy

DEFAULT_SSH_PORT = 22


class MachineOptions(BaseModel):
    """Options accepted when building a Machine."""

    user: Optional[str] = Field(None, description="Remote login; overrides user@ in the host")
    password: Optional[str] = Field(None, description="SSH password, also answered to sudo prompts")
    port: int = Field(DEFAULT_SSH_PORT, gt=0, lt=65536, description="SSH port")
    use_agent_protocol: bool = Field(False, description="Talk to a machinelink agent over HTTP")
    agent_port: int = Field(AGENT_PORT, gt=0, lt=65536, description="Agent HTTP port")
    agent_secret: Optional[str] = Field(None, description="Bearer secret for the agent")
    key_path: Optional[str] = Field(None, description="Private key file for SSH")
    connect_timeout: float = Field(10.0, gt=0, description="Transport setup timeout in seconds")
    auto_add_host_keys: bool = Field(False, description="Accept unknown SSH host keys")
    termination: TerminationPolicy = Field(default_factory=TerminationPolicy)

    @classmethod
    def from_env(cls, **overrides) -> "MachineOptions":
        """Build options from MACHINELINK_* environment variables."""
        env = {
            "user": os.getenv("MACHINELINK_USER"),
            "password": os.getenv("MACHINELINK_PASSWORD"),
            "key_path": os.getenv("MACHINELINK_SSH_KEY"),
            "agent_secret": os.getenv("MACHINELINK_AGENT_SECRET"),
        }
        if os.getenv("MACHINELINK_SSH_PORT"):
            env["port"] = int(os.environ["MACHINELINK_SSH_PORT"])
        if os.getenv("MACHINELINK_AGENT_PORT"):
            env["agent_port"] = int(os.environ["MACHINELINK_AGENT_PORT"])
        if os.getenv("MACHINELINK_USE_AGENT"):
            env["use_agent_protocol"] = os.environ["MACHINELINK_USE_AGENT"].lower() in ("1", "true", "yes")
        if os.getenv("MACHINELINK_CONNECT_TIMEOUT"):
            env["connect_timeout"] = float(os.environ["MACHINELINK_CONNECT_TIMEOUT"])
        data = {k: v for k, v in env.items() if v is not None}
        data.update(overrides)
        return cls(**data)


def parse_host(host: str, user: Optional[str] = None) -> Tuple[str, str, Optional[int]]:
    """Split ``[user@]host[:port]`` into (user, hostname, port).

    An explicit ``user`` wins over the one embedded in the host string; with
    neither, the current login is used.
    """
    login = None
    if "@" in host:
        login, host = host.rsplit("@", 1)

    port = None
    if host.count(":") == 1:
        host, port_text = host.split(":")
        port = int(port_text)

    return (user or login or getpass.getuser(), host, port)
