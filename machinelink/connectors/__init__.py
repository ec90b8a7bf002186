"""
Remote agent connector for MachineLink.

Talks to a machinelink agent over HTTP instead of SSH.
"""

from .agent_connection import AgentConnection
from .agent_protocol import AGENT_PORT, AgentAction, AgentMessage

__all__ = [
    'AgentConnection',
    'AgentAction',
    'AgentMessage',
    'AGENT_PORT',
]
