"""
Logging configuration for MachineLink.
"""

import logging
import os
from typing import Optional

MAX_LOGGED_COMMAND = 80


def setup_secure_logging(level: Optional[str] = None):
    """Setup logging for the library and the agent server."""
    log_level = (level or os.getenv("MACHINELINK_LOG_LEVEL", "INFO")).upper()

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Transport libraries are chatty and can echo credentials at DEBUG
    logging.getLogger("paramiko").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def redact_command(command: str) -> str:
    """Shorten a command for log output."""
    command = command.replace("\n", "; ")
    if len(command) > MAX_LOGGED_COMMAND:
        return command[:MAX_LOGGED_COMMAND] + "..."
    return command
