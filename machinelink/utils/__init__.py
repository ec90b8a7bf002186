"""Utilities package for MachineLink."""

from .errors import ErrorCategory, MachineLinkError
from .retry import TerminationPolicy, poll_until
from .secure_logging import setup_secure_logging

__all__ = [
    "ErrorCategory",
    "MachineLinkError",
    "TerminationPolicy",
    "poll_until",
    "setup_secure_logging",
]
