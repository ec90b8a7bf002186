"""Authentication helpers for the MachineLink agent."""

from .agent_auth import SharedSecretVerifier, bearer_token  # noqa: F401
