"""Agent server configuration."""
import logging
import os
from typing import Optional

from pydantic import BaseModel, Field

from machinelink.connectors.agent_protocol import AGENT_PORT

logger = logging.getLogger(__name__)


class AgentServerConfig(BaseModel):
    """Where the agent listens and which secret it expects."""

    host: str = Field("0.0.0.0", description="Interface to bind")
    port: int = Field(AGENT_PORT, gt=0, lt=65536, description="HTTP port")
    secret: Optional[str] = Field(None, description="Bearer secret; auth disabled when unset")

    @classmethod
    def from_env(cls, **overrides) -> "AgentServerConfig":
        """Read MACHINELINK_AGENT_HOST, _AGENT_PORT and _AGENT_SECRET."""
        data = {}
        if os.getenv("MACHINELINK_AGENT_HOST"):
            data["host"] = os.environ["MACHINELINK_AGENT_HOST"]
        if os.getenv("MACHINELINK_AGENT_PORT"):
            data["port"] = int(os.environ["MACHINELINK_AGENT_PORT"])
        if os.getenv("MACHINELINK_AGENT_SECRET"):
            data["secret"] = os.environ["MACHINELINK_AGENT_SECRET"]
        data.update({k: v for k, v in overrides.items() if v is not None})

        config = cls(**data)
        if not config.secret:
            logger.warning("MACHINELINK_AGENT_SECRET not set - agent accepts unauthenticated requests")
        return config
