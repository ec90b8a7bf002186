from __future__ import annotations

import hmac
from typing import Optional

from machinelink.utils.errors import NotAuthorized


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an ``Authorization: Bearer <token>`` header."""
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(None, 1)[1].strip()
    return None


class SharedSecretVerifier:
    """Check requests against a single shared secret.

    With no secret configured every request is accepted, which keeps
    agents on a trusted private network simple to run.
    """

    def __init__(self, secret: Optional[str] = None):
        self.secret = secret

    @property
    def enabled(self) -> bool:
        return bool(self.secret)

    def verify(self, authorization: Optional[str]) -> None:
        if not self.enabled:
            return

        token = bearer_token(authorization)
        if not token:
            raise NotAuthorized("missing bearer token")
        if not hmac.compare_digest(token.encode("utf-8"), self.secret.encode("utf-8")):
            raise NotAuthorized("invalid bearer token")
