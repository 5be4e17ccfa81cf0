"""
Inbound bearer authentication for docgate.
"""

import hmac
from typing import Optional

from fastapi import Request

from shared.errors import AuthRejected, ServerMisconfigured
from shared.logging import get_logger


BEARER_SCHEME = "bearer"


class BearerAuthGate:
    """FastAPI dependency that admits requests carrying the shared secret."""

    def __init__(self, expected_token: Optional[str]):
        self.expected_token = expected_token
        self.logger = get_logger("docgate.auth_gate")

    async def __call__(self, request: Request) -> None:
        self.authenticate(request.headers.get("Authorization"), path=request.url.path)

    def authenticate(self, header: Optional[str], path: Optional[str] = None) -> None:
        """Raise unless `header` is `Bearer <expected token>`."""
        if not self.expected_token:
            self.logger.error(
                "request_rejected",
                reason="api_token_not_configured",
                path=path,
                action="set DOCGATE_API_TOKEN or PS_API_TOKEN",
            )
            raise ServerMisconfigured("Inbound API token is not configured")

        if not header:
            self._reject("missing_authorization", path)

        scheme, _, token = header.partition(" ")
        if scheme.lower() != BEARER_SCHEME or not token.strip():
            self._reject("invalid_scheme", path)

        if not hmac.compare_digest(token.strip().encode("utf-8"), self.expected_token.encode("utf-8")):
            self._reject("invalid_token", path)

        self.logger.info("request_authorized", path=path)

    def _reject(self, reason: str, path: Optional[str]) -> None:
        self.logger.warning("request_rejected", reason=reason, path=path)
        raise AuthRejected(details={"reason": reason})
