"""
Shared error handling for the docgate document gateway.

Every failure the gateway can surface is a GatewayException carrying the HTTP
status it maps to. `details` are logged in full; only `public_details` ever
reach the caller, so credential and key material must stay out of them.
"""

from typing import Dict, Any, Optional

from opentelemetry import trace
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class GatewayException(Exception):
    """Base exception for gateway failures."""

    status_code: int = 500

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        public_details: Optional[Dict[str, Any]] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.public_details = public_details or {}
        super().__init__(message)

    def response_headers(self) -> Dict[str, str]:
        """Extra headers sent with the error response."""
        return {}

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.public_details,
        )


class AuthRejected(GatewayException):
    """Inbound bearer token missing or invalid."""

    status_code = 401

    def __init__(self, message: str = "Invalid or missing Bearer token", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTH_REJECTED", message, details)

    def response_headers(self) -> Dict[str, str]:
        return {"WWW-Authenticate": "Bearer"}


class ServerMisconfigured(GatewayException):
    """Required server-side configuration is missing."""

    status_code = 500

    def __init__(self, message: str = "Server misconfiguration", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERVER_MISCONFIGURED", message, details)


class CredentialError(GatewayException):
    """Credential resolution failed."""

    status_code = 502


class NoCredentialFound(CredentialError):
    """Every credential provider came back empty."""

    def __init__(self, message: str = "No credentials found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NO_CREDENTIAL_FOUND", message, details)


class ProviderError(CredentialError):
    """A credential provider failed outright."""

    def __init__(
        self,
        message: str = "Credential provider failed",
        details: Optional[Dict[str, Any]] = None,
        provider: Optional[str] = None,
    ):
        self.provider = provider
        super().__init__("PROVIDER_ERROR", message, details)


class SigningFailed(GatewayException):
    """A request could not be signed."""

    status_code = 502

    def __init__(self, message: str = "Request signing failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("SIGNING_FAILED", message, details)


class MalformedCredential(SigningFailed):
    """The private key material could not be loaded."""


class UnsupportedHeader(SigningFailed):
    """A header value cannot be encoded into the signing string."""


class SecretUnavailable(GatewayException):
    """The scoped access token could not be fetched."""

    status_code = 502

    def __init__(self, message: str = "Scoped token unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("SECRET_UNAVAILABLE", message, details)


class BackendError(GatewayException):
    """Object storage answered with a non-success status."""

    status_code = 502
    body_limit = 256

    def __init__(
        self,
        backend_status: int,
        body: str = "",
        message: str = "Object storage request failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.backend_status = backend_status
        self.body = body
        public = {"backend_status": backend_status}
        if body:
            public["backend_body"] = body[: self.body_limit]
        merged = dict(details or {})
        merged.update(public)
        super().__init__("BACKEND_ERROR", message, merged, public)


class BackendUnreachable(GatewayException):
    """Object storage could not be reached at all."""

    status_code = 502

    def __init__(self, message: str = "Object storage unreachable", details: Optional[Dict[str, Any]] = None):
        super().__init__("BACKEND_UNREACHABLE", message, details)


class BackendTimeout(GatewayException):
    """An outbound call exceeded its timeout."""

    status_code = 504

    def __init__(self, message: str = "Object storage request timed out", details: Optional[Dict[str, Any]] = None):
        super().__init__("BACKEND_TIMEOUT", message, details)


class RouteNotFound(GatewayException):
    """No route matched the inbound request."""

    status_code = 404

    def __init__(self, message: str = "404 - Route not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)
