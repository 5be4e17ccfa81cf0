"""
Tests for configuration and error mapping.
"""

import pytest
from pydantic import ValidationError

from shared.config import DocgateConfig
from shared.errors import (
    AuthRejected,
    BackendError,
    BackendTimeout,
    MalformedCredential,
    NoCredentialFound,
    ProviderError,
    RouteNotFound,
    SecretUnavailable,
    ServerMisconfigured,
)


class TestDocgateConfig:
    """Test cases for DocgateConfig."""

    def test_defaults(self, monkeypatch):
        for name in ("DOCGATE_API_TOKEN", "PS_API_TOKEN", "API_TOKEN", "DOCGATE_PORT"):
            monkeypatch.delenv(name, raising=False)

        config = DocgateConfig(_env_file=None)

        assert config.port == 8080
        assert config.workers == 4
        assert config.max_connections == 100
        assert config.keep_alive == 60
        assert config.signing_strategy == "direct"
        assert config.credential_providers == ["environment", "config_file"]
        assert config.api_token is None

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("DOCGATE_NAMESPACE", "ns")
        monkeypatch.setenv("DOCGATE_BUCKET", "docs")
        monkeypatch.setenv("DOCGATE_CREDENTIAL_PROVIDERS", "static, environment")
        monkeypatch.setenv("DOCGATE_SIGNING_STRATEGY", "preauthenticated")

        config = DocgateConfig(_env_file=None)

        assert config.namespace == "ns"
        assert config.credential_providers == ["static", "environment"]
        assert config.signing_strategy == "preauthenticated"

    def test_legacy_token_variable(self, monkeypatch):
        monkeypatch.delenv("DOCGATE_API_TOKEN", raising=False)
        monkeypatch.setenv("PS_API_TOKEN", "legacy")

        assert DocgateConfig(_env_file=None).api_token == "legacy"

    def test_unknown_provider(self):
        with pytest.raises(ValidationError):
            DocgateConfig(_env_file=None, credential_providers=["vault"])

    def test_unknown_strategy(self):
        with pytest.raises(ValidationError):
            DocgateConfig(_env_file=None, signing_strategy="sometimes")

    def test_ttl_must_be_positive(self):
        with pytest.raises(ValidationError):
            DocgateConfig(_env_file=None, par_ttl_seconds=0)

    def test_validate_backend(self):
        with pytest.raises(ServerMisconfigured) as exc_info:
            DocgateConfig(_env_file=None, namespace="ns", bucket=None).validate_backend()

        assert exc_info.value.details["missing"] == ["bucket"]


class TestErrorMapping:
    """Every gateway error maps to a fixed status and code."""

    @pytest.mark.parametrize(
        "error, status, code",
        [
            (AuthRejected(), 401, "AUTH_REJECTED"),
            (ServerMisconfigured(), 500, "SERVER_MISCONFIGURED"),
            (NoCredentialFound(), 502, "NO_CREDENTIAL_FOUND"),
            (ProviderError(provider="environment"), 502, "PROVIDER_ERROR"),
            (MalformedCredential(), 502, "SIGNING_FAILED"),
            (SecretUnavailable(), 502, "SECRET_UNAVAILABLE"),
            (BackendError(404), 502, "BACKEND_ERROR"),
            (BackendTimeout(), 504, "BACKEND_TIMEOUT"),
            (RouteNotFound(), 404, "NOT_FOUND"),
        ],
    )
    def test_status_and_code(self, error, status, code):
        assert error.status_code == status
        assert error.to_response().code == code

    def test_private_details_stay_private(self):
        error = ProviderError(details={"key_file": "/secret/path.pem"}, provider="environment")

        assert error.to_response().details == {}

    def test_backend_error_public_details(self):
        error = BackendError(403, body="y" * 300, details={"url": "https://x"})

        assert error.to_response().details == {"backend_status": 403, "backend_body": "y" * 256}
        assert error.details["url"] == "https://x"
