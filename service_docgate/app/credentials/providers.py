"""
Credential providers for the object storage backend.

A provider returns a Credential, returns None when its source simply has
nothing to offer, or raises ProviderError when the source exists but is
broken (unreadable key file, corrupt config file). Disk reads run in a
worker thread so they never stall the event loop.
"""

from __future__ import annotations

import asyncio
import configparser
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, TYPE_CHECKING

from shared.errors import ProviderError
from shared.logging import get_logger

from .models import Credential, ProviderContext

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


ENV_TENANCY = "OCI_TENANCY"
ENV_USER = "OCI_USER"
ENV_FINGERPRINT = "OCI_FINGERPRINT"
ENV_KEY_FILE = "OCI_KEY_FILE"
ENV_PRIVATE_KEY = "OCI_PRIVATE_KEY"
ENV_PASSPHRASE = "OCI_KEY_PASSPHRASE"
ENV_REGION = "OCI_REGION"
ENV_CONFIG_FILE = "OCI_CONFIG_FILE"
ENV_CONFIG_PROFILE = "OCI_CONFIG_PROFILE"


def read_key_file(path: str, provider: str) -> str:
    """Read PEM key material from disk."""
    key_path = Path(path).expanduser()
    try:
        return key_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ProviderError(
            "Unable to read private key file",
            details={"provider": provider, "key_file": str(key_path), "error": str(exc)},
            provider=provider,
        ) from exc


class CredentialProvider(ABC):
    """Resolve a credential from a single source."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier used in logs and metrics."""

    @abstractmethod
    async def resolve(self, context: ProviderContext) -> Optional[Credential]:
        """Return a credential, or None when this source has none."""


class EnvironmentProvider(CredentialProvider):
    """Read the credential from OCI_* environment variables."""

    required = (ENV_TENANCY, ENV_USER, ENV_FINGERPRINT)

    def __init__(self):
        self.logger = get_logger("docgate.credentials.environment")

    @property
    def name(self) -> str:
        return "environment"

    async def resolve(self, context: ProviderContext) -> Optional[Credential]:
        env = context.env
        missing = [var for var in self.required if not env.get(var)]
        if not env.get(ENV_KEY_FILE) and not env.get(ENV_PRIVATE_KEY):
            missing.append(f"{ENV_KEY_FILE}|{ENV_PRIVATE_KEY}")
        if missing:
            self.logger.debug("Environment credential incomplete", missing=missing)
            return None

        private_key = env.get(ENV_PRIVATE_KEY)
        if not private_key:
            private_key = await asyncio.to_thread(read_key_file, env[ENV_KEY_FILE], self.name)

        return Credential(
            tenancy=env[ENV_TENANCY],
            user=env[ENV_USER],
            fingerprint=env[ENV_FINGERPRINT],
            private_key=private_key,
            passphrase=env.get(ENV_PASSPHRASE) or None,
            region=env.get(ENV_REGION) or None,
        )


class ConfigFileProvider(CredentialProvider):
    """Read the credential from a profile of an OCI CLI style config file."""

    required = ("user", "tenancy", "fingerprint", "key_file")

    def __init__(self, path: str = "~/.oci/config", profile: str = "DEFAULT"):
        self.path = path
        self.profile = profile
        self.logger = get_logger("docgate.credentials.config_file")

    @property
    def name(self) -> str:
        return "config_file"

    async def resolve(self, context: ProviderContext) -> Optional[Credential]:
        config_path = Path(context.env.get(ENV_CONFIG_FILE) or self.path).expanduser()
        profile = context.env.get(ENV_CONFIG_PROFILE) or self.profile

        if not await asyncio.to_thread(config_path.is_file):
            self.logger.debug("Config file not present", path=str(config_path))
            return None

        parser = await asyncio.to_thread(self._parse, config_path)

        if profile != parser.default_section and not parser.has_section(profile):
            self.logger.debug("Config profile not present", path=str(config_path), profile=profile)
            return None

        section = parser[profile]
        missing = [key for key in self.required if not section.get(key)]
        if missing:
            self.logger.debug("Config profile incomplete", profile=profile, missing=missing)
            return None

        key_file = section["key_file"]
        if not os.path.isabs(os.path.expanduser(key_file)):
            key_file = str(config_path.parent / key_file)

        return Credential(
            tenancy=section["tenancy"],
            user=section["user"],
            fingerprint=section["fingerprint"],
            private_key=await asyncio.to_thread(read_key_file, key_file, self.name),
            passphrase=section.get("pass_phrase") or None,
            region=section.get("region") or None,
        )

    def _parse(self, config_path: Path) -> configparser.ConfigParser:
        parser = configparser.ConfigParser(interpolation=None)
        try:
            with open(config_path, "r", encoding="utf-8") as handle:
                parser.read_file(handle)
        except (OSError, configparser.Error, UnicodeDecodeError) as exc:
            raise ProviderError(
                "Unable to parse config file",
                details={"path": str(config_path), "error": str(exc)},
                provider=self.name,
            ) from exc
        return parser


class StaticProvider(CredentialProvider):
    """Hand out a fixed, injected credential."""

    def __init__(self, credential: Optional[Credential] = None):
        self._credential = credential

    @property
    def name(self) -> str:
        return "static"

    async def resolve(self, context: ProviderContext) -> Optional[Credential]:
        return self._credential


class LoggingProvider(CredentialProvider):
    """Wrap a provider and report every resolution attempt."""

    def __init__(
        self,
        name: str,
        inner: CredentialProvider,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self._name = name
        self.inner = inner
        self.metrics = metrics
        self.logger = get_logger("docgate.credentials")

    @property
    def name(self) -> str:
        return self._name

    def _record(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter(
                "credential_resolutions_total", provider=self._name, outcome=outcome
            )

    async def resolve(self, context: ProviderContext) -> Optional[Credential]:
        self.logger.info("credential_provider_attempt", provider=self._name)
        try:
            credential = await self.inner.resolve(context)
        except Exception as exc:
            self.logger.warning(
                "credential_provider_error",
                provider=self._name,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            self._record("error")
            raise

        if credential is None:
            self.logger.info("credential_provider_absent", provider=self._name)
            self._record("absent")
            return None

        self.logger.info("credential_provider_found", provider=self._name)
        self.logger.debug("credential_principal", provider=self._name, user=credential.user)
        self._record("found")
        return credential
