"""
Ordered credential provider chain.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, List, Optional, Sequence, Tuple, TYPE_CHECKING

from shared.errors import NoCredentialFound, ProviderError, ServerMisconfigured
from shared.logging import get_logger

from .models import Credential, ProviderContext
from .providers import (
    ConfigFileProvider,
    CredentialProvider,
    EnvironmentProvider,
    LoggingProvider,
    StaticProvider,
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import DocgateConfig
    from shared.metrics import MetricsCollector


class CredentialChain:
    """Try providers in order; the first credential found wins.

    An absent provider is skipped. A provider that fails outright is
    remembered and the chain moves on; the failure is raised only if no later
    provider produces a credential.
    """

    def __init__(self, providers: Iterable[CredentialProvider]):
        self._providers: Tuple[CredentialProvider, ...] = tuple(providers)
        if not self._providers:
            raise ServerMisconfigured("No credential providers configured")
        self.logger = get_logger("docgate.credentials.chain")

    @property
    def providers(self) -> Tuple[CredentialProvider, ...]:
        return self._providers

    async def resolve(self, context: Optional[ProviderContext] = None) -> Credential:
        """Resolve a credential or raise NoCredentialFound / ProviderError."""
        context = context or ProviderContext.from_environ()
        last_error: Optional[ProviderError] = None

        for provider in self._providers:
            try:
                credential = await provider.resolve(context)
            except ProviderError as exc:
                last_error = exc
                continue
            except Exception as exc:
                last_error = ProviderError(
                    "Credential provider failed",
                    details={"provider": provider.name, "error": str(exc)},
                    provider=provider.name,
                )
                continue

            if credential is not None:
                return credential

        names = [provider.name for provider in self._providers]
        if last_error is not None:
            self.logger.error(
                "Credential chain failed",
                providers=names,
                provider=last_error.provider,
                error=last_error.message,
            )
            raise last_error

        self.logger.error("Credential chain exhausted", providers=names)
        raise NoCredentialFound(details={"providers": names})


class CredentialCache:
    """Resolve through a chain once and reuse the credential afterwards."""

    def __init__(self, chain: CredentialChain):
        self.chain = chain
        self._credential: Optional[Credential] = None
        self._inflight: Optional[asyncio.Task] = None

    async def resolve(self, context: Optional[ProviderContext] = None) -> Credential:
        if self._credential is not None:
            return self._credential

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._load(context))
            self._inflight.add_done_callback(self._clear_inflight)
        return await asyncio.shield(self._inflight)

    async def _load(self, context: Optional[ProviderContext]) -> Credential:
        credential = await self.chain.resolve(context)
        self._credential = credential
        return credential

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            # Retrieve the exception so an unawaited failure is not reported
            task.exception()

    def invalidate(self) -> None:
        self._credential = None


def build_providers(
    config: "DocgateConfig",
    metrics: Optional["MetricsCollector"] = None,
) -> List[CredentialProvider]:
    """Instantiate the configured providers, each wrapped for observability."""
    providers: List[CredentialProvider] = []
    for source in config.credential_providers:
        if source == "environment":
            provider: CredentialProvider = EnvironmentProvider()
        elif source == "config_file":
            provider = ConfigFileProvider(config.oci_config_file, config.oci_config_profile)
        elif source == "static":
            provider = StaticProvider(_static_credential(config))
        else:
            raise ServerMisconfigured(
                "Unknown credential provider", details={"provider": source}
            )
        providers.append(LoggingProvider(provider.name, provider, metrics=metrics))
    return providers


def build_credential_chain(
    config: "DocgateConfig",
    metrics: Optional["MetricsCollector"] = None,
):
    """Build the chain described by configuration."""
    chain = CredentialChain(build_providers(config, metrics))
    if config.cache_credentials:
        return CredentialCache(chain)
    return chain


def _static_credential(config: "DocgateConfig") -> Optional[Credential]:
    fields: Sequence[Optional[str]] = (
        config.static_tenancy,
        config.static_user,
        config.static_fingerprint,
        config.static_private_key,
    )
    if not all(fields):
        return None
    return Credential(
        tenancy=config.static_tenancy,
        user=config.static_user,
        fingerprint=config.static_fingerprint,
        private_key=config.static_private_key,
        region=config.static_region,
    )
