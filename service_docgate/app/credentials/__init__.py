"""
Credential resolution for the object storage backend.
"""

from .models import Credential, ProviderContext
from .providers import (
    ConfigFileProvider,
    CredentialProvider,
    EnvironmentProvider,
    LoggingProvider,
    StaticProvider,
)
from .chain import CredentialCache, CredentialChain, build_credential_chain, build_providers

__all__ = [
    "ConfigFileProvider",
    "Credential",
    "CredentialCache",
    "CredentialChain",
    "CredentialProvider",
    "EnvironmentProvider",
    "LoggingProvider",
    "ProviderContext",
    "StaticProvider",
    "build_credential_chain",
    "build_providers",
]
