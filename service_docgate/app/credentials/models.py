"""
Credential value types shared by providers, the chain and the signer.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional


@dataclass(frozen=True)
class Credential:
    """API signing key plus the identity it belongs to.

    `private_key` holds PEM text and never appears in `repr`.
    """

    tenancy: str
    user: str
    fingerprint: str
    private_key: str = field(repr=False)
    passphrase: Optional[str] = field(default=None, repr=False)
    region: Optional[str] = None

    @property
    def key_id(self) -> str:
        """Key identifier the backend uses to find the public key."""
        return f"{self.tenancy}/{self.user}/{self.fingerprint}"


@dataclass(frozen=True)
class ProviderContext:
    """Inputs a provider may read while resolving."""

    env: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))

    @classmethod
    def from_environ(cls) -> "ProviderContext":
        return cls(env=dict(os.environ))
