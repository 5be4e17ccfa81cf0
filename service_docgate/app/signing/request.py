"""
Outbound request value types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping, Optional, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..caching.token_cache import ScopedToken


def _freeze(headers: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType({str(name).lower(): value for name, value in (headers or {}).items()})


@dataclass(frozen=True)
class RequestDescriptor:
    """An unsigned outbound request. Header names are stored lowercase."""

    method: str
    url: str
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None

    def __post_init__(self):
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "headers", _freeze(self.headers))


@dataclass(frozen=True)
class SignedRequest:
    """A descriptor plus the headers that authorize it.

    Built by RequestSigner, or by the pre-authenticated strategy when the
    capability travels in the URL and `signature_headers` is empty. In
    that case `scoped_token` is the token the URL was built from.
    """

    descriptor: RequestDescriptor
    signature_headers: Mapping[str, str] = field(default_factory=dict)
    scoped_token: Optional["ScopedToken"] = None

    def __post_init__(self):
        object.__setattr__(self, "signature_headers", _freeze(self.signature_headers))

    @property
    def method(self) -> str:
        return self.descriptor.method

    @property
    def url(self) -> str:
        return self.descriptor.url

    @property
    def body(self) -> Optional[bytes]:
        return self.descriptor.body

    @property
    def headers(self) -> Mapping[str, str]:
        merged = dict(self.descriptor.headers)
        merged.update(self.signature_headers)
        return merged
