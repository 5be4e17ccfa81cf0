"""
Strategies for authorizing outbound object storage requests.

`DirectSigningStrategy` signs every request with the resolved credential.
`PreauthenticatedStrategy` addresses objects through a cached PAR URL and
sends them unsigned.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Optional
from urllib.parse import quote, urlencode

from shared.logging import get_logger

from ..adapters.object_storage_client import BucketLocation
from ..caching.token_cache import ScopedTokenCache
from ..credentials.models import ProviderContext
from .request import RequestDescriptor, SignedRequest
from .signer import RequestSigner


REJECTION_STATUSES = frozenset({401, 403})


def _with_query(url: str, params: Optional[Dict[str, object]]) -> str:
    query = {name: value for name, value in (params or {}).items() if value is not None}
    if not query:
        return url
    return f"{url}?{urlencode(query)}"


class SigningStrategy(ABC):
    """Builds authorized outbound requests for the proxy gateway."""

    name: str = "base"

    @abstractmethod
    async def object_request(self, key: str) -> SignedRequest:
        """Request for reading one object."""

    @abstractmethod
    async def list_request(self, params: Optional[Dict[str, object]] = None) -> SignedRequest:
        """Request for listing the bucket."""

    def handle_rejection(self, status_code: int, request: SignedRequest) -> None:
        """React to the backend refusing `request`'s authorization."""


class DirectSigningStrategy(SigningStrategy):
    """Sign each request with a credential resolved through the chain."""

    name = "direct"

    def __init__(
        self,
        location: BucketLocation,
        credentials,
        signer: RequestSigner,
        context: Optional[ProviderContext] = None,
    ):
        self.location = location
        self.credentials = credentials
        self.signer = signer
        self.context = context

    async def object_request(self, key: str) -> SignedRequest:
        return await self._signed_get(self.location.object_path(key))

    async def list_request(self, params: Optional[Dict[str, object]] = None) -> SignedRequest:
        return await self._signed_get(self.location.list_path, params)

    async def _signed_get(self, path: str, params: Optional[Dict[str, object]] = None) -> SignedRequest:
        credential = await self.credentials.resolve(self.context)
        endpoint = self.location.endpoint_for(credential.region)
        descriptor = RequestDescriptor(method="GET", url=_with_query(f"{endpoint}{path}", params))
        return self.signer.sign(descriptor, credential)


class PreauthenticatedStrategy(SigningStrategy):
    """Address objects through the cached pre-authenticated request."""

    name = "preauthenticated"

    def __init__(self, cache: ScopedTokenCache):
        self.cache = cache
        self.logger = get_logger("docgate.strategy.preauthenticated")

    async def object_request(self, key: str) -> SignedRequest:
        token = await self.cache.get_token()
        url = f"{token.url_prefix}{quote(key, safe='')}"
        return SignedRequest(descriptor=RequestDescriptor(method="GET", url=url), scoped_token=token)

    async def list_request(self, params: Optional[Dict[str, object]] = None) -> SignedRequest:
        token = await self.cache.get_token()
        return SignedRequest(
            descriptor=RequestDescriptor(method="GET", url=_with_query(token.url_prefix, params)),
            scoped_token=token,
        )

    def handle_rejection(self, status_code: int, request: SignedRequest) -> None:
        if status_code in REJECTION_STATUSES:
            token = request.scoped_token
            self.logger.warning(
                "Scoped token rejected by backend",
                backend_status=status_code,
                par_id=token.par_id if token else None,
            )
            # Only the token this request used; a newer one stays cached
            self.cache.invalidate(token)
