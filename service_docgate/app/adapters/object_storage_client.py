"""
Object storage transport for the document gateway.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING
from urllib.parse import quote

import httpx

from shared.errors import BackendError, BackendTimeout, BackendUnreachable, ServerMisconfigured
from shared.logging import get_logger

from ..signing.request import SignedRequest

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.config import DocgateConfig


ENDPOINT_TEMPLATE = "https://objectstorage.{region}.oraclecloud.com"

_PAR_SEGMENT = re.compile(r"/p/[^/]+/")


def redact_url(url: str) -> str:
    """Hide the capability segment of a pre-authenticated URL."""
    return _PAR_SEGMENT.sub("/p/***/", url, count=1)


@dataclass(frozen=True)
class BucketLocation:
    """Where the gateway's bucket lives."""

    namespace: str
    bucket: str
    region: Optional[str] = None
    endpoint: Optional[str] = None

    @classmethod
    def from_config(cls, config: "DocgateConfig") -> "BucketLocation":
        config.validate_backend()
        return cls(
            namespace=config.namespace,
            bucket=config.bucket,
            region=config.region,
            endpoint=config.objectstorage_endpoint,
        )

    def endpoint_for(self, credential_region: Optional[str] = None) -> str:
        """Resolve the service endpoint; configured values win over the credential's region."""
        if self.endpoint:
            return self.endpoint.rstrip("/")
        region = self.region or credential_region
        if not region:
            raise ServerMisconfigured(
                "No object storage region configured",
                details={"namespace": self.namespace, "bucket": self.bucket},
            )
        return ENDPOINT_TEMPLATE.format(region=region)

    @property
    def bucket_path(self) -> str:
        return f"/n/{quote(self.namespace, safe='')}/b/{quote(self.bucket, safe='')}"

    @property
    def list_path(self) -> str:
        return f"{self.bucket_path}/o"

    def object_path(self, key: str) -> str:
        return f"{self.list_path}/{quote(key, safe='')}"


class ObjectStorageClient:
    """Send signed requests over one shared httpx client.

    The client is safe for concurrent use, so no lock is taken around it.
    Every call carries its own timeout.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(transport=transport, timeout=timeout)
        self.logger = get_logger("docgate.object_storage")

    async def send(
        self,
        request: SignedRequest,
        timeout: Optional[float] = None,
        stream: bool = False,
    ) -> httpx.Response:
        """Send a request; transport failures become gateway errors.

        With `stream=True` the caller owns the response and must close it.
        """
        effective_timeout = timeout if timeout is not None else self.timeout
        outbound = self._client.build_request(
            request.method,
            request.url,
            headers=dict(request.headers),
            content=request.body,
            timeout=effective_timeout,
        )
        url = redact_url(request.url)
        try:
            return await self._client.send(outbound, stream=stream)
        except httpx.TimeoutException as exc:
            self.logger.warning(
                "Object storage request timed out",
                method=request.method,
                url=url,
                timeout=effective_timeout,
            )
            raise BackendTimeout(details={"url": url, "timeout": effective_timeout}) from exc
        except httpx.HTTPError as exc:
            self.logger.warning(
                "Object storage request failed",
                method=request.method,
                url=url,
                error=type(exc).__name__,
            )
            raise BackendUnreachable(details={"url": url, "error": str(exc)}) from exc

    @staticmethod
    async def raise_for_status(response: httpx.Response) -> None:
        """Close a non-success response and raise BackendError for it."""
        if response.is_success:
            return
        try:
            body = (await response.aread()).decode("utf-8", errors="replace")
        except httpx.HTTPError:
            body = ""
        finally:
            await response.aclose()
        raise BackendError(
            response.status_code,
            body,
            details={"url": redact_url(str(response.request.url))},
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
