"""
Proxy gateway: forwards authorized reads to object storage.
"""

import mimetypes
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional

import httpx
from fastapi import Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from shared.errors import GatewayException, RouteNotFound
from shared.logging import get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.tracing import trace_operation

from ..adapters.object_storage_client import ObjectStorageClient
from ..signing.request import SignedRequest
from ..signing.strategies import SigningStrategy


FORWARDED_HEADERS = ("etag", "last-modified")


def guess_content_type(key: str, backend_type: Optional[str], default: str = "application/octet-stream") -> str:
    """Media type for a key: its extension first, then the backend's header."""
    guessed, _ = mimetypes.guess_type(key)
    return guessed or backend_type or default


class ProxyGateway:
    """Turn download and list calls into authorized backend requests."""

    def __init__(
        self,
        strategy: SigningStrategy,
        storage: ObjectStorageClient,
        metrics: Optional[MetricsCollector] = None,
        default_content_type: str = "application/octet-stream",
        backend_timeout: float = 30.0,
    ):
        self.strategy = strategy
        self.storage = storage
        self.metrics = metrics or get_metrics_collector("docgate")
        self.default_content_type = default_content_type
        self.backend_timeout = backend_timeout
        self.logger = get_logger("docgate.proxy")

    async def download(self, key: str) -> StreamingResponse:
        """Stream one object back to the caller."""
        if not key:
            # An empty key would address the bucket itself
            raise RouteNotFound(details={"path": "/download/"})

        response = await self._forward(
            "download",
            lambda: self.strategy.object_request(key),
            stream=True,
            key=key,
        )

        headers: Dict[str, str] = {}
        for name in FORWARDED_HEADERS:
            if name in response.headers:
                headers[name] = response.headers[name]
        # Decoded bytes no longer match an encoded length
        if "content-length" in response.headers and "content-encoding" not in response.headers:
            headers["content-length"] = response.headers["content-length"]

        media_type = guess_content_type(key, response.headers.get("content-type"), self.default_content_type)
        return StreamingResponse(
            self._relay(response),
            media_type=media_type,
            headers=headers,
            background=BackgroundTask(response.aclose),
        )

    async def list(
        self,
        prefix: Optional[str] = None,
        start: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Response:
        """Return the backend listing payload unchanged."""
        params = {"prefix": prefix, "start": start, "limit": limit}
        response = await self._forward(
            "list",
            lambda: self.strategy.list_request(params),
            prefix=prefix,
        )
        return Response(
            content=response.content,
            status_code=200,
            media_type=response.headers.get("content-type", "application/json"),
        )

    async def _forward(
        self,
        operation: str,
        build: Callable[[], Awaitable[SignedRequest]],
        stream: bool = False,
        **fields,
    ) -> httpx.Response:
        with trace_operation(f"docgate.proxy.{operation}", strategy=self.strategy.name, **fields):
            try:
                signed = await build()
                self.logger.debug("Forwarding request", operation=operation, method=signed.method)
                with self.metrics.time_operation("backend_request_duration_seconds", operation=operation):
                    response = await self.storage.send(signed, timeout=self.backend_timeout, stream=stream)

                if not response.is_success:
                    self.strategy.handle_rejection(response.status_code, signed)
                    await self.storage.raise_for_status(response)
            except GatewayException as exc:
                self.logger.warning(
                    "backend_request_failed",
                    operation=operation,
                    error_code=exc.code,
                    error=exc.message,
                    backend_status=getattr(exc, "backend_status", None),
                    **fields,
                )
                self.metrics.increment_counter("proxy_requests_total", operation=operation, outcome="failed")
                raise

        self.logger.info(
            "backend_request_succeeded",
            operation=operation,
            backend_status=response.status_code,
            **fields,
        )
        self.metrics.increment_counter("proxy_requests_total", operation=operation, outcome="succeeded")
        return response

    @staticmethod
    async def _relay(response: httpx.Response) -> AsyncIterator[bytes]:
        try:
            async for chunk in response.aiter_bytes():
                yield chunk
        finally:
            await response.aclose()
