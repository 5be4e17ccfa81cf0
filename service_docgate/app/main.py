"""
docgate service: bearer-authenticated access to object storage documents.
"""

import argparse
import os
from datetime import datetime
from typing import Callable, Dict, Optional

import httpx
from fastapi import Depends, Query, Request

from shared.base_service import BaseService
from shared.config import DocgateConfig, get_config
from shared.errors import GatewayException, RouteNotFound
from shared.logging import set_operation

from .adapters import BucketLocation, ObjectStorageClient, PreauthenticatedRequestFetcher
from .caching.token_cache import ScopedTokenCache
from .credentials import ProviderContext, build_credential_chain
from .domain.auth_middleware import BearerAuthGate
from .domain.proxy import ProxyGateway
from .signing.signer import RequestSigner
from .signing.strategies import DirectSigningStrategy, PreauthenticatedStrategy, SigningStrategy


APP_FACTORY = "service_docgate.app.main:create_app"


class DocgateService(BaseService):
    """Document gateway service implementation."""

    def __init__(
        self,
        config: Optional[DocgateConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Callable[[], datetime]] = None,
        context: Optional[ProviderContext] = None,
    ):
        config = config or get_config()
        super().__init__(config.service_name, config)

        self.http_client = httpx.AsyncClient(transport=transport, timeout=self.config.backend_timeout)
        self.storage = ObjectStorageClient(self.http_client, timeout=self.config.backend_timeout)
        self.credentials = build_credential_chain(self.config, self.metrics)
        self.signer = RequestSigner(clock=clock)
        self.context = context
        self.token_cache: Optional[ScopedTokenCache] = None
        self.auth_gate = BearerAuthGate(self.config.api_token)

        # An unconfigured bucket fails each proxied request, not startup
        self.location: Optional[BucketLocation] = None
        self.gateway: Optional[ProxyGateway] = None
        if self.config.namespace and self.config.bucket:
            self.location = BucketLocation.from_config(self.config)
            self.gateway = ProxyGateway(
                self._build_strategy(clock),
                self.storage,
                metrics=self.metrics,
                default_content_type=self.config.default_content_type,
                backend_timeout=self.config.backend_timeout,
            )
        else:
            self.logger.error(
                "Object storage backend is not configured",
                namespace=self.config.namespace,
                bucket=self.config.bucket,
            )

        @self.app.on_event("startup")
        async def _startup():
            self.logger.info(
                "docgate started",
                port=self.config.port,
                signing_strategy=self.config.signing_strategy,
                credential_providers=self.config.credential_providers,
            )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.http_client.aclose()

        self._setup_docgate_routes()

    def _build_strategy(self, clock: Optional[Callable[[], datetime]]) -> SigningStrategy:
        if self.config.signing_strategy == "preauthenticated":
            fetcher = PreauthenticatedRequestFetcher(
                self.location,
                self.credentials,
                self.signer,
                self.storage,
                ttl_seconds=self.config.par_ttl_seconds,
                name_prefix=self.config.par_name_prefix,
                timeout=self.config.token_timeout,
                clock=clock,
                metrics=self.metrics,
                context=self.context,
            )
            self.token_cache = ScopedTokenCache(
                fetcher,
                refresh_margin=self.config.par_refresh_margin_seconds,
                clock=clock,
                metrics=self.metrics,
            )
            return PreauthenticatedStrategy(self.token_cache)
        return DirectSigningStrategy(self.location, self.credentials, self.signer, context=self.context)

    def _authorize(self, operation: str):
        """Dependency that logs receipt and runs the bearer gate."""

        async def dependency(request: Request) -> None:
            set_operation(operation)
            self.logger.info("proxy_request_received", operation=operation, path=request.url.path)
            try:
                await self.auth_gate(request)
            except GatewayException as exc:
                outcome = "rejected" if exc.status_code == 401 else "misconfigured"
                self.metrics.increment_counter("proxy_requests_total", operation=operation, outcome=outcome)
                raise

        return dependency

    @staticmethod
    async def _require_object_key(request: Request) -> None:
        """`/download/` with no key is an unknown route, checked before auth."""
        if not request.path_params.get("key"):
            raise RouteNotFound(details={"path": request.url.path})

    def _require_gateway(self) -> ProxyGateway:
        if self.gateway is None:
            self.config.validate_backend()
        return self.gateway

    def _setup_docgate_routes(self):
        """Set up the proxy routes and the catch-all 404."""

        @self.app.get(
            "/download/{key:path}",
            dependencies=[Depends(self._require_object_key), Depends(self._authorize("download"))],
        )
        async def download(key: str):
            """Stream one object from the bucket."""
            return await self._require_gateway().download(key)

        @self.app.get("/list", dependencies=[Depends(self._authorize("list"))])
        async def list_objects(
            prefix: Optional[str] = Query(None),
            start: Optional[str] = Query(None),
            limit: Optional[int] = Query(None, ge=1, le=1000),
        ):
            """List objects in the bucket."""
            return await self._require_gateway().list(prefix=prefix, start=start, limit=limit)

        # Registered last so every route above takes precedence
        @self.app.api_route(
            "/{path:path}",
            methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
            include_in_schema=False,
        )
        async def not_found(path: str):
            self.logger.info("404 - route not found", path=f"/{path}")
            raise RouteNotFound(details={"path": f"/{path}"})

    async def _check_dependencies(self) -> Dict[str, str]:
        return {
            "object_storage": "configured" if self.gateway else "unconfigured",
            "signing_strategy": self.config.signing_strategy,
            "inbound_auth": "configured" if self.config.api_token else "unconfigured",
        }


def create_app(**overrides):
    """Create FastAPI application."""
    service = DocgateService(**overrides)
    return service.app


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="docgate", description="Object storage document gateway")
    parser.add_argument("-p", "--port", type=int, default=None, help="port to listen on")
    parser.add_argument(
        "-t",
        "--token",
        default=os.getenv("PS_API_TOKEN"),
        help="bearer token callers must present (default: $PS_API_TOKEN)",
    )
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    # Worker processes rebuild their config from the environment
    if args.port is not None:
        os.environ["DOCGATE_PORT"] = str(args.port)
    if args.token:
        os.environ["DOCGATE_API_TOKEN"] = args.token

    service = DocgateService()
    service.run(APP_FACTORY)


if __name__ == "__main__":
    main()
