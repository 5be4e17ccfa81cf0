"""
Pre-authenticated request (PAR) creation against OCI Object Storage.

One signed POST yields a PAR whose access URI stands in for per-request
signing until it expires.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from shared.errors import GatewayException, SecretUnavailable, ServerMisconfigured
from shared.logging import get_logger
from shared.tracing import trace_operation

from ..caching.token_cache import ScopedToken
from ..credentials.models import ProviderContext
from ..signing.request import RequestDescriptor
from ..signing.signer import RequestSigner, utc_now
from .object_storage_client import BucketLocation, ObjectStorageClient

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


ACCESS_TYPE = "AnyObjectRead"
BUCKET_LISTING_ACTION = "ListObjects"


def format_timestamp(value: datetime) -> str:
    """Format datetime values as ISO-8601 strings with millisecond precision."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse ISO-8601 strings with Z or offset suffixes."""
    candidate = value.strip()
    if candidate.endswith("Z"):
        candidate = candidate[:-1] + "+00:00"

    parsed = datetime.fromisoformat(candidate)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class PreauthenticatedRequestFetcher:
    """Create a read-only PAR for the configured bucket."""

    def __init__(
        self,
        location: BucketLocation,
        credentials,
        signer: RequestSigner,
        storage: ObjectStorageClient,
        ttl_seconds: int = 3600,
        name_prefix: str = "docgate",
        timeout: float = 10.0,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional["MetricsCollector"] = None,
        context: Optional[ProviderContext] = None,
    ):
        self.location = location
        self.credentials = credentials
        self.signer = signer
        self.storage = storage
        self.ttl = timedelta(seconds=ttl_seconds)
        self.name_prefix = name_prefix
        self.timeout = timeout
        self._clock = clock or utc_now
        self.metrics = metrics
        self.context = context
        self.logger = get_logger("docgate.par_client")

    async def __call__(self) -> ScopedToken:
        return await self.fetch()

    async def fetch(self) -> ScopedToken:
        """Create a PAR; every failure surfaces as SecretUnavailable."""
        with trace_operation(
            "docgate.scoped_token.fetch",
            namespace=self.location.namespace,
            bucket=self.location.bucket,
        ):
            try:
                token = await self._create()
            except ServerMisconfigured:
                self._record("failure")
                raise
            except SecretUnavailable as exc:
                self._record("failure")
                self.logger.error("Scoped token fetch failed", error=exc.message, details=exc.details)
                raise
            except GatewayException as exc:
                self._record("failure")
                self.logger.error("Scoped token fetch failed", cause=exc.code, error=exc.message)
                raise SecretUnavailable(details={"cause": exc.code, "error": exc.message}) from exc

        self._record("success")
        self.logger.info(
            "Scoped token fetched",
            par_id=token.par_id,
            expires_at=format_timestamp(token.expires_at) if token.expires_at else None,
        )
        return token

    async def _create(self) -> ScopedToken:
        credential = await self.credentials.resolve(self.context)
        endpoint = self.location.endpoint_for(credential.region)
        issued_at = self._clock()

        payload = {
            "name": f"{self.name_prefix}-{uuid.uuid4().hex}",
            "accessType": ACCESS_TYPE,
            "bucketListingAction": BUCKET_LISTING_ACTION,
            "timeExpires": format_timestamp(issued_at + self.ttl),
        }
        descriptor = RequestDescriptor(
            method="POST",
            url=f"{endpoint}{self.location.bucket_path}/p/",
            headers={"content-type": "application/json", "accept": "application/json"},
            body=json.dumps(payload).encode("utf-8"),
        )
        signed = self.signer.sign(descriptor, credential)

        response = await self.storage.send(signed, timeout=self.timeout)
        if not response.is_success:
            raise SecretUnavailable(
                "Scoped token request rejected",
                details={"backend_status": response.status_code, "body": response.text[:256]},
            )

        return self._decode(response.content, endpoint, issued_at)

    @staticmethod
    def _decode(content: bytes, endpoint: str, issued_at: datetime) -> ScopedToken:
        try:
            data: Dict[str, Any] = json.loads(content)
            access_uri = data["accessUri"]
            if not isinstance(access_uri, str) or not access_uri:
                raise ValueError("accessUri is empty")
            expires_raw = data.get("timeExpires")
            expires_at = parse_timestamp(expires_raw) if expires_raw else None
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise SecretUnavailable(
                "Scoped token response could not be decoded",
                details={"error": str(exc)},
            ) from exc

        return ScopedToken(
            value=access_uri,
            issued_at=issued_at,
            endpoint=endpoint,
            expires_at=expires_at,
            par_id=data.get("id"),
        )

    def _record(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("scoped_token_fetches_total", outcome=outcome)
