"""
In-process cache for the scoped (pre-authenticated) access token.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, TYPE_CHECKING

from shared.errors import SecretUnavailable
from shared.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class ScopedToken:
    """A backend-issued capability that stands in for per-request signing."""

    value: str
    issued_at: datetime
    endpoint: str = ""
    expires_at: Optional[datetime] = None
    par_id: Optional[str] = None

    @property
    def url_prefix(self) -> str:
        return f"{self.endpoint}{self.value}"

    def usable_at(self, now: datetime, margin: timedelta = timedelta(0)) -> bool:
        """True while `now` is before the expiry less the refresh margin."""
        if self.expires_at is None:
            return True
        return now < self.expires_at - margin


class ScopedTokenCache:
    """Cache one scoped token and coalesce concurrent refreshes.

    At most one fetch runs at a time. Callers arriving during a miss await
    the same task; it is shielded so a caller that goes away does not cancel
    the fetch for everybody else. A failed fetch leaves the cache unchanged.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[ScopedToken]],
        *,
        refresh_margin: float = 60.0,
        clock: Optional[Callable[[], datetime]] = None,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self._fetch = fetch
        self.refresh_margin = timedelta(seconds=refresh_margin)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.metrics = metrics
        self.logger = get_logger("docgate.token_cache")

        self._token: Optional[ScopedToken] = None
        self._inflight: Optional[asyncio.Task] = None

    @property
    def current(self) -> Optional[ScopedToken]:
        return self._token

    async def get_token(self, force_refresh: bool = False) -> ScopedToken:
        """Return a usable token, fetching one when needed."""
        token = self._token
        if not force_refresh and token is not None and token.usable_at(self._clock(), self.refresh_margin):
            self._record("hit")
            return token

        self._record("refresh" if force_refresh else "miss")
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._refresh())
            self._inflight.add_done_callback(self._clear_inflight)
        else:
            self.logger.debug("Joining in-flight token fetch")
        return await asyncio.shield(self._inflight)

    def invalidate(self, token: Optional[ScopedToken] = None) -> None:
        """Drop the cached token (only if it is still `token`, when given)."""
        if token is None or self._token is token:
            if self._token is not None:
                self.logger.info("Scoped token invalidated", par_id=self._token.par_id)
            self._token = None

    async def _refresh(self) -> ScopedToken:
        token = await self._fetch()
        if not token.usable_at(self._clock()):
            # A token already past its hard expiry is never handed out
            self.logger.error("Fetched scoped token already expired", expires_at=str(token.expires_at))
            raise SecretUnavailable(
                "Scoped token expired on arrival",
                details={"par_id": token.par_id, "expires_at": str(token.expires_at)},
            )
        self._token = token
        self.logger.info(
            "Scoped token cached",
            par_id=token.par_id,
            expires_at=token.expires_at.isoformat() if token.expires_at else None,
        )
        return token

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None
        if not task.cancelled():
            task.exception()

    def _record(self, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("scoped_token_cache_total", result=result)

