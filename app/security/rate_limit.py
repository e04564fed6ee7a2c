"""
Sliding-window rate limiter for sensitive endpoints (login, password reset).

Clients are keyed by network address plus a coarse User-Agent fingerprint,
never by user id alone, because most guarded flows run before
authentication.

Counters live in process memory, guarded by one lock so concurrent bursts
from the same client are never undercounted. The limiter fails open: any
internal error is logged and the request is allowed.
"""

from __future__ import annotations

import hashlib
import logging
import math
import threading
import time
from collections import deque
from collections.abc import Callable, Collection, Mapping
from dataclasses import dataclass

from fastapi import Request

from app.security.errors import RateLimited
from app.settings import RateLimitBucket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after_seconds: int = 0


def get_client_identifier(request: Request, trusted_proxies: Collection[str] = ()) -> str:
    """
    Network address plus User-Agent fingerprint for ``request``.

    Forwarding headers are only read when the direct peer is one of
    ``trusted_proxies``; otherwise any client could pick its own key.
    """

    peer = request.client.host if request.client else None
    ip = ""
    if peer is not None and peer in trusted_proxies:
        forwarded = request.headers.get("x-forwarded-for", "")
        ip = forwarded.split(",")[0].strip() if forwarded else ""
        if not ip:
            ip = request.headers.get("x-real-ip", "").strip()
    if not ip:
        ip = peer or "unknown"

    user_agent = request.headers.get("user-agent", "")
    fingerprint = hashlib.sha256(user_agent.encode("utf-8")).hexdigest()[:12]
    return f"{ip}:{fingerprint}"


class RateLimiter:
    def __init__(
        self,
        buckets: Mapping[str, RateLimitBucket],
        clock: Callable[[], float] = time.monotonic,
        trusted_proxies: Collection[str] = (),
    ) -> None:
        self._buckets = dict(buckets)
        self._clock = clock
        self.trusted_proxies = frozenset(trusted_proxies)
        self._lock = threading.Lock()
        self._hits: dict[tuple[str, str], deque[float]] = {}
        # Stale keys are swept at most once per shortest window.
        self._sweep_every = min((b.window_seconds for b in self._buckets.values()), default=60)
        self._last_sweep: float | None = None

    def check_limit(self, key: str, bucket: str) -> RateLimitDecision:
        """Consume one point for ``key`` in ``bucket`` and report the outcome."""

        try:
            return self._consume(key, bucket)
        except Exception:
            logger.exception("Rate limiter failure, allowing request bucket=%s", bucket)
            return RateLimitDecision(allowed=True, limit=0, remaining=0)

    def _consume(self, key: str, bucket: str) -> RateLimitDecision:
        spec = self._buckets.get(bucket)
        if spec is None:
            logger.warning("Unknown rate limit bucket=%s, allowing request", bucket)
            return RateLimitDecision(allowed=True, limit=0, remaining=0)

        now = self._clock()
        window_start = now - spec.window_seconds

        with self._lock:
            if self._last_sweep is None:
                self._last_sweep = now
            elif now - self._last_sweep >= self._sweep_every:
                self._sweep(now)

            hits = self._hits.get((bucket, key))
            if hits is None:
                hits = self._hits[(bucket, key)] = deque()
            while hits and hits[0] <= window_start:
                hits.popleft()

            if len(hits) >= spec.points:
                retry_after = max(1, math.ceil(hits[0] + spec.window_seconds - now))
                logger.warning("Rate limit exceeded bucket=%s key=%s count=%s", bucket, key, len(hits))
                return RateLimitDecision(
                    allowed=False,
                    limit=spec.points,
                    remaining=0,
                    retry_after_seconds=retry_after,
                )

            hits.append(now)
            return RateLimitDecision(allowed=True, limit=spec.points, remaining=spec.points - len(hits))

    def _sweep(self, now: float) -> None:
        # Caller holds the lock. Drops every key whose newest hit has left its window.
        stale = [
            (bucket, key)
            for (bucket, key), hits in self._hits.items()
            if not hits or hits[-1] <= now - self._buckets[bucket].window_seconds
        ]
        for entry in stale:
            del self._hits[entry]
        self._last_sweep = now
        if stale:
            logger.debug("Rate limiter swept %s stale keys, %s remain", len(stale), len(self._hits))

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._last_sweep = None


def get_rate_limiter(request: Request) -> RateLimiter:
    limiter = getattr(request.app.state, "rate_limiter", None)
    if limiter is None:
        raise RuntimeError("Rate limiter not configured. Did create_app() run?")
    return limiter


def rate_limit(bucket: str, message: str | None = None) -> Callable[[Request], None]:
    """
    Dependency factory for guarded endpoints:

        @router.post("/auth/login", dependencies=[Depends(rate_limit("auth"))])
    """

    def _check(request: Request) -> None:
        limiter = get_rate_limiter(request)
        decision = limiter.check_limit(get_client_identifier(request, limiter.trusted_proxies), bucket)
        if not decision.allowed:
            detail = message.format(minutes=math.ceil(decision.retry_after_seconds / 60)) if message else None
            raise RateLimited(decision.retry_after_seconds, detail=detail)

    return _check
