from __future__ import annotations

from collections import deque
from threading import Lock
import time
from typing import Deque

from fastapi import HTTPException, Request, status

from curfew.core.config import get_settings
from curfew.services.phone_numbers import canonical_phone


class SlidingWindowLimiter:
    """Per-key request timestamps kept for one window.

    A key is dropped as soon as its window empties, and every key is swept once
    the table grows past ``max_keys``.
    """

    def __init__(self, max_keys: int = 10_000) -> None:
        self._hits: dict[str, Deque[float]] = {}
        self._lock = Lock()
        self._max_keys = max_keys

    def __len__(self) -> int:
        return len(self._hits)

    def _prune(self, key: str, cutoff: float) -> Deque[float] | None:
        hits = self._hits.get(key)
        if hits is None:
            return None
        while hits and hits[0] <= cutoff:
            hits.popleft()
        if not hits:
            del self._hits[key]
            return None
        return hits

    def hit(self, key: str, *, limit: int, window_seconds: int) -> int | None:
        """Record a hit; returns the retry-after seconds when the key is over its limit."""
        now = time.monotonic()
        cutoff = now - window_seconds
        with self._lock:
            if len(self._hits) >= self._max_keys:
                for stale_key in list(self._hits):
                    self._prune(stale_key, cutoff)
            hits = self._prune(key, cutoff)
            if hits is None:
                hits = self._hits[key] = deque()
            if len(hits) >= limit:
                return max(1, int(hits[0] + window_seconds - now))
            hits.append(now)
        return None

    def clear(self) -> None:
        with self._lock:
            self._hits.clear()


_limiter = SlidingWindowLimiter()

COMPANION_LIMITS = {
    "attach": "companion_rate_limit_attach_max_requests",
    "consent": "companion_rate_limit_consent_max_requests",
    "heartbeat": "companion_rate_limit_heartbeat_max_requests",
    "secret_code": "companion_rate_limit_secret_code_max_requests",
}


def client_address(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client and request.client.host else "unknown"


def enforce_companion_limit(request: Request, scope: str, phone_number: str | None) -> None:
    """Throttle companion calls per (scope, client address, canonical phone)."""
    settings = get_settings()
    limit = getattr(settings, COMPANION_LIMITS[scope])
    phone = canonical_phone(phone_number, settings.default_country_code)
    key = f"{scope}|{client_address(request)}|{phone}"
    retry_after = _limiter.hit(key, limit=limit, window_seconds=settings.companion_rate_limit_window_seconds)
    if retry_after is None:
        return
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=f"Too many {scope} requests. Try again in {retry_after} second(s).",
        headers={"Retry-After": str(retry_after)},
    )


def clear_rate_limiter() -> None:
    _limiter.clear()
