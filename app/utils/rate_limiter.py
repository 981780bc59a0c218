import threading
import time
from collections import deque
from typing import Optional, Tuple

from fastapi import Request

from app.config import Settings
from app.errors import RateLimited


class InMemoryRateLimiter:
    """
    Simple sliding-window in-memory rate limiter.
    Suitable for single-instance deployments.
    """

    def __init__(self, sweep_interval_seconds: int = 300) -> None:
        self._events: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._sweep_interval = sweep_interval_seconds
        self._last_sweep = time.time()
        self._longest_window = 0

    def _sweep(self, now: float) -> None:
        # Drop keys whose newest event is outside every window in use.
        cutoff = now - self._longest_window
        stale = [key for key, events in self._events.items() if not events or events[-1] <= cutoff]
        for key in stale:
            del self._events[key]
        self._last_sweep = now

    def allow(self, key: str, limit: int, window_seconds: int) -> Tuple[bool, int]:
        now = time.time()
        cutoff = now - window_seconds

        with self._lock:
            self._longest_window = max(self._longest_window, window_seconds)
            if now - self._last_sweep >= self._sweep_interval:
                self._sweep(now)

            events = self._events.get(key)
            if events is not None:
                while events and events[0] <= cutoff:
                    events.popleft()
                if not events:
                    del self._events[key]
                    events = None

            if events is not None and len(events) >= limit:
                retry_after = int(max(1, window_seconds - (now - events[0])))
                return False, retry_after

            self._events.setdefault(key, deque()).append(now)
            return True, 0

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


rate_limiter = InMemoryRateLimiter()


def extract_client_ip(request: Request, settings: Settings) -> str:
    """
    Resolve client IP, trusting proxy headers only from pinned proxy addresses.
    """
    remote_host = request.client.host if request.client and request.client.host else ""
    trusted = settings.trusted_proxy_ip_set
    if settings.trust_proxy_headers and trusted and remote_host in trusted:
        cf_ip = request.headers.get("cf-connecting-ip")
        if cf_ip:
            return cf_ip.strip()

        xff = request.headers.get("x-forwarded-for")
        if xff:
            return xff.split(",")[0].strip()

        xrip = request.headers.get("x-real-ip")
        if xrip:
            return xrip.strip()

    return remote_host or "unknown"


def enforce_rate_limit(
    request: Request,
    settings: Settings,
    scope: str,
    limit: int,
    window_seconds: int,
    extra_key: Optional[str] = None,
) -> None:
    key = f"{scope}:{extract_client_ip(request, settings)}"
    if extra_key:
        key = f"{key}:{extra_key}"

    allowed, retry_after = rate_limiter.allow(key=key, limit=limit, window_seconds=window_seconds)
    if not allowed:
        raise RateLimited(retry_after=retry_after)
