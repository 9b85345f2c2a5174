"""Request guards shared by the public and dashboard endpoints."""

from __future__ import annotations

import os
import threading
import time
from collections import defaultdict, deque
from typing import Deque, DefaultDict

from fastapi import HTTPException, Request


def _normalize_origin(value: str) -> str:
    return value.strip().rstrip("/").lower()


TRUSTED_ORIGINS = tuple(
    _normalize_origin(entry)
    for entry in os.getenv("TRUSTED_ORIGINS", "").split(",")
    if entry.strip()
)

_RATE_LOCK = threading.Lock()
_RATE_BUCKETS: DefaultDict[str, Deque[float]] = defaultdict(deque)

# (limit, window_seconds) per route family
RATE_LIMITS = {
    "deliveries": (30, 60),
    "driver": (60, 60),
    "payouts": (5, 60),
    "orders": (10, 60),
    "chat_widget": (20, 60),
    "login": (5, 60),
}


def get_client_ip(request: Request) -> str:
    """Best effort extraction of the requester IP address."""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if candidate:
            return candidate
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def enforce_same_origin(request: Request) -> None:
    """Block cross-site form posts unless explicitly allowed."""

    origin = request.headers.get("origin")
    if not origin:
        return
    normalized_origin = _normalize_origin(origin)
    if normalized_origin in TRUSTED_ORIGINS:
        return
    host = request.headers.get("host")
    scheme = request.url.scheme or "http"
    if host:
        expected = _normalize_origin(f"{scheme}://{host}")
        if normalized_origin == expected:
            return
    raise HTTPException(status_code=403, detail="Request origin not allowed")


def rate_limit_request(
    request: Request,
    *,
    scope: str,
    limit: int,
    window_seconds: int,
) -> None:
    """Apply an in-memory sliding window per client IP and scope."""

    identifier = f"{scope}:{get_client_ip(request)}"
    now = time.monotonic()
    with _RATE_LOCK:
        bucket = _RATE_BUCKETS[identifier]
        while bucket and now - bucket[0] > window_seconds:
            bucket.popleft()
        if len(bucket) >= limit:
            raise HTTPException(status_code=429, detail="Too many requests")
        bucket.append(now)


def rate_limit(scope: str):
    """Build a FastAPI dependency enforcing the configured limit for ``scope``."""

    limit, window_seconds = RATE_LIMITS[scope]

    def _dependency(request: Request) -> None:
        rate_limit_request(request, scope=scope, limit=limit, window_seconds=window_seconds)

    return _dependency


def reset_rate_limits() -> None:
    with _RATE_LOCK:
        _RATE_BUCKETS.clear()


__all__ = [
    "enforce_same_origin",
    "get_client_ip",
    "rate_limit",
    "rate_limit_request",
    "reset_rate_limits",
    "RATE_LIMITS",
]
