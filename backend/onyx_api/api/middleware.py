"""
Global request middleware: per-IP rate limiting and request body size limits.
"""
import ipaddress
import logging
import time
from typing import Any, Callable, Optional, Sequence

from cachetools import TTLCache
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

_MAX_TRACKED_IPS = 10000
_EXEMPT_PATHS = ("/health", "/")
# Stripe retries webhooks; never throttle them
_EXEMPT_SUFFIXES = ("/stripe/webhook",)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding one-minute window of requests per client IP."""

    def __init__(
        self, app: Any, requests_per_minute: int = 100, trusted_proxies: Sequence[str] = ()
    ) -> None:
        super().__init__(app)
        self.requests_per_minute = requests_per_minute
        # Request tracking: {ip: [timestamp, ...]}; idle IPs expire on their own
        self.minute_buckets: TTLCache = TTLCache(maxsize=_MAX_TRACKED_IPS, ttl=120)
        self.trusted_proxies = [ipaddress.ip_network(p, strict=False) for p in trusted_proxies]

    def _is_valid_ip(self, ip_str: str) -> bool:
        try:
            ipaddress.ip_address(ip_str)
            return True
        except ValueError:
            return False

    def _is_trusted_proxy(self, host: Optional[str]) -> bool:
        if not host or not self._is_valid_ip(host):
            return False
        address = ipaddress.ip_address(host)
        return any(address in network for network in self.trusted_proxies)

    def _get_client_ip(self, request: Request) -> str:
        """
        Client IP for bucketing.

        X-Forwarded-For is honored only when the socket peer is a configured
        proxy; anyone else could pick a new bucket per request with it.
        """
        peer = request.client.host if request.client else None
        if self._is_trusted_proxy(peer):
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                ip = forwarded.split(",")[0].strip()
                if self._is_valid_ip(ip):
                    return ip
        return peer or "unknown"

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        if path in _EXEMPT_PATHS or path.endswith(_EXEMPT_SUFFIXES):
            return await call_next(request)

        client_ip = self._get_client_ip(request)
        now = time.time()
        bucket = [ts for ts in self.minute_buckets.get(client_ip, []) if now - ts < 60]

        if len(bucket) >= self.requests_per_minute:
            logger.warning(f"Rate limit exceeded for {client_ip} ({len(bucket)} req/min)")
            retry_after = max(1, int(60 - (now - bucket[0])))
            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": "Too many requests from this IP, please try again later.",
                },
                headers={"Retry-After": str(retry_after)},
            )

        bucket.append(now)
        self.minute_buckets[client_ip] = bucket
        return await call_next(request)


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject requests whose declared body exceeds ``max_bytes``."""

    def __init__(self, app: Any, max_bytes: int) -> None:
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        content_length = request.headers.get("content-length")
        if content_length and content_length.isdigit() and int(content_length) > self.max_bytes:
            return JSONResponse(
                status_code=413,
                content={"success": False, "error": "Request body too large"},
            )
        return await call_next(request)
