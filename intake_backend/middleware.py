"""
Intake API Middleware

Bearer token auth, tiered per-IP rate limiting, and JSON body size limits.

When AUTH_TOKEN is set, every non-health endpoint requires
Authorization: Bearer <token>. When unset, auth is not enforced (dev mode).
"""

import logging
import os
import time
from collections import defaultdict
from typing import Callable, Optional, Set, Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

logger = logging.getLogger("intake_backend")

# ---------------------------------------------------------------------------
# Configuration from environment
# ---------------------------------------------------------------------------

AUTH_TOKEN: Optional[str] = os.getenv("AUTH_TOKEN")

HEALTH_PATHS: Set[str] = {
    "/health",
    "/api/conversation/health",
}

MAX_JSON_BYTES: int = int(os.getenv("MAX_JSON_BYTES", str(256 * 1024)))
MAX_BODY_BYTES: int = int(os.getenv("MAX_BODY_BYTES", str(1024 * 1024)))

RATE_LIMIT_WINDOW: int = 60  # seconds

RATE_LIMIT_EXPENSIVE: int = int(os.getenv("RATE_LIMIT_EXPENSIVE", "20"))
RATE_LIMIT_MUTATE: int = int(os.getenv("RATE_LIMIT_MUTATE", "60"))
RATE_LIMIT_READ: int = int(os.getenv("RATE_LIMIT_READ", "200"))

# Endpoints whose handlers call the language model
EXPENSIVE_PATTERNS: Tuple[str, ...] = (
    "/answer",
    "/reaggregate",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _normalize_path(path: str) -> str:
    return path.rstrip("/") if path != "/" else path


def _is_health(path: str) -> bool:
    return _normalize_path(path) in HEALTH_PATHS


def _is_mutating(method: str) -> bool:
    return method in {"POST", "PUT", "DELETE", "PATCH"}


def classify_request(path: str, method: str) -> Tuple[str, int]:
    """Rate-limit tier and its per-window limit for a request."""
    if not _is_mutating(method):
        return "read", RATE_LIMIT_READ
    if any(path.endswith(pattern) for pattern in EXPENSIVE_PATTERNS):
        return "expensive", RATE_LIMIT_EXPENSIVE
    return "mutate", RATE_LIMIT_MUTATE


def _is_cors_preflight(request: Request) -> bool:
    return request.method == "OPTIONS" and "access-control-request-method" in request.headers


def _check_bearer_token(auth_header: Optional[str]) -> bool:
    if not AUTH_TOKEN:
        return True
    if not auth_header:
        return False
    scheme, _, token = auth_header.partition(" ")
    return scheme.lower() == "bearer" and token == AUTH_TOKEN


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

class AuthMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):
        path = _normalize_path(request.url.path)
        if _is_cors_preflight(request) or _is_health(path):
            return await call_next(request)

        if not _check_bearer_token(request.headers.get("authorization")):
            logger.warning("[AUTH] Rejected request to %s - invalid/missing token", path)
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or missing authorization token."},
                headers={"WWW-Authenticate": "Bearer"},
            )
        return await call_next(request)


# ---------------------------------------------------------------------------
# Body size
# ---------------------------------------------------------------------------

class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """JSON bodies are limited to MAX_JSON_BYTES, everything else to MAX_BODY_BYTES."""

    async def dispatch(self, request: Request, call_next: Callable):
        content_length = request.headers.get("content-length")
        if content_length is None:
            return await call_next(request)

        try:
            length = int(content_length)
        except ValueError:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content={"detail": "Invalid Content-Length header."},
            )

        is_json = "application/json" in request.headers.get("content-type", "")
        limit = MAX_JSON_BYTES if is_json else MAX_BODY_BYTES
        if length > limit:
            logger.warning(
                "[SECURITY] Rejected oversized request to %s (%d bytes, limit %d)",
                request.url.path, length, limit,
            )
            return JSONResponse(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                content={"detail": f"Request body too large. Limit: {limit} bytes."},
            )
        return await call_next(request)


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    In-memory per-IP sliding window with three tiers:

    - expensive (answering a turn, re-aggregation): RATE_LIMIT_EXPENSIVE/min
    - mutating (POST/PUT/DELETE/PATCH): RATE_LIMIT_MUTATE/min
    - read: RATE_LIMIT_READ/min

    Single-process only.
    """

    def __init__(self, app: ASGIApp, **kwargs):
        super().__init__(app, **kwargs)
        self._requests: dict = defaultdict(list)

    def _clean_old_entries(self, ip: str, now: float):
        cutoff = now - RATE_LIMIT_WINDOW
        self._requests[ip] = [(ts, tier) for ts, tier in self._requests[ip] if ts > cutoff]

    def _count_tier(self, ip: str, tier: str) -> int:
        return sum(1 for _, t in self._requests[ip] if t == tier)

    async def dispatch(self, request: Request, call_next: Callable):
        path = _normalize_path(request.url.path)
        method = request.method
        if _is_health(path) or _is_cors_preflight(request):
            return await call_next(request)

        ip = request.client.host if request.client else "unknown"
        now = time.time()
        self._clean_old_entries(ip, now)

        tier, limit = classify_request(path, method)
        count = self._count_tier(ip, tier)
        if count >= limit:
            logger.warning(
                "[RATE LIMIT] %s exceeded %s tier limit (%d/%d) on %s %s",
                ip, tier, count, limit, method, path,
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": f"Rate limit exceeded ({tier} tier: {limit} requests per {RATE_LIMIT_WINDOW}s)."},
                headers={"Retry-After": str(RATE_LIMIT_WINDOW)},
            )

        self._requests[ip].append((now, tier))
        return await call_next(request)


def configure_security(app):
    """Wire auth, rate limiting and body limits onto the app (auth outermost)."""
    app.add_middleware(BodySizeLimitMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.add_middleware(AuthMiddleware)

    logger.info("[SECURITY] Auth: %s", "ENFORCED" if AUTH_TOKEN else "DISABLED (AUTH_TOKEN not set)")
    logger.info("[SECURITY] Rate limits: expensive=%d, mutate=%d, read=%d per %ds",
                RATE_LIMIT_EXPENSIVE, RATE_LIMIT_MUTATE, RATE_LIMIT_READ, RATE_LIMIT_WINDOW)
    logger.info("[SECURITY] Body limits: JSON=%d bytes, other=%d bytes", MAX_JSON_BYTES, MAX_BODY_BYTES)
