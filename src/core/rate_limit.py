"""
Rate limiting implementation using Redis

Limits are looked up per endpoint type/subtype and caller role, and every
decision is reported to the rate limit monitor.
"""
import logging
import math
import time
from typing import Dict, Optional, Tuple

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .config import settings
from .exceptions import TooManyRequestsException
from .redis import get_redis_client, redis_key
from .security import peek_token_claims

logger = logging.getLogger(__name__)


RATE_LIMIT_CONFIG: Dict[str, Dict[str, dict]] = {
    "auth": {
        "register": {
            "window": 60,
            "max": 10,
            "message": "Too many registration attempts, please try again after a minute",
        },
        "resetPassword": {
            "window": 60 * 60,
            "max": 5,
            "message": "Too many password reset attempts, please try again after an hour",
        },
    },
    "apiKey": {
        "create": {
            "window": 60,
            "max": 30,
            "message": "Too many API key creation attempts, please try again after a minute",
        },
        "verify": {
            "window": 60,
            "max": 30,
            "message": "Too many API key verification attempts, please try again after a minute",
        },
    },
    "api": {
        "default": {"window": 60, "max": 100, "message": "Too many requests, please try again after a minute"},
        "admin": {"window": 60, "max": 300, "message": "Too many requests, please try again after a minute"},
        "read": {"window": 60, "max": 200, "message": "Too many read requests, please try again after a minute"},
        "write": {"window": 60, "max": 50, "message": "Too many write requests, please try again after a minute"},
    },
}

ADMIN_ROLE = "admin"

# Lua script performs all operations atomically to prevent race conditions
SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local window_start = tonumber(ARGV[1])
local now = tonumber(ARGV[2])
local max_requests = tonumber(ARGV[3])
local window = tonumber(ARGV[4])

redis.call('ZREMRANGEBYSCORE', key, 0, window_start)

local current_count = redis.call('ZCARD', key)

if current_count >= max_requests then
    return {0, current_count}
end

redis.call('ZADD', key, now, tostring(now))
redis.call('EXPIRE', key, window)

return {1, current_count + 1}
"""


def get_rate_limit_config(type: str, subtype: str, role: str = "default") -> dict:
    """
    Resolve the limit for an endpoint type/subtype and caller role

    For api endpoints the admin role wins over the subtype. Unknown types and
    subtypes fall back to api.default.
    """
    if type == "api":
        api_limits = RATE_LIMIT_CONFIG["api"]
        if role == ADMIN_ROLE:
            return api_limits["admin"]
        return api_limits.get(subtype, api_limits["default"])

    group = RATE_LIMIT_CONFIG.get(type, {})
    if subtype in group:
        return group[subtype]

    return RATE_LIMIT_CONFIG["api"]["default"]


class RateLimiter:
    """
    Redis-based rate limiter using sliding window algorithm
    """

    def __init__(
        self,
        requests: int = 60,
        window: int = 60,
        prefix: str = "rate_limit",
        message: str = "Rate limit exceeded"
    ):
        self.requests = requests
        self.window = window
        self.prefix = prefix
        self.message = message

    def _headers(self, remaining: int, now: float, blocked: bool) -> dict:
        headers = {
            "X-RateLimit-Limit": str(self.requests),
            "X-RateLimit-Remaining": str(max(0, remaining)),
            "X-RateLimit-Reset": str(int(now + self.window)),
        }
        if blocked:
            headers["Retry-After"] = str(self.window)
        return headers

    async def check_rate_limit(self, key: str) -> Tuple[bool, dict]:
        """
        Check if request is within rate limit

        Returns:
            Tuple of (allowed, headers_dict)
        """
        redis_client = get_redis_client()
        redis_key = f"{settings.REDIS_PREFIX}:{self.prefix}:{key}"

        now = time.time()
        window_start = now - self.window

        try:
            result = await redis_client.eval(
                SLIDING_WINDOW_SCRIPT,
                1,
                redis_key,
                window_start, now, self.requests, self.window
            )
            allowed = int(result[0]) == 1
            count = int(result[1])
        except Exception as e:
            # Fail closed
            logger.critical(f"Rate limit check failed - denying request: {e}")
            return False, self._headers(0, now, blocked=True)

        return allowed, self._headers(self.requests - count, now, blocked=not allowed)


_limiters: Dict[str, RateLimiter] = {}


def get_limiter(type: str, subtype: str, role: str = "default") -> RateLimiter:
    """Limiters are cached per type:subtype:role"""
    cache_key = f"{type}:{subtype}:{role}"
    limiter = _limiters.get(cache_key)
    if limiter is None:
        config = get_rate_limit_config(type, subtype, role)
        limiter = RateLimiter(
            requests=config["max"],
            window=config["window"],
            prefix=f"rl:{cache_key}",
            message=config["message"],
        )
        _limiters[cache_key] = limiter
    return limiter


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def is_trusted(ip: str) -> bool:
    return ip in settings.RATE_LIMIT_TRUSTED_SERVICES


def _caller(request: Request) -> Tuple[Optional[str], str]:
    """User id and rate limit role from the bearer token, when present"""
    claims = peek_token_claims(request.headers.get("Authorization"))
    if not claims:
        return None, "default"
    roles = [str(r).lower() for r in claims.get("roles", [])]
    return claims.get("sub"), ADMIN_ROLE if ADMIN_ROLE in roles else "default"


async def enforce_rate_limit(request: Request, type: str, subtype: str) -> Tuple[bool, dict, RateLimiter]:
    """Run the limiter for a request and record the outcome"""
    from services.rate_limit_service import rate_limit_monitor

    user_id, role = _caller(request)
    ip = client_ip(request)
    limiter = get_limiter(type, subtype, role)

    allowed, headers = await limiter.check_rate_limit(user_id or ip)

    rate_limit_monitor.record_event(
        ip=ip,
        user_id=user_id,
        endpoint=request.url.path,
        method=request.method,
        user_agent=request.headers.get("User-Agent"),
        blocked=not allowed,
    )
    return allowed, headers, limiter


def rate_limit(type: str, subtype: str):
    """
    Dependency factory for endpoint specific limits

    Usage:
    @router.post("/", dependencies=[Depends(rate_limit("apiKey", "create"))])
    """
    async def check(request: Request):
        if not settings.RATE_LIMIT_ENABLED or is_trusted(client_ip(request)):
            return
        allowed, headers, limiter = await enforce_rate_limit(request, type, subtype)
        if not allowed:
            raise TooManyRequestsException(limiter.message, headers=headers)

    return check


AUTH_LIMITED_PATHS = {
    "/api/v1/auth/register": "register",
    "/api/v1/auth/reset-password": "resetPassword",
    "/api/v1/auth/forgot-password": "resetPassword",
}


def classify_request(request: Request) -> Tuple[str, str]:
    """Map a request to a rate limit type and subtype"""
    path = request.url.path
    auth_subtype = AUTH_LIMITED_PATHS.get(path.rstrip("/"))
    if auth_subtype:
        return "auth", auth_subtype
    if path.startswith("/api/v1/api-keys"):
        if path.rstrip("/").endswith("/validate"):
            return "apiKey", "verify"
        if request.method == "POST":
            return "apiKey", "create"
    if request.method in ("GET", "HEAD", "OPTIONS"):
        return "api", "read"
    return "api", "write"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Global rate limiting middleware
    """

    SKIP_PATHS = ("/health", "/docs", "/openapi.json", "/redoc")

    async def dispatch(self, request: Request, call_next) -> Response:
        if not settings.RATE_LIMIT_ENABLED:
            return await call_next(request)

        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        if is_trusted(client_ip(request)):
            return await call_next(request)

        type, subtype = classify_request(request)
        allowed, headers, limiter = await enforce_rate_limit(request, type, subtype)

        if not allowed:
            logger.warning(f"Rate limit exceeded for {client_ip(request)} on {request.url.path}")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": limiter.message},
                headers=headers
            )

        response = await call_next(request)

        for header, value in headers.items():
            response.headers[header] = value

        return response


class ExponentialBackoff:
    """
    Failure counter per client IP and endpoint

    After ``max_attempts`` failed (4xx/5xx) responses the caller is refused
    for ``base_delay * 2 ** (attempts - max_attempts)`` seconds, capped at
    ``max_delay``. A success clears the counter; the counter itself expires
    an hour after the last failure.
    """

    COUNTER_TTL = 60 * 60

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        max_delay: Optional[int] = None,
    ):
        self.max_attempts = max_attempts if max_attempts is not None else settings.BACKOFF_MAX_ATTEMPTS
        self.base_delay = base_delay if base_delay is not None else settings.BACKOFF_BASE_DELAY_SECONDS
        self.max_delay = max_delay if max_delay is not None else settings.BACKOFF_MAX_DELAY_SECONDS

    @staticmethod
    def key(ip: str, endpoint: str) -> str:
        return redis_key("backoff", ip, endpoint)

    def retry_after(self, attempts: int) -> Optional[int]:
        """Seconds the caller must wait, or None while under the attempt limit"""
        if attempts < self.max_attempts:
            return None
        delay = min(self.base_delay * 2 ** (attempts - self.max_attempts), self.max_delay)
        return max(1, math.ceil(delay))

    async def attempts(self, ip: str, endpoint: str) -> int:
        value = await get_redis_client().get(self.key(ip, endpoint))
        return int(value) if value else 0

    async def record(self, ip: str, endpoint: str, failed: bool, previous_attempts: int):
        client = get_redis_client()
        key = self.key(ip, endpoint)
        if failed:
            await client.incr(key)
            await client.expire(key, self.COUNTER_TTL)
        elif previous_attempts > 0:
            await client.delete(key)


class BackoffMiddleware(BaseHTTPMiddleware):
    """
    Refuse callers that keep failing on sensitive endpoints

    Redis errors are logged and the request goes through.
    """

    def __init__(self, app, backoff: Optional[ExponentialBackoff] = None, paths: Optional[list] = None):
        super().__init__(app)
        self.backoff = backoff or ExponentialBackoff()
        self.paths = tuple(paths if paths is not None else settings.BACKOFF_PATHS)

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path
        if not settings.RATE_LIMIT_ENABLED or not path.startswith(self.paths):
            return await call_next(request)

        ip = client_ip(request)
        if is_trusted(ip):
            return await call_next(request)

        try:
            attempts = await self.backoff.attempts(ip, path)
        except Exception as e:
            logger.error(f"Error applying exponential backoff: {e}")
            return await call_next(request)

        retry_after = self.backoff.retry_after(attempts)
        if retry_after is not None:
            logger.warning(f"Backing off {ip} on {path} after {attempts} failed attempts")
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": f"Too many failed attempts. Please try again after {retry_after} seconds."},
                headers={"Retry-After": str(retry_after)},
            )

        response = await call_next(request)

        try:
            await self.backoff.record(ip, path, response.status_code >= 400, attempts)
        except Exception as e:
            logger.error(f"Error recording backoff attempt: {e}")

        return response
