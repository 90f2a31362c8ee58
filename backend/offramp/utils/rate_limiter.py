"""
Simple Memory-based Rate Limiter for KYC verification endpoints.
Every verification call costs a paid provider request, so callers are
throttled per API key (or client IP when unauthenticated).
"""
import threading
import time
from typing import Dict, Tuple

from fastapi import Request, HTTPException

# In-memory storage: {client: (window_start, count)}
_rate_limit_store: Dict[str, Tuple[float, int]] = {}
_lock = threading.Lock()


def _client_key(request: Request) -> str:
    auth = request.headers.get("authorization", "")
    if auth.lower().startswith("bearer "):
        return "key:" + auth[7:].strip()
    return "ip:" + (request.client.host if request.client else "unknown")


def reset_rate_limits() -> None:
    with _lock:
        _rate_limit_store.clear()


def rate_limit(requests: int, window: int):
    """
    Dependency for rate limiting.
    Example: Depends(rate_limit(requests=5, window=60))
    """
    def limiter(request: Request):
        key = _client_key(request)
        now = time.time()

        with _lock:
            if key not in _rate_limit_store:
                _rate_limit_store[key] = (now, 1)
                return True

            window_start, count = _rate_limit_store[key]

            # Reset window if expired
            if now - window_start > window:
                _rate_limit_store[key] = (now, 1)
                return True

            if count >= requests:
                raise HTTPException(
                    status_code=429,
                    detail=f"Rate limit exceeded. Try again in {int(window - (now - window_start))} seconds.",
                )

            _rate_limit_store[key] = (window_start, count + 1)
        return True

    return limiter
