from __future__ import annotations

import logging
from typing import Callable, TypeVar

from slowapi import Limiter
from slowapi.util import get_remote_address

from .config import get_settings

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable)


def _build_limiter() -> Limiter | None:
    settings = get_settings()
    try:
        return Limiter(key_func=get_remote_address, storage_uri=settings.rate_limit_storage_uri)
    except Exception as e:
        logger.warning(f"Rate limiter initialization failed: {e}. Rate limiting will be disabled.")
        return None


limiter: Limiter | None = _build_limiter()


def rate_limited(limit_value: str) -> Callable[[F], F]:
    """Apply ``limit_value`` when the limiter is available. Decorated endpoints need a ``request`` argument."""

    def decorator(func: F) -> F:
        if limiter is None:
            return func
        return limiter.limit(limit_value)(func)

    return decorator
