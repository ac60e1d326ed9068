"""Request rate limiting (slowapi). Auth endpoints get a tighter per-IP limit than the default."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from repairdesk.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.default_rate_limit],
    enabled=settings.rate_limit_enabled,
)
