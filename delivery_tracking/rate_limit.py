"""Rate limiting global / Global rate limiter.

Utilise slowapi : par appareil (X-Device-ID) si present, sinon par IP.
Uses slowapi: per device (X-Device-ID) when present, otherwise per IP.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request


def device_or_remote_address(request: Request) -> str:
    """Cle de limitation / Rate limit key."""
    device_id = request.headers.get("X-Device-ID")
    if device_id:
        return f"device:{device_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=device_or_remote_address)
