from slowapi import Limiter
from starlette.requests import Request

from downloadgate.config import settings


def get_real_client_ip(request: Request) -> str:
    """Client IP used as the rate limit key.

    Behind a reverse proxy the original client is the first X-Forwarded-For
    entry. The header is only honored when ``trust_proxy_headers`` is set,
    since a directly exposed service would let clients pick their own key.
    """
    if settings.trust_proxy_headers:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


limiter = Limiter(key_func=get_real_client_ip)
