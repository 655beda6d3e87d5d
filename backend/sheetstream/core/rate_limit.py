from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request
from sheetstream.core.config import get_settings


def get_user_identifier(request: Request) -> str:
    settings = get_settings()
    if settings.TRUSTED_PROXY:
        # Honor X-Forwarded-For if behind Nginx/F5
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

    # Fallback to standard remote address or X-User-ID
    return request.headers.get("X-User-ID", get_remote_address(request))


# Per-user rate limiter
limiter = Limiter(key_func=get_user_identifier)
