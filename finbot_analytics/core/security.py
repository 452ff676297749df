from fastapi import Header, HTTPException, status
from finbot_analytics.core.config import settings


async def require_api_key(x_api_key: str | None = Header(default=None)):
    """Reject requests without the admin API key (no-op when no key is configured)"""
    if settings.api_key and x_api_key != settings.api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key"
        )
