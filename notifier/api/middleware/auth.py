"""
Admin API Key Authentication

A single operator key guards the endpoints that act on the messaging
session or send messages. The key comes from ADMIN_API_KEY and is compared
in constant time.
"""

import hmac
import logging
from typing import Optional

from fastapi import HTTPException, Request, Security, status
from fastapi.security import APIKeyHeader

from notifier.config import get_settings

logger = logging.getLogger(__name__)

# API Key header scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def mask_api_key(api_key: str) -> str:
    """
    Mask API key for logging.

    Shows the first and last 3 characters only.
    """
    if len(api_key) < 10:
        return "***"
    return f"{api_key[:3]}...{api_key[-3:]}"


def verify_api_key(provided: str, expected: str) -> bool:
    """Constant-time comparison of two keys."""
    return hmac.compare_digest(provided.encode(), expected.encode())


async def require_api_key(
    request: Request,
    api_key: Optional[str] = Security(api_key_header),
) -> None:
    """
    FastAPI dependency that requires the admin API key.

    When ADMIN_API_KEY is not configured the endpoints stay open in
    development and are refused everywhere else.

    Raises:
        HTTPException 401: No API key provided
        HTTPException 403: Wrong API key
        HTTPException 503: No key configured outside development

    Usage:
        @router.post("/pairing", dependencies=[Depends(require_api_key)])
        async def force_pairing(): ...
    """
    settings = get_settings()
    client_ip = request.client.host if request.client else "unknown"
    expected = settings.admin_api_key

    if not expected:
        if settings.is_development:
            logger.debug(f"Admin key not configured, allowing {request.url.path} in development")
            return
        logger.error(f"Admin key not configured, refusing {request.url.path} | IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API is not configured",
        )

    if not api_key:
        logger.warning(f"Auth failed: No API key provided | IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required",
            headers={"WWW-Authenticate": "ApiKey"},
        )

    if not verify_api_key(api_key, expected):
        logger.warning(f"Auth failed: Invalid API key | Key: {mask_api_key(api_key)} | IP: {client_ip}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    logger.debug(f"Auth success | {request.method} {request.url.path} | IP: {client_ip}")
