"""
Bearer-credential authorization for operation endpoints.
"""

import secrets
from typing import Optional

import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.config import config

logger = structlog.get_logger(__name__)

# auto_error=False so a missing header yields 401 rather than FastAPI's 403
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def credential_matches(presented: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison; an unset expected secret never matches."""
    if not expected or not presented:
        return False
    return secrets.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


async def verify_operation_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Verify the bearer credential for pipeline operations.

    Returns:
        The presented token

    Raises:
        HTTPException: 401 when the credential is missing, mismatched, or no secret is configured
    """
    if credentials is None:
        raise _unauthorized("Missing bearer credential")

    if not config.crawl_secret:
        logger.warning("Operation rejected, no crawl secret configured")
        raise _unauthorized("Operation endpoints are disabled")

    if not credential_matches(credentials.credentials, config.crawl_secret):
        logger.warning("Invalid operation credential attempted")
        raise _unauthorized("Invalid credential")

    return credentials.credentials
