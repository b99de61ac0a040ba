"""Token verification for the live channel and the status API."""

from typing import Any, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import Settings, get_settings

# HTTP Bearer token scheme
security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str, settings: Settings) -> dict[str, Any]:
    """Verify a token's signature and expiry and return its claims."""
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise _unauthorized(f"Invalid token: {e}") from e


def tenant_from_token(token: Optional[str], settings: Settings) -> str:
    """
    Resolve the tenant a token was issued for.

    The tenant is the ``tenant_id`` claim when present, else ``sub``.

    Raises:
        HTTPException: 401 if the token is missing, invalid or names no tenant
    """
    if not token:
        raise _unauthorized("Missing token")

    claims = decode_token(token, settings)
    tenant_id: Optional[str] = claims.get("tenant_id") or claims.get("sub")
    if not tenant_id:
        raise _unauthorized("Token does not name a tenant")
    return tenant_id


async def get_current_tenant(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
) -> str:
    """Get the tenant of the authenticated caller."""
    return tenant_from_token(credentials.credentials, settings)
