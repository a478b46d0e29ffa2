"""
JWT Authentication module for the Geo Proximity Service.

Optional bearer-token auth guarding the mutating endpoints. Credentials are
only verified here; nothing about them reaches the proximity core.
"""
import logging
from typing import Optional, Dict, Any
import jwt
from fastapi import HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from .config import get_settings

logger = logging.getLogger(__name__)

# JWT Security scheme
security = HTTPBearer(auto_error=False)


class AuthConfig:
    """Authentication configuration."""
    def __init__(self, settings):
        self.jwt_secret = getattr(settings, 'JWT_SECRET', None)
        self.jwt_algorithm = getattr(settings, 'JWT_ALGORITHM', 'HS256')
        self.jwt_audience = getattr(settings, 'JWT_AUDIENCE', 'authenticated')
        self.require_auth = getattr(settings, 'REQUIRE_AUTH', False)


async def verify_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[Dict[str, Any]]:
    """
    Verify a bearer JWT.

    Returns:
        Dict containing user information if token is valid
        None if authentication is disabled

    Raises:
        HTTPException: If token is invalid or required but missing
    """
    auth_config = AuthConfig(get_settings())

    if not auth_config.require_auth:
        logger.debug("Authentication disabled, allowing request")
        return None

    if not auth_config.jwt_secret:
        logger.warning("JWT_SECRET not configured, authentication disabled")
        return None

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = jwt.decode(
            credentials.credentials,
            auth_config.jwt_secret,
            algorithms=[auth_config.jwt_algorithm],
            audience=auth_config.jwt_audience
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        logger.warning(f"Invalid JWT token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user ID"
        )

    logger.debug(f"Successfully authenticated user: {user_id}")
    return {
        "user_id": user_id,
        "email": payload.get("email"),
        "role": payload.get("role", "authenticated"),
    }


async def get_current_user(
    user_data: Optional[Dict[str, Any]] = Depends(verify_token)
) -> Optional[Dict[str, Any]]:
    """
    Get current authenticated user.
    Returns None if authentication is disabled.
    """
    return user_data
