"""
Authentication dependencies for the FastAPI API.
"""

from typing import Optional

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from api.database import UserStore
from api.errors import AccessDeniedError, InvalidTokenError, UnauthenticatedError, UserNotFoundError
from api.models import UserRecord, UserRole
from api.security import EMAIL_CLAIM, TokenManager
from api.services import AppServices

logger = structlog.get_logger(__name__)

# Security scheme; missing headers are reported by ``authenticate`` as 401
security = HTTPBearer(auto_error=False)


def get_services(request: Request) -> AppServices:
    """Return the services built by the application lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database service not available"
        )
    return services


async def authenticate(
    credentials: Optional[HTTPAuthorizationCredentials],
    tokens: TokenManager,
    users: UserStore
) -> UserRecord:
    """
    Resolve bearer credentials to a stored user.

    Args:
        credentials: Parsed ``Authorization`` header, None if absent or not a bearer
        tokens: Token manager used to verify the token
        users: Credential store used to look the identity up

    Returns:
        The authenticated user

    Raises:
        UnauthenticatedError: Header missing, not a bearer token, or token invalid
        UserNotFoundError: Token is valid but its user no longer exists
    """
    if credentials is None or not credentials.credentials:
        raise UnauthenticatedError()

    try:
        claims = tokens.verify_token(credentials.credentials)
    except InvalidTokenError:
        logger.warning("Invalid bearer token presented")
        raise UnauthenticatedError()

    email = claims[EMAIL_CLAIM]
    user = await users.get_user_by_email(email)
    if user is None:
        raise UserNotFoundError.for_email(email)
    return user


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    services: AppServices = Depends(get_services)
) -> UserRecord:
    """Authenticate the request and attach the user to ``request.state``."""
    user = await authenticate(credentials, services.tokens, services.user_store)
    request.state.user = user
    return user


def require_role(role: UserRole):
    """Dependency factory restricting an endpoint to one role."""

    async def check_role(user: UserRecord = Depends(get_current_user)) -> UserRecord:
        if user.role != role:
            logger.warning("Role check failed", user_id=user.id, required=role.value)
            raise AccessDeniedError()
        return user

    return check_role
