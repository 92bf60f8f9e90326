"""FastAPI dependencies for database, authentication, and the reservation core."""

from typing import TYPE_CHECKING, AsyncGenerator, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession
import jwt
from jwt import ExpiredSignatureError, PyJWTError

from ..schemas.booking import Actor, Role
from .config import settings
from .database import get_async_session
from .exceptions import AuthenticationError, AuthorizationError

if TYPE_CHECKING:
    from ..services.container import ReservationCore


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database dependency that provides async database sessions.

    Yields:
        AsyncSession: Database session
    """
    async for session in get_async_session():
        yield session


def _role_from_claims(payload: dict) -> Role:
    roles = payload.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    if payload.get("role"):
        roles = [payload["role"], *roles]
    if Role.ADMIN.value in roles:
        return Role.ADMIN
    if Role.SYSTEM.value in roles:
        return Role.SYSTEM
    return Role.USER


async def get_current_actor(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Actor:
    """
    Authentication dependency that turns a Bearer token into an Actor.

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        Actor: Acting user and role from the validated token

    Raises:
        AuthenticationError: If the token is missing, malformed or invalid
    """
    if not authorization:
        raise AuthenticationError(detail="Authorization header missing")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError(detail="Invalid authorization header format")
    if scheme.lower() != "bearer":
        raise AuthenticationError(detail="Invalid authentication scheme")

    try:
        payload = jwt.decode(
            token,
            settings.bearer_token_secret,
            algorithms=["HS256"]
        )
    except ExpiredSignatureError:
        raise AuthenticationError(detail="Token has expired")
    except PyJWTError as e:
        raise AuthenticationError(detail=f"Token validation failed: {str(e)}")

    user_id = payload.get("sub") or payload.get("id")
    if not user_id:
        raise AuthenticationError(detail="Invalid token payload")

    return Actor(user_id=str(user_id), role=_role_from_claims(payload))


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Admin-only dependency."""
    if not actor.is_admin:
        raise AuthorizationError(detail="This action requires the admin role")
    return actor


async def require_operator(actor: Actor = Depends(get_current_actor)) -> Actor:
    """Admin or system caller, such as the catalog reporting availability changes."""
    if actor.role not in (Role.ADMIN, Role.SYSTEM):
        raise AuthorizationError(detail="This action requires the admin or system role")
    return actor


def get_core(request: Request) -> "ReservationCore":
    """The reservation core built at startup."""
    return request.app.state.core


RequiredAuth = Depends(get_current_actor)
AdminAuth = Depends(require_admin)
OperatorAuth = Depends(require_operator)
DatabaseSession = Depends(get_db)
Core = Depends(get_core)
