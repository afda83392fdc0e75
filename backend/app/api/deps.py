"""
Checkpoint LMS - API Dependencies
FastAPI dependencies for authentication, request context and error mapping
"""
import uuid
from typing import Annotated

from fastapi import Depends, HTTPException, Query, WebSocketException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.context import RequestContext
from app.core.database import async_session_maker, get_db
from app.core.security import verify_token
from app.models.user import User, UserRole
from app.services.errors import (
    ConflictError,
    DomainError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

# Security scheme
security = HTTPBearer()

DbSession = Annotated[AsyncSession, Depends(get_db)]


async def _load_user(db: AsyncSession, token: str) -> User | None:
    subject = verify_token(token, token_type="access")
    if not subject:
        return None
    try:
        user_id = uuid.UUID(subject)
    except ValueError:
        return None
    return await db.get(User, user_id)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: DbSession,
) -> User:
    """
    Get current authenticated user from JWT token.

    Raises:
        HTTPException: If token is invalid or user not found
    """
    user = await _load_user(db, credentials.credentials)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is deactivated",
        )

    return user


async def get_request_context(
    current_user: Annotated[User, Depends(get_current_user)],
) -> RequestContext:
    """Build the caller context once per request."""
    return RequestContext(user_id=current_user.id, role=UserRole(current_user.role))


def require_role(*roles: UserRole):
    """
    Dependency factory for role-based access control.

    Usage:
        @router.post("/tickets/{ticket_id}/claim")
        async def claim(ctx: RequestContext = Depends(require_role(UserRole.INSTRUCTOR))):
            ...
    """
    async def role_checker(
        ctx: Annotated[RequestContext, Depends(get_request_context)],
    ) -> RequestContext:
        if ctx.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {[r.value for r in roles]}",
            )
        return ctx

    return role_checker


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Factory for short-lived sessions opened outside the request session."""
    return async_session_maker


async def get_ws_context(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    token: Annotated[str | None, Query()] = None,
) -> RequestContext:
    """
    Request context for WebSocket routes, token passed as ``?token=``.

    The user is loaded in its own short session that is closed before the
    socket starts streaming; a long-lived socket holds no connection.
    """
    user = None
    if token:
        async with session_factory() as db:
            user = await _load_user(db, token)
    if not user or not user.is_active:
        raise WebSocketException(code=status.WS_1008_POLICY_VIOLATION, reason="Invalid or expired token")
    return RequestContext(user_id=user.id, role=UserRole(user.role))


def http_error(exc: DomainError) -> HTTPException:
    """Translate a domain error into the matching HTTP response."""
    if isinstance(exc, ValidationError):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    elif isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, PermissionDeniedError):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(exc, ConflictError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    return HTTPException(status_code=code, detail=str(exc))


# Type aliases for common dependencies
CurrentUser = Annotated[User, Depends(get_current_user)]
Context = Annotated[RequestContext, Depends(get_request_context)]
StudentContext = Annotated[RequestContext, Depends(require_role(UserRole.STUDENT))]
InstructorContext = Annotated[RequestContext, Depends(require_role(UserRole.INSTRUCTOR))]
AdminContext = Annotated[RequestContext, Depends(require_role(UserRole.ADMIN))]
StaffContext = Annotated[RequestContext, Depends(require_role(UserRole.INSTRUCTOR, UserRole.ADMIN))]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]
WsContext = Annotated[RequestContext, Depends(get_ws_context)]
