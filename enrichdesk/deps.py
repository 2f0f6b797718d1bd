"""Shared FastAPI dependencies: identity is resolved here and passed down explicitly."""

from beanie import PydanticObjectId
from bson.errors import InvalidId
from fastapi import Request

from enrichdesk.core.exceptions import NotFoundError, UnauthorizedError
from enrichdesk.core.logging import bind_actor
from enrichdesk.core.security import load_session_cookie
from enrichdesk.models.user import User
from enrichdesk.services.admin import AdminClaim

SESSION_COOKIE_NAME = "enrichdesk_session"


async def get_current_user(request: Request) -> User:
    """Dependency: load session from cookie and return User."""
    cookie = request.cookies.get(SESSION_COOKIE_NAME)
    if not cookie:
        raise UnauthorizedError("Not authenticated")
    payload = load_session_cookie(cookie)
    if not payload:
        raise UnauthorizedError("Invalid or expired session")
    user_id = payload.get("user_id")
    if not user_id:
        raise UnauthorizedError("Invalid session")
    try:
        user = await User.get(PydanticObjectId(user_id))
    except (InvalidId, TypeError):
        raise UnauthorizedError("Invalid session") from None
    if not user:
        raise UnauthorizedError("User not found")
    if payload.get("session_version") != user.session_version:
        raise UnauthorizedError("Session invalidated")
    bind_actor(str(user.id), user.role)
    return user


async def require_admin(request: Request) -> AdminClaim:
    """Dependency: resolve the admin capability once; non-admins get 403."""
    user = await get_current_user(request)
    return AdminClaim.for_user(user)


def parse_object_id(value: str, what: str = "Resource") -> PydanticObjectId:
    try:
        return PydanticObjectId(value)
    except (InvalidId, TypeError):
        raise NotFoundError(f"{what} not found") from None
