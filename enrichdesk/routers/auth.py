from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel

from enrichdesk.core.config import get_settings
from enrichdesk.core.security import SESSION_MAX_AGE, create_session_cookie
from enrichdesk.deps import SESSION_COOKIE_NAME, get_current_user
from enrichdesk.models.user import User
from enrichdesk.services import ledger
from enrichdesk.services import users as user_service

router = APIRouter()


class GoogleAuthRequest(BaseModel):
    id_token: str


async def user_out(user: User) -> dict:
    return {
        "id": str(user.id),
        "email": user.email,
        "name": user.name,
        "picture": user.picture,
        "is_admin": user.is_admin,
        "balance": await ledger.get_balance(user.id),
    }


@router.post("/google")
async def auth_google(body: GoogleAuthRequest, response: Response):
    """Exchange a Google ID token for a session cookie. First sign-in is the signup."""
    claims = user_service.verify_google_id_token(body.id_token)
    user = await user_service.upsert_user_from_google(claims)
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=create_session_cookie(user_service.session_payload_for_user(user)),
        max_age=SESSION_MAX_AGE,
        httponly=True,
        secure=get_settings().env == "production",
        samesite="lax",
        path="/",
    )
    return {"user": await user_out(user)}


@router.get("/me")
async def auth_me(user: User = Depends(get_current_user)):
    """Current user with balance. Requires session cookie."""
    return await user_out(user)


@router.post("/logout")
async def auth_logout(response: Response, user: User = Depends(get_current_user)):
    """Invalidate every session of the current user and clear the cookie."""
    await user_service.invalidate_sessions(user)
    response.delete_cookie(SESSION_COOKIE_NAME, path="/")
    return {"status": "ok"}
