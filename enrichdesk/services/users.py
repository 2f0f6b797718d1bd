"""Google sign-in, signup provisioning and session invalidation."""

from datetime import datetime
from typing import NamedTuple

from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from enrichdesk.core.audit import log_event
from enrichdesk.core.config import get_settings
from enrichdesk.core.exceptions import BadRequestError, UnauthorizedError
from enrichdesk.core.logging import get_logger
from enrichdesk.models.user import User
from enrichdesk.services import ledger, notifier

log = get_logger(__name__)


class GoogleProfile(NamedTuple):
    sub: str
    email: str
    name: str
    picture: str | None


def verify_google_id_token(token: str) -> dict:
    """Check the ID token against our OAuth client id and return its claims."""
    try:
        return id_token.verify_oauth2_token(token, google_requests.Request(), get_settings().google_client_id)
    except ValueError as e:
        raise UnauthorizedError(f"Invalid Google token: {e}") from e


def profile_from_claims(claims: dict) -> GoogleProfile:
    sub, email = claims.get("sub"), claims.get("email")
    if not sub:
        raise BadRequestError("Missing sub in token")
    if not email:
        raise BadRequestError("Missing email in token")
    return GoogleProfile(sub=sub, email=email, name=claims.get("name") or "", picture=claims.get("picture"))


async def upsert_user_from_google(claims: dict) -> User:
    """
    First sign-in creates the user; later ones refresh the profile.
    Either way the user leaves with a credit account (balance 0 on signup).
    New users are sent a welcome email, best-effort.
    """
    profile = profile_from_claims(claims)
    now = datetime.utcnow()
    user = await User.find_one(User.google_sub == profile.sub)
    created = user is None
    if created:
        user = User(
            google_sub=profile.sub,
            email=profile.email,
            name=profile.name,
            picture=profile.picture,
            last_login_at=now,
        )
        await user.insert()
    else:
        user.email, user.name, user.picture = profile.email, profile.name, profile.picture
        user.last_login_at = user.updated_at = now
        await user.save()

    event = "user_created" if created else "user_login"
    log.info(event, user_id=str(user.id), email=user.email)
    await log_event(str(user.id), event, "user", str(user.id), {"email": user.email})
    await ledger.get_or_create_account(user.id)
    if created and not await notifier.notify_user_welcome(str(user.id)):
        log.warning("welcome_email_not_scheduled", user_id=str(user.id))
    return user


def session_payload_for_user(user: User) -> dict:
    return {"user_id": str(user.id), "session_version": user.session_version}


async def invalidate_sessions(user: User) -> None:
    """Logout everywhere: bump the version every issued cookie carries."""
    user.session_version += 1
    user.updated_at = datetime.utcnow()
    await user.save()
