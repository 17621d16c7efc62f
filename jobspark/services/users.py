from datetime import datetime

from bson import ObjectId
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token
from pydantic import BaseModel

from jobspark.core.audit import log_event
from jobspark.core.config import get_settings
from jobspark.core.exceptions import AuthenticationError, ValidationError
from jobspark.core.logging import get_logger
from jobspark.core.security import create_access_token, load_access_token
from jobspark.models.user import User

log = get_logger(__name__)


class Caller(BaseModel):
    """Identity resolved for one request."""
    user_id: str
    email: str
    name: str = ""


def verify_google_id_token(token: str) -> dict:
    """Verify Google ID token; return decoded claims (sub, email, name, picture, etc.)."""
    settings = get_settings()
    try:
        claims = id_token.verify_oauth2_token(
            token,
            google_requests.Request(),
            settings.google_client_id,
        )
        return claims
    except ValueError as e:
        raise AuthenticationError(f"Invalid Google token: {e}") from e


async def upsert_user_from_google(claims: dict) -> User:
    google_sub = claims.get("sub")
    if not google_sub:
        raise ValidationError("Missing sub in token")
    email = claims.get("email") or ""
    name = claims.get("name") or ""
    picture = claims.get("picture")

    user = await User.find_one(User.google_sub == google_sub)
    if user:
        user.email = email
        user.name = name
        user.picture = picture
        user.last_login_at = datetime.utcnow()
        user.updated_at = datetime.utcnow()
        await user.save()
        log.info("user_login", user_id=str(user.id))
        await log_event(str(user.id), "user_login", "user", str(user.id), {"email": user.email})
    else:
        user = User(
            google_sub=google_sub,
            email=email,
            name=name,
            picture=picture,
            last_login_at=datetime.utcnow(),
        )
        await user.insert()
        log.info("user_created", user_id=str(user.id))
        await log_event(str(user.id), "user_created", "user", str(user.id), {"email": user.email})
    return user


def issue_access_token(user: User) -> str:
    return create_access_token({"user_id": str(user.id), "session_version": user.session_version})


async def caller_from_token(token: str) -> Caller:
    """Resolve a bearer token to its caller, or raise AuthenticationError."""
    payload = load_access_token(token)
    if not payload:
        raise AuthenticationError("Invalid or expired token")
    user_id = payload.get("user_id")
    if not user_id or not ObjectId.is_valid(user_id):
        raise AuthenticationError("Invalid token")
    user = await User.get(user_id)
    if not user:
        raise AuthenticationError("User not found")
    if payload.get("session_version") != user.session_version:
        raise AuthenticationError("Session invalidated")
    return Caller(user_id=str(user.id), email=user.email, name=user.name)
