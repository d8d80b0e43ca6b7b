# ABOUTME: JWT creation/validation and Google ID token verification for API auth.
# ABOUTME: get_current_user dependency for FastAPI; use SECRET_KEY and GOOGLE_CLIENT_ID from config.

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token
from jose import JWTError, jwt
from sqlmodel import Session

from core.config import (
    ACCESS_TOKEN_EXPIRE_MINUTES,
    ALGORITHM,
    GOOGLE_CLIENT_ID,
    SECRET_KEY,
)
from core.database import User, get_db
from core.errors import ApiError, UnauthorizedError

_http_bearer = HTTPBearer(auto_error=False)


@dataclass
class GoogleProfile:
    """Identity fields taken from a verified Google ID token."""

    sub: str
    email: str
    email_verified: bool
    name: str | None = None
    picture: str | None = None


def create_access_token(user_id: UUID, email: str) -> str:
    """Build a JWT with sub=user_id, email claim, and exp set from ACCESS_TOKEN_EXPIRE_MINUTES."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    payload = {"sub": str(user_id), "email": email, "exp": expire}
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> UUID | None:
    """Decode the JWT and return the subject (user id) or None if invalid/expired."""
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        sub = payload.get("sub")
        if sub is None or "email" not in payload:
            return None
        return UUID(sub)
    except (JWTError, ValueError):
        return None


def verify_google_id_token(raw_token: str) -> GoogleProfile:
    """Verify a Google ID token against GOOGLE_CLIENT_ID and return the profile, or raise 401."""
    if not GOOGLE_CLIENT_ID:
        raise ApiError("Google client ID not configured.")
    try:
        claims = google_id_token.verify_oauth2_token(
            raw_token, google_requests.Request(), GOOGLE_CLIENT_ID
        )
    except ValueError:
        raise UnauthorizedError("Invalid or expired Google ID token.")
    sub = claims.get("sub")
    email = claims.get("email")
    if not sub or not email:
        raise UnauthorizedError("Invalid or expired Google ID token.")
    return GoogleProfile(
        sub=sub,
        email=email,
        email_verified=bool(claims.get("email_verified")),
        name=claims.get("name"),
        picture=claims.get("picture"),
    )


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_http_bearer),
    db: Session = Depends(get_db),
) -> User:
    """FastAPI dependency: require Authorization Bearer token and return the User or 401."""
    if credentials is None:
        raise UnauthorizedError("Not authenticated")
    user_id = decode_access_token(credentials.credentials)
    if user_id is None:
        raise UnauthorizedError("Invalid or expired token")
    user = db.get(User, user_id)
    if user is None:
        raise UnauthorizedError("User not found")
    return user
