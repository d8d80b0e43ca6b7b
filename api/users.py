# ABOUTME: Auth and profile routes: POST /v1/auth/google (sign-in/sign-up), GET/PATCH /v1/me.
# ABOUTME: Lowering availableHoursPerWeek below active goal hours is rejected with 409.

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlmodel import Session

from core.auth import create_access_token, get_current_user, verify_google_id_token
from core.database import User, get_db
from core.errors import ForbiddenError, ValidationError, ensure
from core.schemas import GoogleSignInRequest, UserUpdateRequest
from planner.repositories import create_user, find_user_by_email, update_user
from planner.validation import ensure_hours_cover_active_goals

auth_router = APIRouter(prefix="/v1/auth", tags=["auth"])
me_router = APIRouter(prefix="/v1/me", tags=["me"])


def _user_to_json(user: User) -> dict:
    return {
        "id": str(user.id),
        "name": user.name,
        "email": user.email,
        "profileImageUrl": user.profile_image_url,
        "timezone": user.timezone,
        "availableHoursPerWeek": user.available_hours_per_week,
        "createdAt": user.created_at.isoformat(),
        "updatedAt": user.updated_at.isoformat(),
    }


@auth_router.post("/google")
def post_google_sign_in(req: GoogleSignInRequest, db: Session = Depends(get_db)):
    """Exchange a Google ID token for an API token. Creates the user (201) on first sign-in."""
    profile = verify_google_id_token(req.id_token)
    ensure(profile.email_verified, ForbiddenError("Google account email not verified."))

    user = find_user_by_email(db, profile.email)
    status_code = 200
    if user is None:
        name = (profile.name or "").strip() or profile.email.split("@")[0]
        user = create_user(
            db,
            email=profile.email,
            name=name,
            profile_image_url=profile.picture,
            google_sub=profile.sub,
        )
        status_code = 201
        logging.info("Created user %s on first Google sign-in", user.id)
    else:
        changes = {"google_sub": profile.sub}
        if profile.name and profile.name.strip():
            changes["name"] = profile.name
        if profile.picture:
            changes["profile_image_url"] = profile.picture
        user = update_user(db, user, changes)

    token = create_access_token(user.id, user.email)
    return JSONResponse(
        status_code=status_code,
        content={"data": {"token": token, "user": _user_to_json(user)}},
    )


@me_router.get("")
def get_me(current_user: User = Depends(get_current_user)):
    return {"data": _user_to_json(current_user)}


@me_router.patch("")
def patch_me(
    req: UserUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Update profile fields. availableHoursPerWeek must still cover the user's active goals."""
    changes = req.changes()
    ensure(changes, ValidationError("No updatable fields provided."))
    if "available_hours_per_week" in changes:
        ensure_hours_cover_active_goals(db, current_user, changes["available_hours_per_week"])
    user = update_user(db, current_user, changes)
    return {"data": _user_to_json(user)}
