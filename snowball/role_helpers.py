#!/usr/bin/env python3
"""
Role-based access control helpers for the Snowball platform.
"""

from fastapi import HTTPException, Request

from snowball.auth import require_user_id
from snowball.database import db, to_object_id

ROLE_USER = "user"
ROLE_SUPERUSER = "superuser"


def require_role(request: Request, allowed_roles: list) -> dict:
    """
    Verify the authenticated user has one of the allowed roles.
    The role is read from the user record, not the token, so demotions apply immediately.
    Returns the user document or raises 403.
    """
    user_id = require_user_id(request)
    user = db.users.find_one({"_id": to_object_id(user_id, "user")})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    if user.get("role", ROLE_USER) not in allowed_roles:
        raise HTTPException(
            status_code=403,
            detail=f"Requires one of roles: {', '.join(allowed_roles)}"
        )
    return user


def require_superuser(request: Request) -> dict:
    return require_role(request, [ROLE_SUPERUSER])
