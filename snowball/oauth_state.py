"""
Single-use OAuth `state` values.

The CMS and Google OAuth callbacks are unauthenticated, so the caller is
identified by the `state` round-tripped through the provider. States are bound
to one platform, deleted on first use and rejected after ten minutes.
"""

import secrets
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import HTTPException

from snowball.database import OAUTH_STATE_TTL_SECONDS, db


class InvalidOAuthState(HTTPException):
    def __init__(self, detail: str = "Invalid or expired OAuth state"):
        super().__init__(status_code=400, detail=detail)


def create_state(user_id: str, platform: str, extra: Optional[Dict[str, Any]] = None) -> str:
    state = secrets.token_urlsafe(32)
    db.oauth_states.insert_one({
        "state": state,
        "userId": user_id,
        "platform": platform,
        "extra": extra or {},
        "createdAt": datetime.utcnow(),
    })
    return state


def consume_state(state: Optional[str], platform: str) -> Dict[str, Any]:
    """Delete and return the stored state, or raise InvalidOAuthState"""
    if not state:
        raise InvalidOAuthState("Missing OAuth state")

    record = db.oauth_states.find_one_and_delete({"state": state})
    if not record or record.get("platform") != platform:
        raise InvalidOAuthState()
    if datetime.utcnow() - record["createdAt"] > timedelta(seconds=OAUTH_STATE_TTL_SECONDS):
        raise InvalidOAuthState("OAuth state expired")
    return record
