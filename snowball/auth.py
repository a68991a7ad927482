#!/usr/bin/env python3
"""
Authentication for the Snowball API
Local accounts use bcrypt password hashes and HS256 session tokens.
Google sign-in verifies an ID token and issues the same session token.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt
import structlog
from fastapi import HTTPException, Request, status
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from snowball.config import GOOGLE_CLIENT_ID, JWT_ALGORITHM, JWT_EXPIRES_HOURS, JWT_SECRET

logger = structlog.get_logger()

# Paths that don't require authentication
EXCLUDED_PATHS = [
    "/",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/api/v1/health",
    "/api/v1/login",
    "/api/v1/register",
    "/api/v1/auth/google",
    "/api/v1/shopify/callback",  # OAuth callbacks identify the user through `state`
    "/api/v1/webflow/callback",
    "/api/v1/wordpress/callback",
    "/api/v1/analytics/auth/google/callback",
]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(user: Dict[str, Any]) -> str:
    """Sign a session token carrying the user's id, name and role"""
    now = datetime.now(timezone.utc)
    payload = {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "role": user.get("role") or "user",
        "iat": now,
        "exp": now + timedelta(hours=JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_jwt_token(token: str) -> Optional[Dict[str, Any]]:
    """
    Verify a session token and return its payload
    Returns None if verification fails
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("jwt_expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.info("jwt_invalid", error=str(e))
        return None

    if not payload.get("id"):
        return None
    return payload


def verify_google_id_token(token: str) -> Dict[str, Any]:
    """
    Verify a Google Identity Services ID token against our client id.
    Raises ValueError when the token is invalid.
    """
    return google_id_token.verify_oauth2_token(
        token, google_requests.Request(), GOOGLE_CLIENT_ID
    )


def _is_excluded(path: str) -> bool:
    for excluded in EXCLUDED_PATHS:
        if path == excluded:
            return True
        if excluded != "/" and path.startswith(excluded + "/"):
            return True
    return False


class AuthMiddleware(BaseHTTPMiddleware):
    """
    Validate `Authorization: Bearer <token>` on every non-excluded path.
    The verified payload is stored on `request.state.user`.
    """

    async def dispatch(self, request: Request, call_next):
        # Skip validation for CORS preflight requests
        if request.method == "OPTIONS":
            return await call_next(request)

        if _is_excluded(request.url.path):
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            payload = verify_jwt_token(auth_header[7:])
            if payload:
                request.state.user = payload
                structlog.contextvars.bind_contextvars(user_id=payload["id"])
                try:
                    return await call_next(request)
                finally:
                    structlog.contextvars.unbind_contextvars("user_id")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid or expired token"}
            )

        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"detail": "Authentication required. Provide 'Authorization: Bearer <token>' header."}
        )


def get_user_from_request(request: Request) -> Optional[Dict[str, Any]]:
    """Get the token payload stored by the middleware, if any"""
    return getattr(request.state, 'user', None)


def require_user_id(request: Request) -> str:
    """
    Require and return the id of the authenticated user.
    Raises HTTPException if the request carries no session.
    """
    user = get_user_from_request(request)
    if not user or not user.get("id"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User authentication required. Please log in.",
        )
    return user["id"]
