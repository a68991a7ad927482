#!/usr/bin/env python3
"""
Users API - Local and Google sign-in, session info and brand settings
"""

import re
import secrets
from datetime import datetime
from typing import Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

from snowball.auth import (
    create_access_token,
    hash_password,
    require_user_id,
    verify_google_id_token,
    verify_password,
)
from snowball.database import db, to_object_id
from snowball.rate_limit import auth_rate_limit, record_auth_failure, user_api_rate_limit

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1", tags=["users"])

EMAIL_RE = re.compile(r"^[^\s@<>()\[\]\\,;:\"]+@([A-Za-z0-9-]+\.)+[A-Za-z]{2,}$")
NAME_RE = re.compile(r"^[a-zA-Z\s]+$")
PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]")
PASSWORD_RULE_MESSAGE = (
    "Password must contain at least one uppercase letter, one lowercase letter, "
    "one number, and one special character"
)


# Pydantic Models
class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class GoogleAuthRequest(BaseModel):
    idToken: Optional[str] = None


class BrandSettings(BaseModel):
    brandTone: Optional[str] = None
    targetAudience: Optional[str] = None
    brandDescription: Optional[str] = None
    keyMessages: List[str] = []


# Validation
def _validate_email(email: Optional[str], errors: List[Dict[str, str]]) -> None:
    if not email or not EMAIL_RE.match(email.strip()):
        errors.append({"field": "email", "message": "Please provide a valid email address"})


def _validate_password(password: Optional[str], errors: List[Dict[str, str]]) -> None:
    if not password or not 8 <= len(password) <= 128:
        errors.append({"field": "password", "message": "Password must be at least 8 characters long"})
    elif not PASSWORD_RE.match(password):
        errors.append({"field": "password", "message": PASSWORD_RULE_MESSAGE})


def validate_login(body: LoginRequest) -> List[Dict[str, str]]:
    errors: List[Dict[str, str]] = []
    _validate_email(body.email, errors)
    _validate_password(body.password, errors)
    return errors


def validate_registration(body: RegisterRequest) -> List[Dict[str, str]]:
    errors: List[Dict[str, str]] = []
    name = (body.name or "").strip()
    if not 2 <= len(name) <= 50:
        errors.append({"field": "name", "message": "Name must be between 2 and 50 characters"})
    elif not NAME_RE.match(name):
        errors.append({"field": "name", "message": "Name can only contain letters and spaces"})
    _validate_email(body.email, errors)
    _validate_password(body.password, errors)
    return errors


def validation_failed(errors: List[Dict[str, str]]) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Validation failed", "details": errors},
    )


# Helper functions
def user_helper(user) -> dict:
    """Convert MongoDB user to the public user shape"""
    return {
        "id": str(user["_id"]),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role", "user"),
        "profilePicture": user.get("profilePicture"),
    }


def get_user_or_404(user_id: str) -> dict:
    user = db.users.find_one({"_id": to_object_id(user_id, "user")})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def new_user_document(name: str, email: str, password: str, provider: str = "local", **extra) -> dict:
    now = datetime.utcnow()
    doc = {
        "name": name,
        "email": email,
        "password": hash_password(password),
        "provider": provider,
        "role": "user",
        "googleId": None,
        "profilePicture": None,
        "googleAnalytics": {
            "accessToken": None,
            "refreshToken": None,
            "tokenExpiresAt": None,
            "propertyId": None,
            "searchConsoleUrl": None,
            "connectedAt": None,
        },
        "planType": "free",
        "subscriptionStatus": None,
        "paymentHistory": [],
        "created_at": now,
        "updated_at": now,
    }
    doc.update(extra)
    return doc


# Routes

@router.post("/login")
async def login(body: LoginRequest, ip: str = Depends(auth_rate_limit)):
    """Authenticate with email and password"""
    if not body.email or not body.password:
        raise HTTPException(status_code=400, detail="Please provide email and password")

    errors = validate_login(body)
    if errors:
        record_auth_failure(ip)
        return validation_failed(errors)

    user = db.users.find_one({"email": body.email.strip().lower()})
    if not user or not verify_password(body.password, user.get("password")):
        record_auth_failure(ip)
        logger.info("login_failed", ip=ip)
        raise HTTPException(status_code=401, detail="Invalid email or password")

    db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"lastLoginAt": datetime.utcnow(), "lastLoginIP": ip}}
    )
    logger.info("login_succeeded", user_id=str(user["_id"]))
    return {
        "success": True,
        "message": "Login successful",
        "token": create_access_token(user),
        "user": user_helper(user),
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, ip: str = Depends(auth_rate_limit)):
    """Create a local account and sign it in"""
    errors = validate_registration(body)
    if errors:
        record_auth_failure(ip)
        return validation_failed(errors)

    email = body.email.strip().lower()
    if db.users.find_one({"email": email}):
        record_auth_failure(ip)
        raise HTTPException(status_code=409, detail="An account with this email already exists")

    user = new_user_document(
        body.name.strip(), email, body.password,
        lastLoginAt=datetime.utcnow(), lastLoginIP=ip,
    )
    try:
        result = db.users.insert_one(user)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="An account with this email already exists")
    user["_id"] = result.inserted_id

    logger.info("user_registered", user_id=str(result.inserted_id))
    return {
        "success": True,
        "message": "Registration successful",
        "token": create_access_token(user),
        "user": user_helper(user),
    }


@router.post("/auth/google")
async def google_auth(body: GoogleAuthRequest, ip: str = Depends(auth_rate_limit)):
    """Sign in with a Google ID token, creating the account on first use"""
    if not body.idToken:
        raise HTTPException(status_code=400, detail="Google ID token is required")

    try:
        payload = verify_google_id_token(body.idToken)
    except ValueError as e:
        record_auth_failure(ip)
        logger.info("google_token_rejected", error=str(e))
        raise HTTPException(status_code=401, detail="Invalid Google token")

    email = (payload.get("email") or "").lower()
    if not email:
        raise HTTPException(status_code=400, detail="Email not provided by Google")

    try:
        user = db.users.find_one({"email": email})
        if user:
            updates = {}
            if not user.get("googleId"):
                updates["googleId"] = payload.get("sub")
            if not user.get("profilePicture") and payload.get("picture"):
                updates["profilePicture"] = payload.get("picture")
            if updates:
                updates["updated_at"] = datetime.utcnow()
                db.users.update_one({"_id": user["_id"]}, {"$set": updates})
                user.update(updates)
        else:
            user = new_user_document(
                payload.get("name") or email.split("@")[0],
                email,
                # Unusable random password; Google accounts sign in with the ID token
                secrets.token_urlsafe(24) + "Aa1@",
                provider="google",
                googleId=payload.get("sub"),
                profilePicture=payload.get("picture"),
            )
            result = db.users.insert_one(user)
            user["_id"] = result.inserted_id
            logger.info("google_user_created", user_id=str(result.inserted_id))

        return {
            "success": True,
            "msg": "Google authentication successful",
            "token": create_access_token(user),
            "user": user_helper(user),
        }
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/me", dependencies=[Depends(user_api_rate_limit)])
async def get_me(request: Request):
    user = get_user_or_404(require_user_id(request))
    return {"success": True, "user": user_helper(user)}


@router.post("/logout", dependencies=[Depends(user_api_rate_limit)])
async def logout(request: Request):
    # Tokens are stateless; the client discards its copy
    require_user_id(request)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/dashboard", dependencies=[Depends(user_api_rate_limit)])
async def dashboard(request: Request):
    user = get_user_or_404(require_user_id(request))
    return {"msg": f"Hello, {user.get('name')}"}


@router.get("/brand-settings", dependencies=[Depends(user_api_rate_limit)])
async def get_brand_settings(request: Request):
    user = get_user_or_404(require_user_id(request))
    settings = user.get("brandSettings") or BrandSettings().model_dump()
    return {"success": True, "settings": settings}


@router.post("/brand-settings", dependencies=[Depends(user_api_rate_limit)])
async def save_brand_settings(settings: BrandSettings, request: Request):
    user_id = require_user_id(request)
    try:
        data = settings.model_dump()
        db.users.update_one(
            {"_id": to_object_id(user_id, "user")},
            {"$set": {"brandSettings": data, "updated_at": datetime.utcnow()}}
        )
        return {"success": True, "settings": data}
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
