#!/usr/bin/env python3
"""
CMS Credentials API - Per-user publishing credentials, one record per platform
"""

from datetime import datetime
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from snowball import cms_integration
from snowball.auth import require_user_id
from snowball.database import db, to_object_id

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/cms-credentials", tags=["cms-credentials"])

SECRET_FIELDS = ("accessToken", "password", "applicationPassword", "apiKey", "refreshToken")


# Pydantic Models
class CredentialsRequest(BaseModel):
    platform: str
    authDetails: Dict[str, Any]


# Helper functions
def validate_platform(platform: str) -> str:
    if platform not in cms_integration.SUPPORTED_PLATFORMS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported platform. Use one of: {', '.join(cms_integration.SUPPORTED_PLATFORMS)}",
        )
    return platform


def credentials_helper(credentials) -> dict:
    """Convert MongoDB credentials to dict with secrets masked"""
    auth = dict(credentials.get("authDetails") or {})
    for field in SECRET_FIELDS:
        if auth.get(field):
            auth[field] = "********"
    return {
        "_id": str(credentials["_id"]),
        "platform": credentials["platform"],
        "authDetails": auth,
        "isActive": credentials.get("isActive", True),
        "createdAt": credentials.get("createdAt"),
        "updatedAt": credentials.get("updatedAt"),
    }


def upsert_credentials(user_id: str, platform: str, auth_details: Dict[str, Any]) -> dict:
    """Create or replace the user's credentials for a platform and mark them active"""
    now = datetime.utcnow()
    db.cms_credentials.update_one(
        {"userId": user_id, "platform": platform},
        {
            "$set": {"authDetails": auth_details, "isActive": True, "updatedAt": now},
            "$setOnInsert": {"userId": user_id, "platform": platform, "createdAt": now},
        },
        upsert=True,
    )
    logger.info("cms_credentials_saved", user_id=user_id, platform=platform)
    return db.cms_credentials.find_one({"userId": user_id, "platform": platform})


def get_active_credentials(user_id: str, platform: str) -> Optional[dict]:
    return db.cms_credentials.find_one({"userId": user_id, "platform": platform, "isActive": True})


def verify_credentials_access(credentials_id: str, user_id: str) -> dict:
    credentials = db.cms_credentials.find_one({"_id": to_object_id(credentials_id, "credentials")})
    if not credentials:
        raise HTTPException(status_code=404, detail="Credentials not found")
    if credentials.get("userId") != user_id:
        raise HTTPException(status_code=403, detail="Access denied to these credentials")
    return credentials


# Routes

@router.post("/")
async def save_credentials(body: CredentialsRequest, request: Request):
    user_id = require_user_id(request)
    platform = validate_platform(body.platform)
    if not body.authDetails:
        raise HTTPException(status_code=400, detail="Authentication details are required")
    try:
        credentials = upsert_credentials(user_id, platform, body.authDetails)
        return {"success": True, "credentials": credentials_helper(credentials)}
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/")
async def list_credentials(request: Request, platform: Optional[str] = None):
    user_id = require_user_id(request)
    query: Dict[str, Any] = {"userId": user_id}
    if platform:
        query["platform"] = validate_platform(platform)
    credentials = db.cms_credentials.find(query)
    return {"success": True, "credentials": [credentials_helper(c) for c in credentials]}


@router.post("/test")
async def test_credentials(body: CredentialsRequest, request: Request):
    """Check credentials against the platform without saving them"""
    require_user_id(request)
    platform = validate_platform(body.platform)
    result = await cms_integration.test_connection(platform, {"authDetails": body.authDetails})
    return result


@router.delete("/{credentials_id}")
async def delete_credentials(credentials_id: str, request: Request):
    user_id = require_user_id(request)
    credentials = verify_credentials_access(credentials_id, user_id)
    db.cms_credentials.delete_one({"_id": credentials["_id"]})
    logger.info("cms_credentials_deleted", user_id=user_id, platform=credentials["platform"])
    return {"success": True, "message": "Credentials deleted"}


@router.patch("/{credentials_id}/deactivate")
async def deactivate_credentials(credentials_id: str, request: Request):
    user_id = require_user_id(request)
    credentials = verify_credentials_access(credentials_id, user_id)
    db.cms_credentials.update_one(
        {"_id": credentials["_id"]},
        {"$set": {"isActive": False, "updatedAt": datetime.utcnow()}}
    )
    return {"success": True, "message": "Credentials deactivated"}
