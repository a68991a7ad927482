#!/usr/bin/env python3
"""
Webflow API - OAuth connection, site listing and CMS item publishing
"""

from typing import List, Optional
from urllib.parse import urlencode

import httpx
import structlog
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from snowball import cms_integration, config, http_client
from snowball.auth import require_user_id
from snowball.cms_credentials import get_active_credentials, upsert_credentials
from snowball.database import db
from snowball.oauth_state import consume_state, create_state

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/webflow", tags=["webflow"])

PLATFORM = "webflow"
AUTHORIZE_URL = "https://webflow.com/oauth/authorize"
TOKEN_URL = "https://api.webflow.com/oauth/access_token"
SCOPES = "sites:read sites:write cms:read cms:write"


# Pydantic Models
class SaveCredentialsRequest(BaseModel):
    accessToken: Optional[str] = None
    userEmail: Optional[str] = None


class PublishRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    keywords: List[str] = []
    targetAudience: Optional[str] = None
    siteId: Optional[str] = None


# Helper functions
def redirect_uri() -> str:
    return f"{config.APP_URL}/api/v1/webflow/callback"


def frontend_redirect(status: str) -> RedirectResponse:
    return RedirectResponse(url=f"{config.FRONTEND_URL}/dashboard?{PLATFORM}={status}")


def require_connection(user_id: str) -> dict:
    credentials = get_active_credentials(user_id, PLATFORM)
    if not credentials:
        raise HTTPException(status_code=401, detail="Not connected to Webflow. Please connect your account first.")
    return credentials


# Routes

@router.get("/auth-url")
async def get_auth_url(request: Request):
    user_id = require_user_id(request)
    if not config.WEBFLOW_CLIENT_ID:
        raise HTTPException(status_code=500, detail="Webflow client ID not configured")

    params = {
        "response_type": "code",
        "client_id": config.WEBFLOW_CLIENT_ID,
        "redirect_uri": redirect_uri(),
        "scope": SCOPES,
        "state": create_state(user_id, PLATFORM),
    }
    return {"authUrl": f"{AUTHORIZE_URL}?{urlencode(params)}"}


@router.get("/callback")
async def oauth_callback(code: Optional[str] = None, state: Optional[str] = None, error: Optional[str] = None):
    if error:
        logger.warning("webflow_oauth_denied", error=error)
        return frontend_redirect("error")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing required OAuth parameters: code or state")

    record = consume_state(state, PLATFORM)
    if not config.WEBFLOW_CLIENT_ID or not config.WEBFLOW_CLIENT_SECRET:
        logger.error("webflow_oauth_not_configured")
        return frontend_redirect("error")

    try:
        async with http_client.async_client() as client:
            response = await client.post(TOKEN_URL, json={
                "client_id": config.WEBFLOW_CLIENT_ID,
                "client_secret": config.WEBFLOW_CLIENT_SECRET,
                "code": code,
                "redirect_uri": redirect_uri(),
                "grant_type": "authorization_code",
            })
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error("webflow_token_exchange_failed", error=str(e))
        return frontend_redirect("error")

    if not data.get("access_token"):
        logger.error("webflow_token_missing")
        return frontend_redirect("error")

    user = data.get("user") or {}
    upsert_credentials(record["userId"], PLATFORM, {
        "accessToken": data["access_token"],
        "tokenType": data.get("token_type", "Bearer"),
        "scope": SCOPES,
        "userId": user.get("id"),
        "userEmail": user.get("email"),
    })
    return frontend_redirect("connected")


@router.post("/save-credentials")
async def save_credentials(body: SaveCredentialsRequest, request: Request):
    """Store a site API token after checking it can list sites"""
    user_id = require_user_id(request)
    if not body.accessToken:
        raise HTTPException(status_code=400, detail="Access token is required")

    auth_details = {"accessToken": body.accessToken.strip(), "tokenType": "Bearer", "userEmail": body.userEmail}
    result = await cms_integration.test_connection(PLATFORM, {"authDetails": auth_details})
    if not result.get("success"):
        raise HTTPException(status_code=400, detail=result.get("error") or "Could not connect to Webflow")

    upsert_credentials(user_id, PLATFORM, auth_details)
    return {"success": True, "message": "Webflow credentials saved", "sitesCount": result.get("sitesCount", 0)}


@router.post("/publish")
async def publish(body: PublishRequest, request: Request):
    user_id = require_user_id(request)
    credentials = require_connection(user_id)
    if not body.title or not body.content:
        raise HTTPException(status_code=400, detail="Title and content are required")
    if not body.siteId:
        raise HTTPException(status_code=400, detail="Site ID is required to publish to Webflow. Please select a site.")

    result = await cms_integration.publish_content(PLATFORM, credentials, {
        "title": body.title,
        "description": body.content,
        "keywords": body.keywords,
        "targetAudience": body.targetAudience or "General Audience",
        "siteId": body.siteId,
    })
    if not result["success"]:
        raise HTTPException(status_code=500, detail=f"Failed to publish to Webflow: {result['error']}")

    return {
        "success": True,
        "message": result["message"],
        "data": {"postId": result["postId"], "url": result["url"], "platform": PLATFORM, "siteId": body.siteId},
    }


@router.get("/status")
async def get_status(request: Request):
    user_id = require_user_id(request)
    credentials = get_active_credentials(user_id, PLATFORM)
    if not credentials:
        return {"status": "disconnected", "message": "Not connected to Webflow. Complete OAuth flow to connect."}
    return {
        "status": "connected",
        "platform": PLATFORM,
        "userEmail": credentials["authDetails"].get("userEmail"),
        "connectedAt": credentials.get("createdAt"),
        "scopes": SCOPES,
    }


@router.delete("/disconnect")
async def disconnect(request: Request):
    user_id = require_user_id(request)
    result = db.cms_credentials.find_one_and_delete({"userId": user_id, "platform": PLATFORM})
    if not result:
        return {"success": False, "message": "No Webflow connection found to disconnect"}
    return {"success": True, "message": "Successfully disconnected from Webflow"}


@router.get("/sites")
async def get_sites(request: Request):
    user_id = require_user_id(request)
    credentials = require_connection(user_id)
    try:
        sites = await cms_integration.list_webflow_sites(credentials["authDetails"]["accessToken"])
    except cms_integration.CMSPublishError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except httpx.HTTPError as e:
        raise HTTPException(status_code=502, detail=f"Failed to fetch Webflow sites: {e}")
    return {"success": True, "sites": sites}
