#!/usr/bin/env python3
"""
WordPress API - WordPress.com OAuth and self-hosted application-password connections
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

router = APIRouter(prefix="/api/v1/wordpress", tags=["wordpress"])

PLATFORM = "wordpress"
AUTHORIZE_URL = "https://public-api.wordpress.com/oauth2/authorize"
TOKEN_URL = "https://public-api.wordpress.com/oauth2/token"
API_BASE = cms_integration.WORDPRESS_COM_API
SCOPES = "posts media sites users"


# Pydantic Models
class PublishRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    keywords: List[str] = []
    targetAudience: Optional[str] = None
    status: str = "publish"


class SelfHostedRequest(BaseModel):
    siteUrl: Optional[str] = None
    username: Optional[str] = None
    applicationPassword: Optional[str] = None


# Helper functions
def frontend_redirect(status: str) -> RedirectResponse:
    return RedirectResponse(url=f"{config.FRONTEND_URL}/dashboard?{PLATFORM}={status}")


def clean_site_url(site_url: str) -> str:
    site_url = site_url.strip()
    if not site_url.startswith(("http://", "https://")):
        site_url = f"https://{site_url}"
    return site_url.rstrip("/")


def require_self_hosted_fields(body: SelfHostedRequest) -> None:
    if not body.siteUrl or not body.username or not body.applicationPassword:
        raise HTTPException(status_code=400, detail="Site URL, username, and application password are required")


async def fetch_sites(client: httpx.AsyncClient, authorization: str) -> list:
    response = await client.get(f"{API_BASE}/me/sites", headers={"Authorization": authorization})
    response.raise_for_status()
    return response.json().get("sites") or []


# Routes

@router.get("/auth-url")
async def get_auth_url(request: Request):
    user_id = require_user_id(request)
    if not config.WORDPRESS_CLIENT_ID or not config.WORDPRESS_CLIENT_SECRET:
        raise HTTPException(
            status_code=500,
            detail="WordPress.com OAuth is not configured. Please set WORDPRESS_CLIENT_ID and WORDPRESS_CLIENT_SECRET.",
        )

    params = {
        "client_id": config.WORDPRESS_CLIENT_ID,
        "redirect_uri": config.WORDPRESS_REDIRECT_URI,
        "response_type": "code",
        "scope": SCOPES,
        "state": create_state(user_id, PLATFORM),
    }
    return {"authUrl": f"{AUTHORIZE_URL}?{urlencode(params)}"}


@router.get("/callback")
async def oauth_callback(code: Optional[str] = None, state: Optional[str] = None, error: Optional[str] = None):
    """Exchange the code, load the account and its sites, and store them"""
    if error:
        logger.warning("wordpress_oauth_denied", error=error)
        return frontend_redirect("error")
    if not code or not state:
        return frontend_redirect("error")

    record = consume_state(state, PLATFORM)
    try:
        async with http_client.async_client() as client:
            token_response = await client.post(TOKEN_URL, data={
                "client_id": config.WORDPRESS_CLIENT_ID,
                "client_secret": config.WORDPRESS_CLIENT_SECRET,
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": config.WORDPRESS_REDIRECT_URI,
            })
            token_response.raise_for_status()
            token = token_response.json()
            if not token.get("access_token"):
                logger.error("wordpress_token_missing")
                return frontend_redirect("error")

            token_type = token.get("token_type") or "bearer"
            authorization = f"{token_type} {token['access_token']}"
            me_response = await client.get(f"{API_BASE}/me", headers={"Authorization": authorization})
            me_response.raise_for_status()
            me = me_response.json()
            sites = await fetch_sites(client, authorization)
    except (httpx.HTTPError, ValueError) as e:
        logger.error("wordpress_oauth_failed", error=str(e))
        return frontend_redirect("error")

    upsert_credentials(record["userId"], PLATFORM, {
        "accessToken": token["access_token"],
        "tokenType": token_type,
        "scope": token.get("scope"),
        "userId": me.get("ID"),
        "userLogin": me.get("username"),
        "userEmail": me.get("email"),
        "userDisplayName": me.get("display_name"),
        "sites": sites,
    })
    logger.info("wordpress_connected", user_id=record["userId"], sites=len(sites))
    return frontend_redirect("connected")


@router.post("/publish")
async def publish(body: PublishRequest, request: Request):
    user_id = require_user_id(request)
    credentials = get_active_credentials(user_id, PLATFORM)
    if not credentials:
        raise HTTPException(status_code=401, detail="Not connected to WordPress. Please connect your site first.")
    if not body.title or not body.content:
        raise HTTPException(status_code=400, detail="Title and content are required")

    result = await cms_integration.publish_content(PLATFORM, credentials, {
        "title": body.title,
        "description": body.content,
        "keywords": body.keywords,
        "targetAudience": body.targetAudience or "",
        "status": body.status,
    })
    if not result["success"]:
        raise HTTPException(status_code=500, detail=f"Failed to publish to WordPress: {result['error']}")
    return {
        "success": True,
        "message": result["message"],
        "data": {"postId": result["postId"], "url": result["url"], "platform": PLATFORM},
    }


@router.get("/status")
async def get_status(request: Request):
    user_id = require_user_id(request)
    credentials = get_active_credentials(user_id, PLATFORM)
    if not credentials:
        return {"status": "disconnected", "message": "Not connected to WordPress."}

    auth = credentials.get("authDetails") or {}
    if cms_integration.is_self_hosted_wordpress(auth):
        return {
            "status": "connected",
            "platform": PLATFORM,
            "type": "self-hosted",
            "siteUrl": auth.get("siteUrl"),
            "username": auth.get("username"),
            "connectedAt": credentials.get("createdAt"),
        }
    return {
        "status": "connected",
        "platform": PLATFORM,
        "type": "wordpress.com",
        "user": {
            "login": auth.get("userLogin"),
            "email": auth.get("userEmail"),
            "displayName": auth.get("userDisplayName"),
        },
        "sites": [
            {"ID": s.get("ID"), "name": s.get("name"), "URL": s.get("URL")}
            for s in auth.get("sites") or []
        ],
        "connectedAt": credentials.get("createdAt"),
    }


@router.delete("/disconnect")
async def disconnect(request: Request):
    user_id = require_user_id(request)
    result = db.cms_credentials.find_one_and_delete({"userId": user_id, "platform": PLATFORM})
    if not result:
        return {"success": False, "message": "No WordPress connection found to disconnect"}
    return {"success": True, "message": "Successfully disconnected from WordPress"}


@router.get("/sites")
async def get_sites(request: Request):
    user_id = require_user_id(request)
    credentials = get_active_credentials(user_id, PLATFORM)
    auth = (credentials or {}).get("authDetails") or {}
    if not auth.get("accessToken"):
        raise HTTPException(status_code=401, detail="Not connected to WordPress.com")

    try:
        async with http_client.async_client() as client:
            sites = await fetch_sites(client, f"{auth.get('tokenType') or 'bearer'} {auth['accessToken']}")
    except httpx.HTTPError as e:
        raise HTTPException(status_code=502, detail=f"Failed to fetch WordPress.com sites: {e}")

    db.cms_credentials.update_one({"_id": credentials["_id"]}, {"$set": {"authDetails.sites": sites}})
    return {"success": True, "sites": sites}


@router.post("/connect")
async def connect_self_hosted(body: SelfHostedRequest, request: Request):
    """Save a self-hosted site after verifying the application password can publish"""
    user_id = require_user_id(request)
    require_self_hosted_fields(body)

    site_url = clean_site_url(body.siteUrl)
    result = await cms_integration.test_self_hosted_wordpress(site_url, body.username, body.applicationPassword)
    if not result["success"]:
        raise HTTPException(status_code=400, detail=f"Failed to connect to WordPress site: {result['error']}")

    credentials = upsert_credentials(user_id, PLATFORM, {
        "siteUrl": site_url,
        "username": body.username,
        "applicationPassword": body.applicationPassword,
    })
    data = result["data"]
    return {
        "success": True,
        "message": f"Successfully connected to WordPress site: {data['siteName']}",
        "data": {
            "siteUrl": site_url,
            "siteName": data["siteName"],
            "username": body.username,
            "userEmail": data["user"].get("email"),
            "userRoles": data["user"].get("roles", []),
            "platform": PLATFORM,
            "isActive": True,
            "connectedAt": credentials.get("createdAt"),
            "capabilities": data["capabilities"],
        },
    }


@router.post("/test-connection")
async def test_self_hosted(body: SelfHostedRequest, request: Request):
    require_user_id(request)
    require_self_hosted_fields(body)
    result = await cms_integration.test_self_hosted_wordpress(
        clean_site_url(body.siteUrl), body.username, body.applicationPassword
    )
    return {
        "success": result["success"],
        "message": result.get("message"),
        "data": result.get("data", {}),
        "error": result.get("error"),
    }
