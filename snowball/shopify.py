#!/usr/bin/env python3
"""
Shopify API - OAuth connection and blog publishing
"""

import hashlib
import hmac
import re
from typing import List, Mapping, Optional
from urllib.parse import urlencode

import httpx
import structlog
from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from snowball import cms_integration, config, http_client
from snowball.auth import require_user_id
from snowball.cms_credentials import (
    get_active_credentials,
    upsert_credentials,
)
from snowball.database import db
from snowball.oauth_state import consume_state, create_state

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/shopify", tags=["shopify"])

PLATFORM = "shopify"
SHOP_DOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9-]*\.myshopify\.com$")


# Pydantic Models
class SaveCredentialsRequest(BaseModel):
    shopDomain: str
    accessToken: str


class PublishRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    keywords: List[str] = []
    targetAudience: Optional[str] = None


# Helper functions
def normalize_shop_domain(shop: str) -> str:
    """Lowercase, strip protocol and trailing slash"""
    shop = shop.strip().lower()
    shop = re.sub(r"^https?://", "", shop)
    return shop.rstrip("/")


def compute_hmac(params: Mapping[str, str], secret: str) -> str:
    """Shopify signs the sorted query string (without `hmac`) with the app secret"""
    message = "&".join(f"{key}={params[key]}" for key in sorted(params) if key != "hmac")
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_hmac(params: Mapping[str, str], secret: str) -> bool:
    received = params.get("hmac")
    if not received:
        return False
    return hmac.compare_digest(compute_hmac(params, secret), received)


def frontend_redirect(status: str) -> RedirectResponse:
    return RedirectResponse(url=f"{config.FRONTEND_URL}/dashboard?{PLATFORM}={status}")


# Routes

@router.get("/auth-url")
async def get_auth_url(request: Request, shop: str = Query(...)):
    """Authorization URL for a *.myshopify.com store"""
    user_id = require_user_id(request)
    if not config.SHOPIFY_API_KEY:
        raise HTTPException(status_code=500, detail="Shopify API key not configured")

    shop = normalize_shop_domain(shop)
    if not SHOP_DOMAIN_RE.match(shop):
        raise HTTPException(
            status_code=400,
            detail="Invalid shop domain. Must be in format: your-shop-name.myshopify.com",
        )

    state = create_state(user_id, PLATFORM, {"shop": shop})
    params = {
        "client_id": config.SHOPIFY_API_KEY,
        "scope": config.SHOPIFY_SCOPES,
        "redirect_uri": f"{config.APP_URL}/api/v1/shopify/callback",
        "state": state,
    }
    return {"authUrl": f"https://{shop}/admin/oauth/authorize?{urlencode(params)}"}


@router.get("/callback")
async def oauth_callback(request: Request):
    """
    Verify the HMAC and state, exchange the code and store the token.
    The browser is sent back to the dashboard without any token in the URL.
    """
    params = dict(request.query_params)
    code, shop, state = params.get("code"), params.get("shop"), params.get("state")
    if not code or not shop or not state:
        raise HTTPException(status_code=400, detail="Missing required OAuth parameters: code, shop, or state")

    if not config.SHOPIFY_API_KEY or not config.SHOPIFY_API_SECRET:
        logger.error("shopify_oauth_not_configured")
        return frontend_redirect("error")
    if not verify_hmac(params, config.SHOPIFY_API_SECRET):
        logger.warning("shopify_hmac_rejected", shop=shop)
        raise HTTPException(status_code=401, detail="HMAC verification failed")

    record = consume_state(state, PLATFORM)
    shop = normalize_shop_domain(shop)
    if record["extra"].get("shop") and record["extra"]["shop"] != shop:
        logger.warning("shopify_shop_mismatch", expected=record["extra"]["shop"], shop=shop)
        return frontend_redirect("error")

    try:
        async with http_client.async_client() as client:
            response = await client.post(
                f"https://{shop}/admin/oauth/access_token",
                json={
                    "client_id": config.SHOPIFY_API_KEY,
                    "client_secret": config.SHOPIFY_API_SECRET,
                    "code": code,
                },
            )
            response.raise_for_status()
            token = response.json().get("access_token")
    except (httpx.HTTPError, ValueError) as e:
        logger.error("shopify_token_exchange_failed", shop=shop, error=str(e))
        return frontend_redirect("error")

    if not token:
        logger.error("shopify_token_missing", shop=shop)
        return frontend_redirect("error")

    upsert_credentials(record["userId"], PLATFORM, {
        "shopDomain": shop,
        "accessToken": token,
        "apiVersion": config.SHOPIFY_API_VERSION,
        "scope": config.SHOPIFY_SCOPES,
    })
    return frontend_redirect("connected")


@router.post("/save-credentials")
async def save_credentials(body: SaveCredentialsRequest, request: Request):
    """Store a custom-app access token after checking it against the shop"""
    user_id = require_user_id(request)
    shop = normalize_shop_domain(body.shopDomain)
    auth_details = {
        "shopDomain": shop,
        "accessToken": body.accessToken.strip(),
        "apiVersion": config.SHOPIFY_API_VERSION,
    }
    result = await cms_integration.test_connection(PLATFORM, {"authDetails": auth_details})
    if not result.get("success"):
        raise HTTPException(status_code=400, detail=result.get("error") or "Could not connect to Shopify")

    upsert_credentials(user_id, PLATFORM, auth_details)
    return {"success": True, "message": "Shopify credentials saved", "shop": shop}


@router.post("/publish")
async def publish(body: PublishRequest, request: Request):
    user_id = require_user_id(request)
    credentials = get_active_credentials(user_id, PLATFORM)
    if not credentials:
        raise HTTPException(status_code=401, detail="Not connected to Shopify. Please connect your store first.")
    if not body.title or not body.content:
        raise HTTPException(status_code=400, detail="Title and content are required")

    result = await cms_integration.publish_content(PLATFORM, credentials, {
        "title": body.title,
        "description": body.content,
        "keywords": body.keywords,
        "targetAudience": body.targetAudience or "General Audience",
    })
    if not result["success"]:
        raise HTTPException(status_code=500, detail=f"Failed to publish to Shopify: {result['error']}")

    return {
        "success": True,
        "message": result["message"],
        "data": {
            "postId": result["postId"],
            "url": result["url"],
            "platform": PLATFORM,
            "shop": credentials["authDetails"].get("shopDomain"),
        },
    }


@router.get("/status")
async def get_status(request: Request):
    user_id = require_user_id(request)
    credentials = get_active_credentials(user_id, PLATFORM)
    if not credentials:
        return {"status": "disconnected", "message": "Not connected to Shopify. Complete OAuth flow to connect."}
    return {
        "status": "connected",
        "shop": credentials["authDetails"].get("shopDomain"),
        "platform": PLATFORM,
        "connectedAt": credentials.get("createdAt"),
        "scopes": config.SHOPIFY_SCOPES,
    }


@router.delete("/disconnect")
async def disconnect(request: Request):
    user_id = require_user_id(request)
    result = db.cms_credentials.find_one_and_delete({"userId": user_id, "platform": PLATFORM})
    if not result:
        return {"success": False, "message": "No Shopify connection found to disconnect"}
    return {"success": True, "message": "Successfully disconnected from Shopify store"}
