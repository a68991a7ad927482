#!/usr/bin/env python3
"""
Analytics API - Google Analytics 4 and Search Console connection and reports
"""

from typing import Any, Awaitable, Callable, Optional

import httpx
import structlog
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from snowball import config, google_analytics
from snowball.auth import require_user_id
from snowball.database import db
from snowball.google_analytics import GoogleAPIError
from snowball.oauth_state import consume_state, create_state

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/analytics", tags=["analytics"])

PLATFORM = "google_analytics"


# Pydantic Models
class ConfigureRequest(BaseModel):
    propertyId: Optional[str] = None
    searchConsoleUrl: Optional[str] = None


# Helper functions
def frontend_redirect(status: str) -> RedirectResponse:
    return RedirectResponse(url=f"{config.FRONTEND_URL}/dashboard?analytics={status}")


async def run_report(user_id: str, fetch: Callable[[str], Awaitable[Any]], label: str):
    """Call a report and wrap its data, translating Google failures into HTTP errors"""
    try:
        return {"success": True, "data": await fetch(user_id)}
    except GoogleAPIError as e:
        logger.warning("analytics_report_failed", report=label, user_id=user_id, error=str(e))
        status = e.status_code if 400 <= e.status_code < 500 else 502
        raise HTTPException(status_code=status, detail=str(e))
    except httpx.HTTPError as e:
        logger.error("analytics_report_unreachable", report=label, error=str(e))
        raise HTTPException(status_code=502, detail=f"Failed to fetch {label}")


# Routes

@router.get("/auth/google")
async def google_auth_url(request: Request):
    user_id = require_user_id(request)
    if not config.GOOGLE_CLIENT_ID or not config.GOOGLE_CLIENT_SECRET:
        raise HTTPException(status_code=500, detail="Google Analytics OAuth is not configured")
    return {"success": True, "authUrl": google_analytics.build_auth_url(create_state(user_id, PLATFORM))}


@router.get("/auth/google/callback")
async def google_callback(code: Optional[str] = None, state: Optional[str] = None, error: Optional[str] = None):
    if error:
        logger.warning("google_analytics_oauth_denied", error=error)
        return frontend_redirect("error")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing authorization code or state from Google OAuth")

    record = consume_state(state, PLATFORM)
    try:
        tokens = await google_analytics.exchange_code(code)
    except (GoogleAPIError, httpx.HTTPError, KeyError) as e:
        logger.error("google_analytics_token_exchange_failed", error=str(e))
        return frontend_redirect("error")

    google_analytics.save_connection(record["userId"], tokens)
    logger.info("google_analytics_connected", user_id=record["userId"])
    return frontend_redirect("connected")


@router.get("/properties")
async def get_properties(request: Request):
    user_id = require_user_id(request)
    return await run_report(user_id, google_analytics.list_properties, "Analytics properties")


@router.get("/search-console-sites")
async def get_search_console_sites(request: Request):
    user_id = require_user_id(request)
    return await run_report(user_id, google_analytics.list_search_console_sites, "Search Console sites")


@router.post("/configure")
async def configure(body: ConfigureRequest, request: Request):
    user_id = require_user_id(request)
    if not body.propertyId or not body.searchConsoleUrl:
        raise HTTPException(status_code=400, detail="Property ID and Search Console URL are required")
    if not google_analytics.get_connection(user_id).get("accessToken"):
        raise HTTPException(status_code=400, detail="Google Analytics not connected")

    google_analytics.save_connection(user_id, {
        "propertyId": body.propertyId,
        "searchConsoleUrl": body.searchConsoleUrl,
    })
    return {"success": True, "message": "Analytics configuration saved successfully"}


@router.get("/status")
async def get_status(request: Request):
    user_id = require_user_id(request)
    connection = google_analytics.get_connection(user_id)
    return {
        "success": True,
        "data": {
            "isConnected": bool(
                connection.get("accessToken") and connection.get("propertyId") and connection.get("searchConsoleUrl")
            ),
            "hasTokens": bool(connection.get("accessToken")),
            "connectedAt": connection.get("connectedAt"),
            "propertyId": connection.get("propertyId"),
            "searchConsoleUrl": connection.get("searchConsoleUrl"),
        },
    }


@router.get("/overview")
async def get_overview(request: Request):
    user_id = require_user_id(request)

    async def overview(uid: str):
        return {
            "analytics": await google_analytics.get_analytics_data(uid),
            "searchConsole": await google_analytics.get_search_console_data(uid),
        }

    return await run_report(user_id, overview, "analytics overview")


@router.get("/blog-performance")
async def get_blog_performance(request: Request):
    """Numbers for the user's published calendar posts"""
    user_id = require_user_id(request)
    urls = [
        entry["publishedUrl"]
        for entry in db.content_calendar.find(
            {"userId": user_id, "status": "published", "publishedUrl": {"$ne": None}},
            {"publishedUrl": 1},
        )
        if entry.get("publishedUrl")
    ]

    async def performance(uid: str):
        return await google_analytics.get_blog_performance(uid, urls)

    return await run_report(user_id, performance, "blog performance")


@router.get("/top-pages")
async def get_top_pages(request: Request):
    return await run_report(require_user_id(request), google_analytics.get_top_pages, "top pages")


@router.get("/top-queries")
async def get_top_queries(request: Request):
    return await run_report(require_user_id(request), google_analytics.get_top_queries, "top queries")


@router.get("/traffic-by-country")
async def get_traffic_by_country(request: Request):
    return await run_report(require_user_id(request), google_analytics.get_traffic_by_country, "traffic by country")


@router.get("/device-breakdown")
async def get_device_breakdown(request: Request):
    return await run_report(require_user_id(request), google_analytics.get_device_breakdown, "device breakdown")


@router.get("/query-page-matrix")
async def get_query_page_matrix(request: Request):
    return await run_report(require_user_id(request), google_analytics.get_query_page_matrix, "query-page matrix")


@router.get("/keyword-trends")
async def get_keyword_trends(request: Request):
    return await run_report(require_user_id(request), google_analytics.get_keyword_trends, "keyword trends")


@router.get("/search-appearance")
async def get_search_appearance(request: Request):
    return await run_report(require_user_id(request), google_analytics.get_search_appearance, "search appearance")


@router.get("/performance-comparison")
async def get_performance_comparison(request: Request):
    return await run_report(
        require_user_id(request), google_analytics.get_performance_comparison, "performance comparison"
    )


@router.get("/low-hanging-fruit")
async def get_low_hanging_fruit(request: Request):
    return await run_report(require_user_id(request), google_analytics.get_low_hanging_fruit, "low-hanging fruit")


@router.delete("/disconnect")
async def disconnect(request: Request):
    user_id = require_user_id(request)
    google_analytics.clear_connection(user_id)
    return {"success": True, "message": "Google Analytics disconnected successfully"}
