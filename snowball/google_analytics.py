#!/usr/bin/env python3
"""
Google Analytics 4 and Search Console client

Tokens live on the user document under `googleAnalytics`:
accessToken, refreshToken, tokenExpiresAt, propertyId, searchConsoleUrl, connectedAt.
Expired access tokens are refreshed before each report.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode, urlparse

import httpx
import structlog

from snowball import config, http_client
from snowball.database import db, to_object_id

logger = structlog.get_logger()

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
ANALYTICS_DATA_API = "https://analyticsdata.googleapis.com/v1beta"
ANALYTICS_ADMIN_API = "https://analyticsadmin.googleapis.com/v1beta"
SEARCH_CONSOLE_API = "https://www.googleapis.com/webmasters/v3"
SCOPES = [
    "https://www.googleapis.com/auth/analytics.readonly",
    "https://www.googleapis.com/auth/webmasters.readonly",
]
REPORT_DAYS = 28

COUNTRY_NAMES = {
    "usa": "United States",
    "gbr": "United Kingdom",
    "can": "Canada",
    "aus": "Australia",
    "deu": "Germany",
    "fra": "France",
    "ind": "India",
    "chn": "China",
    "jpn": "Japan",
    "bra": "Brazil",
}

APPEARANCE_NAMES = {
    "AMP_BLUE_LINK": "AMP Results",
    "AMP_TOP_STORIES": "AMP Top Stories",
    "JOBS_DETAILS": "Job Listings",
    "JOBS_LISTING": "Job Search",
    "MERCHANT_LISTINGS": "Shopping Results",
    "ORGANIC": "Regular Results",
    "RICH_SNIPPET": "Rich Snippets",
    "TOP_STORIES": "Top Stories",
}

EMPTY_CONNECTION = {
    "accessToken": None,
    "refreshToken": None,
    "tokenExpiresAt": None,
    "propertyId": None,
    "searchConsoleUrl": None,
    "connectedAt": None,
}


class GoogleAPIError(Exception):
    """A Google API call failed or the account is not set up for it"""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# OAuth
# =============================================================================

def build_auth_url(state: str) -> str:
    params = {
        "client_id": config.GOOGLE_CLIENT_ID,
        "redirect_uri": config.GOOGLE_REDIRECT_URI,
        "response_type": "code",
        "scope": " ".join(SCOPES),
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
        "state": state,
    }
    return f"{AUTH_URL}?{urlencode(params)}"


def _token_expiry(token: Dict[str, Any]) -> datetime:
    return datetime.utcnow() + timedelta(seconds=int(token.get("expires_in") or 3600))


async def _token_request(data: Dict[str, str]) -> Dict[str, Any]:
    async with http_client.async_client() as client:
        response = await client.post(TOKEN_URL, data={
            "client_id": config.GOOGLE_CLIENT_ID,
            "client_secret": config.GOOGLE_CLIENT_SECRET,
            **data,
        })
    if response.status_code >= 400:
        raise GoogleAPIError(f"Google token request failed: {_error_message(response)}", response.status_code)
    return response.json()


async def exchange_code(code: str) -> Dict[str, Any]:
    """Swap an authorization code for tokens in the shape stored on the user"""
    token = await _token_request({
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": config.GOOGLE_REDIRECT_URI,
    })
    return {
        "accessToken": token["access_token"],
        "refreshToken": token.get("refresh_token"),
        "tokenExpiresAt": _token_expiry(token),
        "connectedAt": datetime.utcnow(),
    }


async def refresh_access_token(user_id: str, connection: Dict[str, Any]) -> Dict[str, Any]:
    try:
        token = await _token_request({
            "refresh_token": connection["refreshToken"],
            "grant_type": "refresh_token",
        })
    except GoogleAPIError as e:
        logger.error("google_token_refresh_failed", user_id=user_id, error=str(e))
        raise GoogleAPIError("Failed to refresh Google Analytics token", 401)

    updates = {
        "googleAnalytics.accessToken": token["access_token"],
        "googleAnalytics.tokenExpiresAt": _token_expiry(token),
    }
    if token.get("refresh_token"):
        updates["googleAnalytics.refreshToken"] = token["refresh_token"]
    db.users.update_one({"_id": to_object_id(user_id, "user")}, {"$set": updates})
    logger.info("google_token_refreshed", user_id=user_id)
    return {
        **connection,
        "accessToken": token["access_token"],
        "refreshToken": token.get("refresh_token") or connection["refreshToken"],
        "tokenExpiresAt": updates["googleAnalytics.tokenExpiresAt"],
    }


def get_connection(user_id: str) -> Dict[str, Any]:
    user = db.users.find_one({"_id": to_object_id(user_id, "user")}, {"googleAnalytics": 1})
    return (user or {}).get("googleAnalytics") or dict(EMPTY_CONNECTION)


async def authorized_connection(user_id: str) -> Dict[str, Any]:
    """The user's connection with a usable access token"""
    connection = get_connection(user_id)
    if not connection.get("accessToken"):
        raise GoogleAPIError("Google Analytics not connected")

    expires_at = connection.get("tokenExpiresAt")
    if expires_at and datetime.utcnow() >= expires_at and connection.get("refreshToken"):
        connection = await refresh_access_token(user_id, connection)
    return connection


def save_connection(user_id: str, fields: Dict[str, Any]) -> None:
    db.users.update_one(
        {"_id": to_object_id(user_id, "user")},
        {"$set": {f"googleAnalytics.{key}": value for key, value in fields.items()}},
    )


def clear_connection(user_id: str) -> None:
    db.users.update_one({"_id": to_object_id(user_id, "user")}, {"$set": {"googleAnalytics": dict(EMPTY_CONNECTION)}})


# =============================================================================
# HTTP
# =============================================================================

def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or str(response.status_code)
    error = body.get("error")
    if isinstance(error, dict):
        return error.get("message") or str(response.status_code)
    return body.get("error_description") or error or str(response.status_code)


async def _google_request(method: str, url: str, access_token: str, **kwargs) -> Dict[str, Any]:
    async with http_client.async_client() as client:
        response = await client.request(
            method, url, headers={"Authorization": f"Bearer {access_token}"}, **kwargs
        )
    if response.status_code >= 400:
        raise GoogleAPIError(_error_message(response), response.status_code)
    return response.json()


def format_date(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%d")


def date_window(days: int = REPORT_DAYS, offset: int = 0) -> Dict[str, str]:
    end = datetime.utcnow() - timedelta(days=offset)
    return {"startDate": format_date(end - timedelta(days=days)), "endDate": format_date(end)}


async def run_report(access_token: str, property_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
    return await _google_request(
        "POST", f"{ANALYTICS_DATA_API}/properties/{property_id}:runReport", access_token, json=body
    )


async def search_analytics(access_token: str, site_url: str, body: Dict[str, Any]) -> Dict[str, Any]:
    return await _google_request(
        "POST",
        f"{SEARCH_CONSOLE_API}/sites/{quote(site_url, safe='')}/searchAnalytics/query",
        access_token,
        json=body,
    )


async def _search_console_report(user_id: str, body: Dict[str, Any], offset: int = 0) -> Dict[str, Any]:
    connection = await authorized_connection(user_id)
    if not connection.get("searchConsoleUrl"):
        raise GoogleAPIError("Search Console URL not configured")
    return await search_analytics(
        connection["accessToken"], connection["searchConsoleUrl"], {**date_window(offset=offset), **body}
    )


# =============================================================================
# Account listings
# =============================================================================

async def list_properties(user_id: str) -> List[Dict[str, Any]]:
    """GA4 properties across every account the user can see"""
    connection = await authorized_connection(user_id)
    data = await _google_request("GET", f"{ANALYTICS_ADMIN_API}/accountSummaries", connection["accessToken"])

    properties = []
    for account in data.get("accountSummaries") or []:
        account_id = (account.get("account") or "").split("/")[-1]
        for summary in account.get("propertySummaries") or []:
            properties.append({
                "id": summary.get("property", "").split("/")[-1],
                "displayName": summary.get("displayName"),
                "accountName": account.get("displayName"),
                "accountId": account_id,
            })
    return properties


async def list_search_console_sites(user_id: str) -> List[Dict[str, Any]]:
    connection = await authorized_connection(user_id)
    data = await _google_request("GET", f"{SEARCH_CONSOLE_API}/sites", connection["accessToken"])
    return [
        {"siteUrl": site.get("siteUrl"), "permissionLevel": site.get("permissionLevel")}
        for site in data.get("siteEntry") or []
    ]


# =============================================================================
# Formatting
# =============================================================================

def _metric(row: Dict[str, Any], index: int, cast=int):
    values = row.get("metricValues") or []
    if index >= len(values):
        return cast(0)
    return cast(float(values[index].get("value") or 0))


def format_analytics_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Totals and daily series from a GA4 report over [users, sessions, views, bounce, duration]"""
    rows = data.get("rows") or []
    if not rows:
        return {
            "totalUsers": 0,
            "totalSessions": 0,
            "totalPageViews": 0,
            "bounceRate": 0,
            "avgSessionDuration": 0,
            "dailyData": [],
        }

    return {
        "totalUsers": sum(_metric(r, 0) for r in rows),
        "totalSessions": sum(_metric(r, 1) for r in rows),
        "totalPageViews": sum(_metric(r, 2) for r in rows),
        "bounceRate": sum(_metric(r, 3, float) for r in rows) / len(rows),
        "avgSessionDuration": sum(_metric(r, 4, float) for r in rows) / len(rows),
        "dailyData": [
            {
                "date": ((r.get("dimensionValues") or [{}])[0]).get("value"),
                "users": _metric(r, 0),
                "sessions": _metric(r, 1),
                "pageViews": _metric(r, 2),
            }
            for r in rows
        ],
    }


def format_search_console_data(data: Dict[str, Any]) -> Dict[str, Any]:
    rows = data.get("rows") or []
    if not rows:
        return {"totalClicks": 0, "totalImpressions": 0, "avgCTR": 0, "avgPosition": 0, "dailyData": []}

    return {
        "totalClicks": sum(r.get("clicks", 0) for r in rows),
        "totalImpressions": sum(r.get("impressions", 0) for r in rows),
        "avgCTR": sum(r.get("ctr", 0) for r in rows) / len(rows),
        "avgPosition": sum(r.get("position", 0) for r in rows) / len(rows),
        "dailyData": [
            {
                "date": (r.get("keys") or [None])[0],
                "clicks": r.get("clicks", 0),
                "impressions": r.get("impressions", 0),
                "ctr": r.get("ctr", 0),
                "position": r.get("position", 0),
            }
            for r in rows
        ],
    }


def _row_stats(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "clicks": row.get("clicks", 0),
        "impressions": row.get("impressions", 0),
        "ctr": row.get("ctr", 0),
        "avgPosition": row.get("position", 0),
    }


def format_dimension_rows(data: Dict[str, Any], name: str) -> List[Dict[str, Any]]:
    """One entry per row keyed by the single report dimension"""
    return [{name: row["keys"][0], **_row_stats(row)} for row in data.get("rows") or []]


def format_country_data(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [
        {
            "country": COUNTRY_NAMES.get(row["keys"][0], row["keys"][0].upper()),
            "countryCode": row["keys"][0],
            **_row_stats(row),
        }
        for row in data.get("rows") or []
    ]


def format_keyword_trends(data: Dict[str, Any], limit: int = 10) -> List[Dict[str, Any]]:
    trends: Dict[str, Dict[str, Any]] = {}
    for row in data.get("rows") or []:
        date, query = row["keys"][0], row["keys"][1]
        trend = trends.setdefault(query, {"query": query, "totalClicks": 0, "totalImpressions": 0, "dailyData": []})
        trend["totalClicks"] += row.get("clicks", 0)
        trend["totalImpressions"] += row.get("impressions", 0)
        trend["dailyData"].append({
            "date": date,
            "clicks": row.get("clicks", 0),
            "impressions": row.get("impressions", 0),
            "ctr": row.get("ctr", 0),
            "position": row.get("position", 0),
        })
    return sorted(trends.values(), key=lambda t: t["totalClicks"], reverse=True)[:limit]


def percent_change(current: float, previous: float) -> float:
    if not previous:
        return 0
    return (current - previous) / previous * 100


def format_comparison(current_data: Dict[str, Any], previous_data: Dict[str, Any]) -> Dict[str, Any]:
    current = format_search_console_data(current_data)
    previous = format_search_console_data(previous_data)
    return {
        "current": current,
        "previous": previous,
        "growth": {
            "clicks": percent_change(current["totalClicks"], previous["totalClicks"]),
            "impressions": percent_change(current["totalImpressions"], previous["totalImpressions"]),
            "ctr": percent_change(current["avgCTR"], previous["avgCTR"]),
            # lower position is better
            "position": -percent_change(current["avgPosition"], previous["avgPosition"]),
        },
    }


def low_hanging_fruit(data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Queries ranking 4-10 with at least 10 impressions"""
    return [
        {"query": row["keys"][0], **_row_stats(row), "opportunity": "Position 4-10 with good impressions"}
        for row in data.get("rows") or []
        if 4 <= row.get("position", 0) <= 10 and row.get("impressions", 0) >= 10
    ]


# =============================================================================
# Reports
# =============================================================================

async def get_analytics_data(user_id: str) -> Dict[str, Any]:
    connection = await authorized_connection(user_id)
    if not connection.get("propertyId"):
        raise GoogleAPIError("Analytics property not configured")
    data = await run_report(connection["accessToken"], connection["propertyId"], {
        "dateRanges": [{"startDate": f"{REPORT_DAYS}daysAgo", "endDate": "today"}],
        "metrics": [
            {"name": "activeUsers"},
            {"name": "sessions"},
            {"name": "screenPageViews"},
            {"name": "bounceRate"},
            {"name": "averageSessionDuration"},
        ],
        "dimensions": [{"name": "date"}],
    })
    return format_analytics_data(data)


async def get_search_console_data(user_id: str) -> Dict[str, Any]:
    data = await _search_console_report(user_id, {"dimensions": ["date"], "aggregationType": "byProperty"})
    return format_search_console_data(data)


async def get_dimension_report(user_id: str, dimension: str, row_limit: int = 10) -> Dict[str, Any]:
    return await _search_console_report(user_id, {"dimensions": [dimension], "rowLimit": row_limit})


async def get_top_pages(user_id: str) -> List[Dict[str, Any]]:
    return format_dimension_rows(await get_dimension_report(user_id, "page"), "page")


async def get_top_queries(user_id: str) -> List[Dict[str, Any]]:
    return format_dimension_rows(await get_dimension_report(user_id, "query"), "query")


async def get_traffic_by_country(user_id: str) -> List[Dict[str, Any]]:
    return format_country_data(await get_dimension_report(user_id, "country"))


async def get_device_breakdown(user_id: str) -> List[Dict[str, Any]]:
    return format_dimension_rows(await get_dimension_report(user_id, "device"), "device")


async def get_search_appearance(user_id: str) -> List[Dict[str, Any]]:
    rows = format_dimension_rows(await get_dimension_report(user_id, "searchAppearance", 20), "appearanceType")
    for row in rows:
        row["appearanceType"] = APPEARANCE_NAMES.get(row["appearanceType"], row["appearanceType"])
    return rows


async def get_query_page_matrix(user_id: str) -> List[Dict[str, Any]]:
    data = await _search_console_report(user_id, {"dimensions": ["query", "page"], "rowLimit": 50})
    return [
        {"query": row["keys"][0], "page": row["keys"][1], **_row_stats(row)}
        for row in data.get("rows") or []
    ]


async def get_keyword_trends(user_id: str) -> List[Dict[str, Any]]:
    data = await _search_console_report(user_id, {"dimensions": ["date", "query"], "rowLimit": 100})
    return format_keyword_trends(data)


async def get_performance_comparison(user_id: str) -> Dict[str, Any]:
    current = await _search_console_report(user_id, {"dimensions": ["date"]})
    previous = await _search_console_report(user_id, {"dimensions": ["date"]}, offset=REPORT_DAYS)
    return format_comparison(current, previous)


async def get_low_hanging_fruit(user_id: str) -> List[Dict[str, Any]]:
    data = await _search_console_report(user_id, {
        "dimensions": ["query"],
        "dimensionFilterGroups": [{
            "filters": [{"dimension": "query", "operator": "notContains", "expression": "(not set)"}]
        }],
        "rowLimit": 50,
    })
    return low_hanging_fruit(data)


async def get_blog_performance(user_id: str, blog_urls: List[str]) -> List[Dict[str, Any]]:
    """Per-URL GA4 and Search Console numbers for published posts"""
    if not blog_urls:
        return []
    connection = await authorized_connection(user_id)
    if not connection.get("propertyId") or not connection.get("searchConsoleUrl"):
        raise GoogleAPIError("Analytics not fully configured")

    results = []
    for url in blog_urls:
        path = urlparse(url).path or "/"
        try:
            ga = await run_report(connection["accessToken"], connection["propertyId"], {
                "dateRanges": [{"startDate": f"{REPORT_DAYS}daysAgo", "endDate": "today"}],
                "metrics": [{"name": "screenPageViews"}, {"name": "activeUsers"}, {"name": "averageSessionDuration"}],
                "dimensionFilter": {
                    "filter": {"fieldName": "pagePath", "stringFilter": {"value": path, "matchType": "CONTAINS"}}
                },
            })
            gsc = await search_analytics(connection["accessToken"], connection["searchConsoleUrl"], {
                **date_window(),
                "dimensions": ["page"],
                "dimensionFilterGroups": [{
                    "filters": [{"dimension": "page", "operator": "contains", "expression": path}]
                }],
            })
        except (GoogleAPIError, httpx.HTTPError) as e:
            logger.warning("blog_performance_failed", url=url, error=str(e))
            results.append({"url": url, "error": str(e)})
            continue

        rows = ga.get("rows") or []
        results.append({
            "url": url,
            "analytics": {
                "pageViews": sum(_metric(r, 0) for r in rows),
                "users": sum(_metric(r, 1) for r in rows),
                "avgSessionDuration": (sum(_metric(r, 2, float) for r in rows) / len(rows)) if rows else 0,
            },
            "searchConsole": format_search_console_data(gsc),
        })
    return results
