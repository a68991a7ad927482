"""
Blog banner images from Unsplash.

Banner lookup never fails a blog: any error is logged and the post is created
without an image.
"""

import re
from html import escape
from typing import Any, Dict, List, Optional, Union

import httpx
import structlog

from snowball import config, http_client

logger = structlog.get_logger()

UNSPLASH_API_URL = "https://api.unsplash.com"
FALLBACK_TERMS = "business professional modern"
MAX_QUERY_LENGTH = 100

COMMON_WORDS = {
    "how", "to", "the", "a", "an", "and", "or", "but", "in", "on", "at", "for", "with", "by",
    "your", "you", "best", "top", "guide", "tips", "strategies", "ways", "ultimate", "complete",
}


def is_configured() -> bool:
    return bool(config.UNSPLASH_ACCESS_KEY) and config.UNSPLASH_ACCESS_KEY != "your_unsplash_access_key_here"


def extract_search_terms(title: str, keywords: Union[str, List[str], None] = "") -> str:
    if isinstance(keywords, list):
        keywords = " ".join(keywords)
    text = f"{title or ''} {keywords or ''}".lower()
    words = [
        word for word in re.sub(r"[^\w\s]", " ", text).split()
        if len(word) > 2 and word not in COMMON_WORDS
    ][:3]
    if not words:
        return FALLBACK_TERMS
    return (" ".join(words) + " business professional")[:MAX_QUERY_LENGTH]


def _auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Client-ID {config.UNSPLASH_ACCESS_KEY}", "Accept-Version": "v1"}


async def track_download(client: httpx.AsyncClient, download_location: Optional[str]) -> None:
    """Unsplash requires a ping to the download endpoint for every used photo"""
    if not download_location:
        return
    try:
        await client.get(download_location, headers=_auth_headers())
    except httpx.HTTPError as e:
        logger.warning("unsplash_download_tracking_failed", error=str(e))


async def search_banner(title: str, keywords: Union[str, List[str], None] = "") -> Optional[Dict[str, Any]]:
    """
    Pick the most relevant landscape photo for a blog title.
    Returns {url, bannerData} or None when nothing suitable was found.
    """
    if not is_configured():
        logger.info("unsplash_not_configured")
        return None

    query = extract_search_terms(title, keywords)
    try:
        async with http_client.async_client() as client:
            response = await client.get(
                f"{UNSPLASH_API_URL}/search/photos",
                params={
                    "query": query,
                    "per_page": 5,
                    "orientation": "landscape",
                    "content_filter": "high",
                    "order_by": "relevant",
                },
                headers=_auth_headers(),
            )
            response.raise_for_status()
            results = response.json().get("results") or []
            if not results:
                logger.info("unsplash_no_results", query=query)
                return None

            photo = results[0]
            await track_download(client, (photo.get("links") or {}).get("download_location"))
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("unsplash_search_failed", query=query, error=str(e))
        return None

    user = photo.get("user") or {}
    banner_data = {
        "id": photo.get("id"),
        "photographer": user.get("name"),
        "photographerUrl": (user.get("links") or {}).get("html"),
        "unsplashUrl": (photo.get("links") or {}).get("html"),
        "altText": photo.get("alt_description") or photo.get("description") or f"Banner image for {title}",
        "width": photo.get("width"),
        "height": photo.get("height"),
    }
    return {"url": (photo.get("urls") or {}).get("regular"), "bannerData": banner_data}


def banner_html(banner_url: Optional[str], banner_data: Optional[Dict[str, Any]]) -> str:
    """Banner image with Unsplash attribution, placed above the blog body"""
    if not banner_url or not banner_data:
        return ""
    photographer_url = f"{banner_data.get('photographerUrl')}?utm_source=snowball&utm_medium=referral"
    unsplash_url = f"{banner_data.get('unsplashUrl')}?utm_source=snowball&utm_medium=referral"
    return (
        '<div class="blog-banner">'
        f'<img src="{escape(banner_url)}" alt="{escape(banner_data.get("altText") or "")}" />'
        f'<p><em>Photo by <a href="{escape(photographer_url)}">{escape(banner_data.get("photographer") or "")}</a>'
        f' on <a href="{escape(unsplash_url)}">Unsplash</a></em></p>'
        "</div>"
    )
