"""
Keyword research backed by the DataForSEO Labs API.

Ranked keywords for a domain are filtered by search volume and difficulty and
grouped for the content-calendar prompt. When the API is unavailable a small
set of template keywords keeps calendar generation working.
"""

from typing import Any, Dict, Iterable, List, Optional, Union

import httpx
import structlog

from snowball import config, http_client

logger = structlog.get_logger()

SUCCESS_STATUS = 20000
LOCATION_CODE_USA = 2840
LANGUAGE_CODE = "en"
MAX_LIMIT = 100

RANKED_MIN_VOLUME = 100
RANKED_MAX_DIFFICULTY = 70
SUGGESTION_MIN_VOLUME = 50
COMPREHENSIVE_LIMIT = 50
COMPREHENSIVE_TOP = 30
FALLBACK_LIMIT = 15
GROUP_SIZE = 5


class DataForSEOError(Exception):
    """DataForSEO call failed or answered with a non-success status code"""


def _credentials_configured() -> bool:
    return bool(config.DATAFORSEO_LOGIN and config.DATAFORSEO_PASSWORD)


async def make_request(endpoint: str, data: Optional[list] = None) -> dict:
    """POST (or GET without a body) to DataForSEO; success only on status_code 20000"""
    url = f"{config.DATAFORSEO_API_URL.rstrip('/')}{endpoint}"
    auth = httpx.BasicAuth(config.DATAFORSEO_LOGIN or "", config.DATAFORSEO_PASSWORD or "")
    logger.info("dataforseo_request", endpoint=endpoint)
    try:
        async with http_client.async_client(auth=auth) as client:
            if data is not None:
                response = await client.post(url, json=data)
            else:
                response = await client.get(url)
            payload = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise DataForSEOError(f"DataForSEO API Error: {e}") from e

    if payload.get("status_code") != SUCCESS_STATUS:
        raise DataForSEOError(f"DataForSEO API Error: {payload.get('status_message') or 'Unknown error'}")
    return payload


def extract_domain_from_url(url: Optional[str]) -> Optional[str]:
    """https://www.example.com/path -> example.com"""
    if not url:
        return None
    domain = url.split("://", 1)[1] if "://" in url else url
    domain = domain.split("/")[0].replace("www.", "")
    return domain or None


def _first_result(payload: dict) -> Optional[dict]:
    tasks = payload.get("tasks") or []
    if not tasks:
        return None
    results = tasks[0].get("result") or []
    return results[0] if results else None


def _keyword_entry(keyword: str, info: dict) -> Dict[str, Any]:
    return {
        "keyword": keyword or "Unknown",
        "searchVolume": info.get("search_volume") or 0,
        "difficulty": info.get("keyword_difficulty") or 0,
        "cpc": info.get("cpc") or 0,
        "competition": info.get("competition") or 0,
        "source": "dataforseo",
    }


async def get_ranked_keywords(domain: str, limit: int = COMPREHENSIVE_LIMIT) -> Dict[str, Any]:
    """
    Keywords the domain ranks for in the US, kept when volume >= 100 and
    difficulty <= 70, highest volume first.
    """
    clean_domain = extract_domain_from_url(domain)
    try:
        if not _credentials_configured():
            raise DataForSEOError("DataForSEO credentials not configured")
        if not clean_domain:
            raise DataForSEOError("Invalid domain provided")

        payload = await make_request(
            "/v3/dataforseo_labs/google/ranked_keywords/live",
            [{
                "target": clean_domain,
                "location_code": LOCATION_CODE_USA,
                "language_code": LANGUAGE_CODE,
                "limit": min(limit, MAX_LIMIT),
                "offset": 0,
            }],
        )
    except DataForSEOError as e:
        logger.warning("ranked_keywords_failed", domain=domain, error=str(e))
        return {"success": False, "domain": clean_domain or domain, "keywords": [], "error": str(e)}

    result = _first_result(payload)
    items = (result or {}).get("items") or []
    if not items:
        return {"success": False, "domain": clean_domain, "keywords": [], "error": "No keywords found"}

    keywords = []
    for item in items:
        keyword_data = item.get("keyword_data") or {}
        keywords.append(_keyword_entry(keyword_data.get("keyword"), keyword_data.get("keyword_info") or {}))
    keywords = [
        kw for kw in keywords
        if kw["searchVolume"] >= RANKED_MIN_VOLUME and kw["difficulty"] <= RANKED_MAX_DIFFICULTY
    ]
    keywords.sort(key=lambda kw: kw["searchVolume"], reverse=True)

    logger.info("ranked_keywords_found", domain=clean_domain, raw=len(items), kept=len(keywords))
    return {"success": True, "domain": clean_domain, "keywords": keywords, "totalKeywords": len(keywords)}


async def get_keyword_suggestions(seed: str, limit: int = 30) -> Dict[str, Any]:
    try:
        if not _credentials_configured():
            raise DataForSEOError("DataForSEO credentials not configured")
        payload = await make_request(
            "/v3/dataforseo_labs/google/keyword_suggestions/live",
            [{
                "keyword": seed,
                "location_code": LOCATION_CODE_USA,
                "language_code": LANGUAGE_CODE,
                "limit": min(limit, MAX_LIMIT),
                "offset": 0,
                "filters": [["search_volume", ">=", SUGGESTION_MIN_VOLUME]],
                "order_by": ["search_volume,desc"],
            }],
        )
    except DataForSEOError as e:
        logger.warning("keyword_suggestions_failed", seed=seed, error=str(e))
        return {"success": False, "seedKeyword": seed, "suggestions": [], "error": str(e)}

    tasks = payload.get("tasks") or []
    results = (tasks[0].get("result") if tasks else None) or []
    if not results:
        return {"success": False, "seedKeyword": seed, "suggestions": [], "error": "No suggestions found"}

    suggestions = [_keyword_entry(s.get("keyword"), s) for s in results]
    return {
        "success": True,
        "seedKeyword": seed,
        "suggestions": suggestions,
        "totalSuggestions": len(suggestions),
    }


def _category_terms(categories: Iterable[Union[str, dict]]) -> List[str]:
    terms = []
    for category in categories or []:
        name = category if isinstance(category, str) else (category or {}).get("categoryName")
        if name:
            terms.append(name.lower())
    return terms


def filter_keywords_by_relevance(
    keywords: List[Dict[str, Any]],
    categories: Optional[Iterable[Union[str, dict]]] = None,
    min_search_volume: int = 100,
    max_difficulty: int = 60,
) -> List[Dict[str, Any]]:
    """
    Drop keywords below the volume floor or above the difficulty ceiling.

    A keyword is relevant when it contains a category term, or a category term
    contains its first word. The relevant subset replaces the list only when it
    is non-empty.
    """
    filtered = [
        kw for kw in keywords
        if kw.get("searchVolume", 0) >= min_search_volume and kw.get("difficulty", 0) <= max_difficulty
    ]

    terms = _category_terms(categories)
    if terms:
        relevant = []
        for kw in filtered:
            keyword = kw["keyword"].lower()
            first_word = keyword.split(" ")[0]
            if any(term in keyword or first_word in term for term in terms):
                relevant.append(kw)
        if relevant:
            filtered = relevant

    return sorted(filtered, key=lambda kw: kw.get("searchVolume", 0), reverse=True)


def format_keywords_for_content_generation(keywords: List[Dict[str, Any]], limit: int = 20) -> Dict[str, Any]:
    top = keywords[:limit]
    return {
        "primary": top[:GROUP_SIZE],
        "highVolume": [kw for kw in top if kw["searchVolume"] > 1000][:GROUP_SIZE],
        "mediumVolume": [kw for kw in top if 500 <= kw["searchVolume"] <= 1000][:GROUP_SIZE],
        "longTail": [kw for kw in top if len(kw["keyword"].split(" ")) >= 3][:GROUP_SIZE],
        "lowCompetition": [kw for kw in top if kw["difficulty"] < 30][:GROUP_SIZE],
        "keywordString": ", ".join(f"{kw['keyword']} ({kw['searchVolume']} searches)" for kw in top),
        "totalKeywords": len(top),
        "averageSearchVolume": round(sum(kw["searchVolume"] for kw in top) / len(top)) if top else 0,
    }


def fallback_keywords(domain: str, categories: Optional[Iterable[Union[str, dict]]] = None) -> Dict[str, Any]:
    base_name = (extract_domain_from_url(domain) or domain).split(".")[0]
    templates = [
        (f"{base_name} guide", 500, 30),
        (f"{base_name} tips", 400, 25),
        (f"how to use {base_name}", 300, 20),
        (f"{base_name} best practices", 250, 35),
        (f"{base_name} tutorial", 200, 30),
    ]
    for category in categories or []:
        name = category if isinstance(category, str) else (category or {}).get("categoryName")
        if name:
            templates.append((f"{name} guide", 300, 25))
            templates.append((f"best {name}", 250, 30))

    keywords = [
        {"keyword": keyword, "searchVolume": volume, "difficulty": difficulty, "source": "fallback"}
        for keyword, volume, difficulty in templates
    ]
    return {
        "success": True,
        "domain": domain,
        "keywords": keywords[:FALLBACK_LIMIT],
        "source": "fallback",
        "metadata": {
            "note": "Generated fallback keywords due to API unavailability",
            "totalFound": len(keywords),
        },
    }


async def get_comprehensive_keywords(
    domain: str,
    categories: Optional[Iterable[Union[str, dict]]] = None,
) -> Dict[str, Any]:
    """Top 30 relevant ranked keywords for the domain, or the fallback set"""
    categories = list(categories or [])
    ranked = await get_ranked_keywords(domain, COMPREHENSIVE_LIMIT)
    if not ranked["success"] or not ranked["keywords"]:
        logger.info("keyword_research_fallback", domain=domain)
        return fallback_keywords(domain, categories)

    filtered = filter_keywords_by_relevance(
        ranked["keywords"], categories, RANKED_MIN_VOLUME, RANKED_MAX_DIFFICULTY
    )
    final = filtered[:COMPREHENSIVE_TOP]
    if not final:
        return fallback_keywords(domain, categories)

    logger.info("keyword_research_completed", domain=domain, keywords=len(final))
    return {
        "success": True,
        "domain": domain,
        "keywords": final,
        "source": "dataforseo",
        "metadata": {
            "totalFound": len(ranked["keywords"]),
            "afterFiltering": len(filtered),
            "finalCount": len(final),
            "averageSearchVolume": round(sum(kw["searchVolume"] for kw in final) / len(final)),
        },
    }
