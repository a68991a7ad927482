#!/usr/bin/env python3
"""
Content Calendar API - Keyword-driven blog plans, outlines, drafts and publishing
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from snowball import keyword_research, llm, unsplash
from snowball.auth import require_user_id
from snowball.auto_publisher import auto_publisher
from snowball.cms_integration import SUPPORTED_PLATFORMS
from snowball.database import db, to_object_id
from snowball.role_helpers import require_superuser

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/content-calendar", tags=["content-calendar"])

STATUSES = ("draft", "approved", "published", "failed")
DEFAULT_PLATFORM = "wordpress"
DEFAULT_DAYS = 7
MAX_DAYS = 31
UPDATABLE_FIELDS = (
    "title", "description", "keywords", "targetAudience", "content",
    "outline", "status", "cmsPlatform", "companyName",
)


# Pydantic Models
class GenerateRequest(BaseModel):
    companyName: str
    domain: Optional[str] = None
    categories: List[str] = []
    startDate: Optional[str] = None
    days: int = DEFAULT_DAYS


class CalendarItem(BaseModel):
    date: str
    title: str
    description: str
    keywords: List[str] = []
    targetAudience: str = "General Audience"
    sourceKeywords: List[Dict[str, Any]] = []
    keywordResearchData: Optional[Dict[str, Any]] = None


class ApproveRequest(BaseModel):
    companyName: str
    calendar: List[CalendarItem]
    cmsPlatform: Optional[str] = None


class EntryRequest(CalendarItem):
    companyName: str
    cmsPlatform: Optional[str] = None
    status: str = "draft"


class UpdateEntryRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None
    keywords: Optional[List[str]] = None
    targetAudience: Optional[str] = None
    content: Optional[str] = None
    outline: Optional[str] = None
    status: Optional[str] = None
    cmsPlatform: Optional[str] = None
    companyName: Optional[str] = None


class FixPlatformRequest(BaseModel):
    fromPlatform: Optional[str] = None
    toPlatform: Optional[str] = None


# Helper functions
def entry_helper(entry) -> dict:
    """Convert MongoDB calendar entry to dict"""
    return {
        "_id": str(entry["_id"]),
        "userId": entry.get("userId"),
        "companyName": entry.get("companyName"),
        "date": entry.get("date"),
        "title": entry.get("title"),
        "description": entry.get("description"),
        "keywords": entry.get("keywords", []),
        "targetAudience": entry.get("targetAudience"),
        "content": entry.get("content", ""),
        "outline": entry.get("outline", ""),
        "status": entry.get("status", "draft"),
        "cmsPlatform": entry.get("cmsPlatform", DEFAULT_PLATFORM),
        "publishedAt": entry.get("publishedAt"),
        "publishedUrl": entry.get("publishedUrl"),
        "cmsPostId": entry.get("cmsPostId"),
        "bannerUrl": entry.get("bannerUrl"),
        "bannerData": entry.get("bannerData"),
        "sourceKeywords": entry.get("sourceKeywords", []),
        "keywordResearchData": entry.get("keywordResearchData"),
        "error": entry.get("error"),
        "createdAt": entry.get("createdAt"),
        "updatedAt": entry.get("updatedAt"),
    }


def parse_date(value: Optional[str]) -> datetime:
    """Calendar dates are stored as UTC midnight"""
    if not value:
        raise HTTPException(status_code=400, detail="Date is required")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00")[:10])
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid date: {value}")
    return parsed.replace(hour=0, minute=0, second=0, microsecond=0)


def validate_platform(platform: Optional[str]) -> str:
    platform = platform or DEFAULT_PLATFORM
    if platform not in SUPPORTED_PLATFORMS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported platform. Use one of: {', '.join(SUPPORTED_PLATFORMS)}",
        )
    return platform


def validate_status(status: str) -> str:
    if status not in STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status. Use one of: {', '.join(STATUSES)}")
    return status


def verify_entry_access(entry_id: str, user_id: str) -> dict:
    entry = db.content_calendar.find_one({"_id": to_object_id(entry_id, "content")})
    if not entry:
        raise HTTPException(status_code=404, detail="Content not found")
    if entry.get("userId") != user_id:
        raise HTTPException(status_code=403, detail="Access denied to this content")
    return entry


def latest_brand(user_id: str, company_name: str) -> Optional[dict]:
    """The user's brand matching the company name, else their most recent one"""
    query = {"ownerUserId": user_id, "isAdminAnalysis": {"$ne": True}}
    brand = db.brand_profiles.find_one({**query, "brandName": company_name})
    if brand:
        return brand
    return db.brand_profiles.find_one(query, sort=[("updated_at", -1)])


def match_source_keywords(keywords: List[str], researched: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Researched keywords that an entry's keywords mention, falling back to the top three"""
    lowered = [k.lower() for k in keywords]
    matched = [
        kw for kw in researched
        if any(kw["keyword"].lower() in k or k in kw["keyword"].lower() for k in lowered)
    ]
    return [
        {
            "keyword": kw["keyword"],
            "searchVolume": kw.get("searchVolume", 0),
            "difficulty": kw.get("difficulty", 0),
            "source": kw.get("source", "dataforseo"),
        }
        for kw in (matched or researched[:3])
    ]


def normalize_calendar(raw: Any, start: datetime, days: int) -> List[Dict[str, Any]]:
    """Turn the model's answer into dated draft entries, one per day"""
    if isinstance(raw, dict):
        raw = raw.get("calendar") or raw.get("entries") or []
    if not isinstance(raw, list):
        raise llm.LLMResponseError("Calendar response is not a list")

    entries = []
    for item in raw:
        if not isinstance(item, dict) or not item.get("title"):
            continue
        keywords = item.get("keywords") or []
        if isinstance(keywords, str):
            keywords = [k.strip() for k in keywords.split(",") if k.strip()]
        entries.append({
            "date": (start + timedelta(days=len(entries))).strftime("%Y-%m-%d"),
            "title": str(item["title"]).strip(),
            "description": str(item.get("description") or "").strip(),
            "keywords": keywords,
            "targetAudience": item.get("targetAudience") or "General Audience",
        })
        if len(entries) == days:
            break
    return entries


def build_calendar_prompt(company_name: str, domain: Optional[str], categories: List[str],
                          keyword_data: Dict[str, Any], days: int) -> str:
    return f"""Create a {days}-day blog content calendar for {company_name}{f" ({domain})" if domain else ""}.

Business categories: {", ".join(categories) or "general"}

SEO keywords with monthly search volume:
{keyword_data.get("keywordString") or "none available"}

Each post should target one or two of these keywords naturally, address a real question
the audience has, and avoid repeating topics.

Return JSON: {{"calendar": [{{"title": "...", "description": "2-3 sentence summary",
"keywords": ["keyword", "keyword"], "targetAudience": "..."}}]}} with exactly {days} items."""


async def generate_calendar(user_id: str, body: GenerateRequest) -> Dict[str, Any]:
    days = max(1, min(body.days, MAX_DAYS))
    start = parse_date(body.startDate) if body.startDate else datetime.utcnow().replace(
        hour=0, minute=0, second=0, microsecond=0
    ) + timedelta(days=1)

    domain, categories = body.domain, list(body.categories)
    brand = latest_brand(user_id, body.companyName) if not domain or not categories else None
    if brand:
        domain = domain or brand.get("domain")
        if not categories:
            categories = [
                c["categoryName"] for c in db.brand_categories.find({"brandId": str(brand["_id"])})
            ]

    research: Dict[str, Any] = {"keywords": [], "source": "none"}
    if domain:
        research = await keyword_research.get_comprehensive_keywords(domain, categories)
    keyword_data = keyword_research.format_keywords_for_content_generation(research["keywords"])

    answer = await llm.complete(
        build_calendar_prompt(body.companyName, domain, categories, keyword_data, days),
        system="You are an SEO content strategist. Respond with JSON only.",
        max_tokens=4000,
        temperature=0.7,
        json_mode=True,
    )
    entries = normalize_calendar(llm.parse_json(answer), start, days)

    research_data = {
        "domain": domain,
        "researchDate": datetime.utcnow(),
        "totalKeywordsFound": len(research["keywords"]),
        "averageSearchVolume": keyword_data["averageSearchVolume"],
        "keywordSource": research.get("source", "none"),
    }
    for entry in entries:
        entry["sourceKeywords"] = match_source_keywords(entry["keywords"], research["keywords"])
        entry["keywordResearchData"] = research_data

    logger.info("content_calendar_generated", user_id=user_id, entries=len(entries), keyword_source=research_data["keywordSource"])
    return {"calendar": entries, "keywordResearch": {**research_data, "keywords": research["keywords"]}}


def new_entry(user_id: str, company_name: str, item: CalendarItem, status: str, platform: str) -> dict:
    now = datetime.utcnow()
    return {
        "userId": user_id,
        "companyName": company_name,
        "date": parse_date(item.date),
        "title": item.title,
        "description": item.description,
        "keywords": item.keywords,
        "targetAudience": item.targetAudience,
        "content": "",
        "outline": "",
        "status": status,
        "cmsPlatform": platform,
        "publishedAt": None,
        "publishedUrl": None,
        "bannerUrl": None,
        "bannerData": None,
        "sourceKeywords": item.sourceKeywords,
        "keywordResearchData": item.keywordResearchData,
        "createdAt": now,
        "updatedAt": now,
    }


# Routes

@router.post("/generate")
async def generate(body: GenerateRequest, request: Request):
    """Draft a calendar from keyword research. Nothing is saved until /approve."""
    user_id = require_user_id(request)
    if not body.companyName.strip():
        raise HTTPException(status_code=400, detail="Company name is required")
    try:
        result = await generate_calendar(user_id, body)
        return {"success": True, **result}
    except HTTPException:
        raise
    except llm.LLMResponseError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.exception("content_calendar_generation_failed", user_id=user_id)
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/approve")
async def approve(body: ApproveRequest, request: Request):
    user_id = require_user_id(request)
    if not body.calendar:
        raise HTTPException(status_code=400, detail="Calendar entries are required")
    platform = validate_platform(body.cmsPlatform)

    docs = [new_entry(user_id, body.companyName, item, "approved", platform) for item in body.calendar]
    result = db.content_calendar.insert_many(docs)
    for doc, inserted_id in zip(docs, result.inserted_ids):
        doc["_id"] = inserted_id
    logger.info("content_calendar_approved", user_id=user_id, entries=len(docs), platform=platform)
    return {"success": True, "calendar": [entry_helper(d) for d in docs]}


@router.get("/")
async def list_entries(request: Request, companyName: Optional[str] = None, status: Optional[str] = None):
    user_id = require_user_id(request)
    query: Dict[str, Any] = {"userId": user_id}
    if companyName:
        query["companyName"] = companyName
    if status:
        query["status"] = validate_status(status)
    entries = db.content_calendar.find(query).sort("date", 1)
    return {"success": True, "calendar": [entry_helper(e) for e in entries]}


@router.get("/stats")
async def publishing_stats(request: Request):
    user_id = require_user_id(request)
    return {"success": True, "stats": auto_publisher.get_publishing_stats(user_id)}


@router.post("/trigger-publish")
async def trigger_publish(request: Request):
    """Run today's auto-publishing pass now. It covers every user's entries, so it is superuser-only."""
    require_superuser(request)
    result = await auto_publisher.check_and_publish_content()
    return {"success": True, "message": "Auto-publishing triggered", "result": result}


@router.post("/retry-failed")
async def retry_failed(request: Request):
    user_id = require_user_id(request)
    result = await auto_publisher.retry_failed_publishing(user_id)
    return {"success": True, **result}


@router.post("/fix-platform")
async def fix_platform(body: FixPlatformRequest, request: Request):
    """Point unpublished entries at a platform the user is actually connected to"""
    user_id = require_user_id(request)
    to_platform = body.toPlatform
    if not to_platform:
        credentials = db.cms_credentials.find_one({"userId": user_id, "isActive": True})
        if not credentials:
            raise HTTPException(status_code=400, detail="No active CMS connection found")
        to_platform = credentials["platform"]
    to_platform = validate_platform(to_platform)

    query: Dict[str, Any] = {"userId": user_id, "status": {"$in": ["draft", "approved", "failed"]}}
    if body.fromPlatform:
        query["cmsPlatform"] = validate_platform(body.fromPlatform)
    result = db.content_calendar.update_many(
        query, {"$set": {"cmsPlatform": to_platform, "updatedAt": datetime.utcnow()}}
    )
    return {
        "success": True,
        "message": f"Updated {result.modified_count} entries to {to_platform}",
        "updatedCount": result.modified_count,
        "platform": to_platform,
    }


@router.post("/entry")
async def create_entry(body: EntryRequest, request: Request):
    user_id = require_user_id(request)
    if not body.title.strip() or not body.description.strip():
        raise HTTPException(status_code=400, detail="Title and description are required")
    doc = new_entry(
        user_id, body.companyName, body, validate_status(body.status), validate_platform(body.cmsPlatform)
    )
    doc["_id"] = db.content_calendar.insert_one(doc).inserted_id
    return {"success": True, "entry": entry_helper(doc)}


@router.get("/{entry_id}")
async def get_entry(entry_id: str, request: Request):
    user_id = require_user_id(request)
    return {"success": True, "entry": entry_helper(verify_entry_access(entry_id, user_id))}


@router.put("/{entry_id}")
async def update_entry(entry_id: str, body: UpdateEntryRequest, request: Request):
    user_id = require_user_id(request)
    entry = verify_entry_access(entry_id, user_id)

    changes = {k: v for k, v in body.model_dump().items() if k in UPDATABLE_FIELDS and v is not None}
    if body.date is not None:
        changes["date"] = parse_date(body.date)
    if "status" in changes:
        validate_status(changes["status"])
    if "cmsPlatform" in changes:
        validate_platform(changes["cmsPlatform"])
    changes["updatedAt"] = datetime.utcnow()

    db.content_calendar.update_one({"_id": entry["_id"]}, {"$set": changes})
    return {"success": True, "entry": entry_helper({**entry, **changes})}


@router.delete("/{entry_id}")
async def delete_entry(entry_id: str, request: Request):
    user_id = require_user_id(request)
    entry = verify_entry_access(entry_id, user_id)
    db.content_calendar.delete_one({"_id": entry["_id"]})
    return {"success": True, "message": "Content deleted"}


@router.post("/{entry_id}/generate-outline")
async def generate_outline(entry_id: str, request: Request):
    user_id = require_user_id(request)
    entry = verify_entry_access(entry_id, user_id)
    prompt = f"""Write a detailed blog post outline in Markdown.

Title: {entry.get("title")}
Summary: {entry.get("description")}
Target audience: {entry.get("targetAudience")}
Keywords: {", ".join(entry.get("keywords") or [])}

Use H2 and H3 headings with two or three bullet points under each, an introduction and a conclusion."""
    try:
        outline = await llm.complete(prompt, max_tokens=1500, temperature=0.7)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("outline_generation_failed", entry_id=entry_id)
        raise HTTPException(status_code=500, detail=str(e))

    db.content_calendar.update_one(
        {"_id": entry["_id"]}, {"$set": {"outline": outline, "updatedAt": datetime.utcnow()}}
    )
    return {"success": True, "outline": outline}


@router.post("/{entry_id}/create-blog")
async def create_blog(entry_id: str, request: Request):
    """Write the full post from the outline and place a Unsplash banner above it"""
    user_id = require_user_id(request)
    entry = verify_entry_access(entry_id, user_id)
    keywords = entry.get("keywords") or []
    prompt = f"""Write a complete, SEO-optimised blog post in HTML (use <h2>, <h3>, <p>, <ul>, no <html> or <body>).

Title: {entry.get("title")}
Summary: {entry.get("description")}
Target audience: {entry.get("targetAudience")}
Keywords to use naturally: {", ".join(keywords)}

Outline:
{entry.get("outline") or "Write your own structure."}

Aim for 1200-1500 words."""
    try:
        body_html = llm.strip_code_fence(await llm.complete(prompt, max_tokens=4000, temperature=0.7))
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("blog_generation_failed", entry_id=entry_id)
        raise HTTPException(status_code=500, detail=str(e))

    banner = await unsplash.search_banner(entry.get("title") or "", keywords)
    changes: Dict[str, Any] = {"content": body_html, "updatedAt": datetime.utcnow()}
    if banner:
        changes["bannerUrl"] = banner["url"]
        changes["bannerData"] = banner["bannerData"]
        changes["content"] = unsplash.banner_html(banner["url"], banner["bannerData"]) + body_html

    db.content_calendar.update_one({"_id": entry["_id"]}, {"$set": changes})
    return {"success": True, "entry": entry_helper({**entry, **changes})}


@router.post("/{entry_id}/publish")
async def publish_entry(entry_id: str, request: Request):
    user_id = require_user_id(request)
    verify_entry_access(entry_id, user_id)
    result = await auto_publisher.publish_specific_content(entry_id, user_id)
    if not result["success"]:
        raise HTTPException(status_code=400, detail=result["error"])
    return result
