#!/usr/bin/env python3
"""
Brand analysis pipeline

domain -> overview -> categories -> competitors -> keywords -> prompts
       -> AI responses -> mentions -> share of voice

Every LLM step has a deterministic fallback so a flaky provider never leaves
onboarding without data.
"""

import asyncio
import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog

from snowball import llm
from snowball.database import db
from snowball.share_of_voice import (
    calculate_share_of_voice,
    extract_mentions,
    mention_counts_from_mentions,
    save_share_of_voice,
)

logger = structlog.get_logger()

CATEGORY_COUNT = 4
CATEGORY_PAD_SUFFIXES = ["Solutions", "Services", "Platform", "Tools"]
FALLBACK_CATEGORIES = [
    "Business Solutions",
    "Digital Services",
    "Technology Platform",
    "Professional Services",
]
MAX_COMPETITORS = 5
FALLBACK_COMPETITORS = ["Competitor A", "Competitor B", "Competitor C", "Competitor D", "Competitor E"]
KEYWORDS_PER_CATEGORY = 10
PROMPTS_PER_CATEGORY = 5

RESPONSE_MODEL = "gpt-4o-mini"
RESPONSE_MAX_TOKENS = 600
BATCH_SIZE = 5
BATCH_DELAY_SECONDS = 1.0

BRAND_MENTION_SUFFIX = (
    "\n\nIMPORTANT: In your response, make sure to explicitly mention the brand names "
    "that are referenced in the question. If the question asks about specific brands, "
    "include those brand names in your answer. Be specific and mention the actual brand "
    "names rather than using generic terms."
)

_QUOTED_RE = re.compile(r'"([^"]+)"')


def clean_brand_name(domain: str) -> str:
    """example.com from https://www.example.com/about"""
    name = (domain or "").strip()
    name = re.sub(r"^https?://", "", name, flags=re.IGNORECASE)
    name = re.sub(r"^www\.", "", name, flags=re.IGNORECASE)
    return name.split("/")[0]


def fallback_description(domain: str) -> str:
    return f"{domain} is a business website that provides various services and solutions to its customers."


def _quoted_strings(text: str) -> List[str]:
    return [s.strip() for s in _QUOTED_RE.findall(text or "") if s.strip()]


# =============================================================================
# Step 1: domain overview and location
# =============================================================================

def parse_domain_info(text: str, domain: str) -> Dict[str, str]:
    overview = re.search(r"OVERVIEW:\s*(.*?)(?=DESCRIPTION:|$)", text, re.DOTALL)
    description = re.search(r"DESCRIPTION:\s*(.*?)$", text, re.DOTALL)

    domain_info = overview.group(1).strip() if overview else text.strip()
    brand_description = description.group(1).strip() if description else ""
    if not brand_description:
        brand_description = domain_info[:200].strip() + ("..." if len(domain_info) > 200 else "")
    if not domain_info:
        domain_info = brand_description or fallback_description(domain)
        brand_description = brand_description or fallback_description(domain)

    return {"domainInfo": domain_info, "description": brand_description, "fullResponse": text}


async def get_domain_info(domain: str) -> Dict[str, str]:
    """Ask the model what the business behind a domain does"""
    prompt = f"""Analyze the domain "{domain}" and provide business insights based on the domain name, structure, and likely business type. Provide two things:

1. A comprehensive overview of what this company likely does, their probable primary services, products, and business offerings (for category analysis)
2. A concise brand description that summarizes their likely core value proposition and business focus
3. Don't give citations in the response

Format your response exactly as:
OVERVIEW: [detailed business overview and likely services for analysis]
DESCRIPTION: [concise brand description and value proposition]"""

    try:
        text = await llm.complete(prompt)
        return parse_domain_info(text, domain)
    except Exception as e:
        logger.warning("domain_info_fallback", domain=domain, error=str(e))
        description = fallback_description(domain)
        info = f"Information about {domain} - a business website offering various services and solutions."
        return {
            "domainInfo": info,
            "description": description,
            "fullResponse": f"OVERVIEW: {info}\nDESCRIPTION: {description}",
        }


def parse_location(answer: str) -> Optional[str]:
    location = (answer or "").strip().strip('"').strip()
    if not location or location.lower() in ("null", "none"):
        return None
    return location


async def extract_location(domain: str, info: Optional[str]) -> Optional[str]:
    prompt = (
        "From this business description, identify the primary location/city where this business "
        "operates. Return only the location name (city, state format if applicable). If no clear "
        f'location is mentioned, return "null".\n\nDomain: {domain}\nBusiness description: {info or ""}'
    )
    try:
        return parse_location(await llm.complete(prompt, max_tokens=50, temperature=0.1))
    except Exception as e:
        logger.warning("location_extraction_failed", domain=domain, error=str(e))
        return None


# =============================================================================
# Step 2: categories
# =============================================================================

def normalize_categories(raw: Any, domain: str) -> List[str]:
    """Exactly four category names, padded from the domain when the model gave fewer"""
    names = []
    if isinstance(raw, dict):
        raw = raw.get("categories")
    if isinstance(raw, list):
        names = [c.strip() for c in raw if isinstance(c, str) and c.strip()]

    categories = names[:CATEGORY_COUNT]
    while len(categories) < CATEGORY_COUNT:
        categories.append(f"{domain} {CATEGORY_PAD_SUFFIXES[len(categories)]}")
    return categories


async def extract_categories(domain: str, domain_info: Optional[str] = None) -> List[str]:
    if domain_info is None:
        domain_info = (await get_domain_info(domain))["fullResponse"]

    prompt = f"""Analyze the brand domain {domain} and identify 4 content categories that best define the brand.

Domain information: {domain_info}

Respond ONLY with valid JSON in this exact format (no explanations, no markdown):

{{
  "categories": ["Category 1", "Category 2", "Category 3", "Category 4"]
}}"""

    try:
        text = await llm.complete(
            prompt,
            system="You are a brand categorization expert. Always respond with valid JSON only, no explanations or markdown formatting.",
            model="gpt-4o-mini",
            temperature=0.3,
            json_mode=True,
        )
    except Exception as e:
        logger.warning("category_extraction_fallback", domain=domain, error=str(e))
        return list(FALLBACK_CATEGORIES)

    try:
        parsed = llm.parse_json(text)
    except llm.LLMResponseError:
        logger.warning("category_response_unparseable", domain=domain)
        parsed = []
    return normalize_categories(parsed, domain)


# =============================================================================
# Step 3: competitors
# =============================================================================

def parse_competitors(text: str) -> List[str]:
    """
    Accepts a JSON list of names, {"competitors": [...]}, or [{"competitors": [...]}];
    anything else falls back to the quoted strings in the text.
    """
    competitors: List[Any] = []
    try:
        parsed = llm.parse_json(text)
        if isinstance(parsed, list):
            if all(isinstance(item, str) for item in parsed):
                competitors = parsed
            elif parsed and isinstance(parsed[0], dict) and isinstance(parsed[0].get("competitors"), list):
                competitors = parsed[0]["competitors"]
        elif isinstance(parsed, dict) and isinstance(parsed.get("competitors"), list):
            competitors = parsed["competitors"]
    except llm.LLMResponseError:
        competitors = _quoted_strings(text)

    cleaned = [c.strip() for c in competitors if isinstance(c, str) and c.strip()][:MAX_COMPETITORS]
    return cleaned or list(FALLBACK_COMPETITORS)


async def extract_competitors(
    domain: str,
    info: Optional[str] = None,
    categories: Optional[List[str]] = None,
) -> List[str]:
    brand_name = clean_brand_name(domain)
    context = info or f"{brand_name} is a business operating at {domain}"
    category_line = f"\nCategories: {', '.join(categories)}" if categories else ""
    prompt = f"""Brand Name: {brand_name}
Domain: {domain}
Brand Context: {context}{category_line}

Identify 5 real, direct competitors for the given brand, filtered by ICP company size, ICP alignment, and business model type.

Respond with only a valid JSON array of the final 5 competitor brand names, using exact company names as they appear online:

["Exact Company Name 1", "Exact Company Name 2", "Exact Company Name 3", "Exact Company Name 4", "Exact Company Name 5"]"""

    try:
        text = await llm.complete(
            prompt,
            system="You are a helpful assistant that returns only valid JSON arrays when requested. Do not include any explanations, formatting, or additional text outside of the requested JSON structure.",
        )
    except Exception as e:
        logger.warning("competitor_extraction_fallback", domain=domain, error=str(e))
        return list(FALLBACK_COMPETITORS)
    return parse_competitors(text)


# =============================================================================
# Step 4: keywords and prompts
# =============================================================================

def fallback_category_keywords(category: str) -> List[str]:
    return [
        f"{category} solutions",
        f"best {category} services",
        f"{category} comparison",
        f"{category} alternatives",
        f"{category} reviews",
    ]


def _parse_string_list(text: str, limit: int) -> List[str]:
    try:
        parsed = llm.parse_json(text)
    except llm.LLMResponseError:
        return _quoted_strings(text)[:limit]
    if isinstance(parsed, dict):
        parsed = next((v for v in parsed.values() if isinstance(v, list)), [])
    if not isinstance(parsed, list):
        return []
    items = []
    for item in parsed:
        if isinstance(item, dict):
            item = item.get("query") or item.get("question") or item.get("keyword")
        if isinstance(item, str) and item.strip():
            items.append(item.strip())
    return items[:limit]


async def generate_keywords(category: str, domain: str, location: Optional[str] = None) -> List[str]:
    if location:
        prompt = f"""Generate 10 long-tail keywords for local {category} services in {location}. These should be specific search terms that users might use when looking for {category} services specifically in {location}.

Return ONLY a JSON array of 10 keyword strings.

Focus on:
- Location-specific, long-tail search terms for {location}
- Local search intent ("near me", "in {location}", "best in {location}")
- Terms that would naturally lead to local business mentions"""
    else:
        prompt = f"""Generate 10 long-tail keywords for {domain} in the {category} category. These should be specific search terms that users might use when looking for services like what {domain} offers.

Return ONLY a JSON array of 10 keyword strings.

Focus on:
- Specific, long-tail search terms
- User intent-based keywords
- Terms that would naturally lead to brand mentions"""

    try:
        keywords = _parse_string_list(await llm.complete(prompt, max_tokens=300, temperature=0.1), KEYWORDS_PER_CATEGORY)
    except Exception as e:
        logger.warning("keyword_generation_fallback", category=category, error=str(e))
        keywords = []
    return keywords or fallback_category_keywords(category)


def drop_brand_mentions(questions: List[str], brand_name: str) -> List[str]:
    """Questions must not give the brand away"""
    names = {brand_name.lower(), brand_name.split(".")[0].lower()}
    return [q for q in questions if not any(n and n in q.lower() for n in names)]


async def generate_prompts(
    category: str,
    keywords: List[str],
    brand_name: str,
    domain: str,
    competitors: Optional[List[str]] = None,
    location: Optional[str] = None,
) -> List[str]:
    competitor_list = ", ".join(competitors or [])
    if location:
        prompt = f"""You are helping a digital marketing researcher generate realistic, user-like questions that people typically ask ChatGPT about {category} services in {location}.

Long-tail keywords for local {category} services in {location}: {', '.join(keywords)}

Popular competitors include: {competitor_list}.

Generate 5 natural, conversational questions about local {category} services. Responses should naturally mention {brand_name}, but the questions should NOT mention the brand name.

Guidelines:
- Do NOT mention {brand_name} in the questions
- ALWAYS mention {location} in the question
- Include "near me" and local comparison patterns

Format: Output only a JSON array of 5 strings."""
    else:
        prompt = f"""You are helping a digital marketing researcher generate realistic, user-like questions that people typically ask ChatGPT about {category} services.

Long-tail keywords for {domain} in {category}: {', '.join(keywords)}

Popular competitors include: {competitor_list}.

Generate 5 natural, conversational questions about these keywords. Responses should naturally mention {brand_name}, but the questions should NOT mention the brand name.

Guidelines:
- Do NOT mention {brand_name} in the questions
- Use natural, conversational phrasing ("What are the best...", "Which platforms...", "How do I choose...")
- Cover comparisons, alternatives, recommendations and value-for-money

Format: Output only a JSON array of 5 strings."""

    try:
        questions = _parse_string_list(await llm.complete(prompt, max_tokens=300), PROMPTS_PER_CATEGORY)
    except Exception as e:
        logger.warning("prompt_generation_failed", category=category, error=str(e))
        return []
    return drop_brand_mentions(questions, brand_name)


# =============================================================================
# Step 5: AI responses
# =============================================================================

def enhance_prompt(prompt_text: str) -> str:
    return f"{prompt_text}{BRAND_MENTION_SUFFIX}"


async def _answer(prompt: Dict[str, Any]) -> Dict[str, Any]:
    text = await llm.complete(
        enhance_prompt(prompt["promptText"]),
        model=RESPONSE_MODEL,
        max_tokens=RESPONSE_MAX_TOKENS,
    )
    return {**prompt, "responseText": text}


async def run_prompts(prompts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Answer every prompt, five at a time with a pause between batches.
    Prompts whose call fails are logged and left out of the result.
    """
    results: List[Dict[str, Any]] = []
    for start in range(0, len(prompts), BATCH_SIZE):
        batch = prompts[start:start + BATCH_SIZE]
        logger.info(
            "ai_response_batch",
            batch=start // BATCH_SIZE + 1,
            batches=(len(prompts) + BATCH_SIZE - 1) // BATCH_SIZE,
            size=len(batch),
        )
        answers = await asyncio.gather(*(_answer(p) for p in batch), return_exceptions=True)
        for prompt, answer in zip(batch, answers):
            if isinstance(answer, Exception):
                logger.error("ai_response_failed", prompt_id=prompt.get("_id"), error=str(answer))
                continue
            results.append(answer)

        if start + BATCH_SIZE < len(prompts):
            await asyncio.sleep(BATCH_DELAY_SECONDS)
    return results


# =============================================================================
# Persistence
# =============================================================================

def new_session_id() -> str:
    return uuid.uuid4().hex


def brand_helper(brand) -> dict:
    """Convert MongoDB brand profile to dict"""
    return {
        "_id": str(brand["_id"]),
        "ownerUserId": brand.get("ownerUserId"),
        "domain": brand.get("domain"),
        "brandName": brand.get("brandName"),
        "brandInformation": brand.get("brandInformation", ""),
        "isLocalBrand": brand.get("isLocalBrand", False),
        "location": brand.get("location"),
        "competitors": brand.get("competitors", []),
        "analysisResults": brand.get("analysisResults"),
        "created_at": brand.get("created_at"),
        "updated_at": brand.get("updated_at"),
    }


def doc_helper(doc) -> dict:
    result = dict(doc)
    result["_id"] = str(doc["_id"])
    return result


def save_categories(brand_id: str, categories: List[str]) -> List[dict]:
    """Insert categories that the brand does not already have; return all requested ones"""
    docs = []
    for name in categories:
        existing = db.brand_categories.find_one({"brandId": brand_id, "categoryName": name})
        if existing:
            docs.append(existing)
            continue
        doc = {"brandId": brand_id, "categoryName": name, "created_at": datetime.utcnow()}
        doc["_id"] = db.brand_categories.insert_one(doc).inserted_id
        docs.append(doc)
    return docs


def save_prompts(brand_id: str, category: dict, questions: List[str], is_custom: bool = False) -> List[dict]:
    docs = []
    for question in questions:
        doc = {
            "brandId": brand_id,
            "categoryId": str(category["_id"]),
            "categoryName": category.get("categoryName"),
            "promptText": question,
            "isCustom": is_custom,
            "created_at": datetime.utcnow(),
        }
        doc["_id"] = db.category_prompts.insert_one(doc).inserted_id
        docs.append(doc)
    return docs


async def generate_and_save_prompts(brand: dict, categories: List[dict]) -> List[dict]:
    brand_id = str(brand["_id"])
    saved = []
    for category in categories:
        keywords = await generate_keywords(category["categoryName"], brand["domain"], brand.get("location"))
        questions = await generate_prompts(
            category["categoryName"],
            keywords,
            brand["brandName"],
            brand["domain"],
            brand.get("competitors", []),
            brand.get("location"),
        )
        saved.extend(save_prompts(brand_id, category, questions))
    return saved


async def analyze_prompts(
    brand: dict,
    user_id: str,
    prompts: List[dict],
    analysis_session_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Answer the prompts, store responses and mentions, and compute share of voice.
    Returns the SOV result with the session id and response count.
    """
    session_id = analysis_session_id or new_session_id()
    brand_id = str(brand["_id"])

    answered = await run_prompts([
        {
            "_id": str(p["_id"]),
            "promptText": p["promptText"],
            "categoryId": p.get("categoryId"),
        }
        for p in prompts
    ])

    responses = []
    for item in answered:
        doc = {
            "promptId": item["_id"],
            "categoryId": item.get("categoryId"),
            "brandId": brand_id,
            "userId": user_id,
            "analysisSessionId": session_id,
            "responseText": item["responseText"],
            "created_at": datetime.utcnow(),
        }
        doc["_id"] = db.prompt_ai_responses.insert_one(doc).inserted_id
        responses.append({**doc, "_id": str(doc["_id"])})

    brands = [brand["brandName"]] + list(brand.get("competitors", []))
    mentions = extract_mentions(responses, brands)
    if mentions:
        db.category_prompt_mentions.insert_many([
            {
                **m,
                "brandId": brand_id,
                "userId": user_id,
                "analysisSessionId": session_id,
                "created_at": datetime.utcnow(),
            }
            for m in mentions
        ])

    sov = calculate_share_of_voice(mention_counts_from_mentions(mentions, brands), brand["brandName"])
    save_share_of_voice(brand_id, user_id, session_id, sov)

    db.brand_profiles.update_one(
        {"_id": brand["_id"]},
        {"$set": {
            "analysisResults": {**sov, "analysisSessionId": session_id},
            "lastAnalysisSessionId": session_id,
            "updated_at": datetime.utcnow(),
        }},
    )
    logger.info(
        "analysis_completed",
        brand_id=brand_id,
        session_id=session_id,
        responses=len(responses),
        mentions=len(mentions),
    )
    return {**sov, "analysisSessionId": session_id, "responsesGenerated": len(responses)}


async def run_full_analysis(user_id: str, domain: str, is_local_brand: bool = False) -> Dict[str, Any]:
    """One-shot analysis: create or refresh the user's brand and run every step"""
    info = await get_domain_info(domain)
    location = await extract_location(domain, info["description"]) if is_local_brand else None
    brand_name = clean_brand_name(domain)

    now = datetime.utcnow()
    db.brand_profiles.update_one(
        {"ownerUserId": user_id, "isAdminAnalysis": {"$ne": True}},
        {
            "$set": {
                "domain": domain,
                "brandName": brand_name,
                "brandInformation": info["description"],
                "isLocalBrand": is_local_brand,
                "location": location,
                "updated_at": now,
            },
            "$setOnInsert": {"ownerUserId": user_id, "created_at": now},
        },
        upsert=True,
    )
    brand = db.brand_profiles.find_one({"ownerUserId": user_id, "isAdminAnalysis": {"$ne": True}})

    categories = save_categories(str(brand["_id"]), await extract_categories(domain, info["fullResponse"]))
    competitors = await extract_competitors(domain, info["description"], [c["categoryName"] for c in categories])
    db.brand_profiles.update_one({"_id": brand["_id"]}, {"$set": {"competitors": competitors}})
    brand["competitors"] = competitors

    prompts = await generate_and_save_prompts(brand, categories)
    result = await analyze_prompts(brand, user_id, prompts)
    return {
        "brandId": str(brand["_id"]),
        "brandName": brand_name,
        "domain": domain,
        "description": info["description"],
        "location": location,
        "categories": [c["categoryName"] for c in categories],
        "competitors": competitors,
        "promptsGenerated": len(prompts),
        **result,
    }
