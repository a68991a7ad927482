"""
Brand mention extraction and share-of-voice calculation.

A mention is one AI response naming a brand. Share of voice for a brand is its
mention count over the mentions of every tracked brand, as a percentage.
"""

import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from snowball.database import db

CONTEXT_RADIUS = 100


def _brand_pattern(brand: str) -> re.Pattern:
    return re.compile(r"(?<!\w)" + re.escape(brand.strip()) + r"(?!\w)", re.IGNORECASE)


def count_mentions(text: str, brand: str) -> int:
    """Case-insensitive whole-word occurrences of `brand` in `text`"""
    if not text or not brand or not brand.strip():
        return 0
    return len(_brand_pattern(brand).findall(text))


def mention_context(text: str, brand: str, radius: int = CONTEXT_RADIUS) -> str:
    match = _brand_pattern(brand).search(text or "")
    if not match:
        return ""
    start = max(0, match.start() - radius)
    end = min(len(text), match.end() + radius)
    snippet = text[start:end].strip()
    if start > 0:
        snippet = "..." + snippet
    if end < len(text):
        snippet = snippet + "..."
    return snippet


def extract_mentions(responses: Iterable[Dict[str, Any]], brands: Iterable[str]) -> List[Dict[str, Any]]:
    """
    Build one mention record per (response, brand) pair where the brand appears.

    Each response dict needs `responseText`; `_id`, `promptId` and `categoryId`
    are carried through when present.
    """
    unique_brands = []
    for brand in brands:
        if brand and brand.strip() and brand.strip().lower() not in [b.lower() for b in unique_brands]:
            unique_brands.append(brand.strip())

    mentions = []
    for response in responses:
        text = response.get("responseText") or ""
        for brand in unique_brands:
            occurrences = count_mentions(text, brand)
            if not occurrences:
                continue
            exact_case = brand in text
            mentions.append({
                "companyName": brand,
                "responseId": response.get("_id"),
                "promptId": response.get("promptId"),
                "categoryId": response.get("categoryId"),
                "occurrences": occurrences,
                "mentionContext": mention_context(text, brand),
                "confidence": 1.0 if exact_case else 0.9,
            })
    return mentions


def mention_counts_from_mentions(mentions: Iterable[Dict[str, Any]], brands: Iterable[str]) -> Dict[str, int]:
    counts = {brand.strip(): 0 for brand in brands if brand and brand.strip()}
    lookup = {name.lower(): name for name in counts}
    for mention in mentions:
        name = lookup.get(mention["companyName"].lower(), mention["companyName"])
        counts[name] = counts.get(name, 0) + 1
    return counts


def calculate_share_of_voice(mention_counts: Dict[str, int], brand_name: str) -> Dict[str, Any]:
    """Turn per-brand mention counts into share-of-voice percentages"""
    counts = {name: int(count or 0) for name, count in mention_counts.items()}
    total = sum(counts.values())

    share = {}
    for name, count in counts.items():
        share[name] = round(count / total * 100, 2) if total else 0.0

    brand_key = next((name for name in counts if name.lower() == (brand_name or "").lower()), brand_name)
    return {
        "shareOfVoice": share,
        "mentionCounts": counts,
        "totalMentions": total,
        "brandShare": share.get(brand_key, 0.0),
        "competitors": [name for name in counts if name != brand_key],
    }


def save_share_of_voice(
    brand_id: str,
    user_id: str,
    analysis_session_id: str,
    result: Dict[str, Any],
) -> None:
    db.brand_share_of_voice.update_one(
        {"analysisSessionId": analysis_session_id},
        {"$set": {
            "brandId": brand_id,
            "userId": user_id,
            "analysisSessionId": analysis_session_id,
            **result,
            "calculatedAt": datetime.utcnow(),
        }},
        upsert=True,
    )


def latest_share_of_voice(brand_id: str, cached: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
    """
    Prefer the newest stored SOV record for the brand when it has mention data;
    otherwise fall back to the cached analysis results.
    """
    latest = db.brand_share_of_voice.find_one({"brandId": brand_id}, sort=[("calculatedAt", -1)])
    if latest and latest.get("mentionCounts"):
        return {
            "shareOfVoice": latest.get("shareOfVoice", {}),
            "mentionCounts": {k: int(v or 0) for k, v in latest["mentionCounts"].items()},
            "totalMentions": latest.get("totalMentions", 0),
            "brandShare": latest.get("brandShare", 0.0),
            "competitors": latest.get("competitors", []),
            "analysisSessionId": latest.get("analysisSessionId"),
        }
    return cached
