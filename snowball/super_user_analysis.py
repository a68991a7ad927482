#!/usr/bin/env python3
"""
Super User Analysis API - Isolated brand analyses run by superusers

Each analysis owns a temporary brand profile (isAdminAnalysis) and uses its
analysisId as the analysis session id, so its responses, mentions and share of
voice never mix with the superuser's own brand.
"""

import secrets
import string
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from snowball import brand_analysis
from snowball.database import db, to_object_id
from snowball.role_helpers import require_superuser
from snowball.share_of_voice import (
    calculate_share_of_voice,
    extract_mentions,
    mention_counts_from_mentions,
    save_share_of_voice,
)

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/super-user/analysis", tags=["super-user-analysis"])

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

HISTORY_LIMIT = 50
_BASE36 = string.digits + string.ascii_lowercase


# Pydantic Models
class CreateAnalysisRequest(BaseModel):
    domain: Optional[str] = None
    brandName: Optional[str] = None
    brandInformation: str = ""
    step: Optional[int] = None
    isLocalBrand: bool = False


class UpdateAnalysisRequest(BaseModel):
    analysisId: Optional[str] = None
    step: Optional[int] = None
    stepData: Optional[Dict[str, Any]] = None


class AnalysisIdRequest(BaseModel):
    analysisId: Optional[str] = None


class StepPrompt(BaseModel):
    promptText: str
    categoryName: Optional[str] = None


class Step4Data(BaseModel):
    prompts: List[Union[StepPrompt, str]] = []


class CompleteAnalysisRequest(BaseModel):
    analysisId: Optional[str] = None
    step4Data: Optional[Step4Data] = None


class BrandRequest(BaseModel):
    analysisId: Optional[str] = None
    brandName: Optional[str] = None


class SaveToHistoryRequest(BaseModel):
    sessionId: Optional[str] = None
    analysisData: Optional[Dict[str, Any]] = None


# Helper functions
def generate_analysis_id(user_id: str) -> str:
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"SUA_{user_id}_{int(time.time() * 1000)}_{suffix}"


def analysis_helper(analysis) -> dict:
    result = dict(analysis)
    result["_id"] = str(analysis["_id"])
    return result


def get_owned_analysis(analysis_id: Optional[str], user_id: str) -> dict:
    analysis = db.super_user_analyses.find_one({"analysisId": analysis_id, "superUserId": user_id})
    if not analysis:
        raise HTTPException(status_code=404, detail="Analysis not found or access denied")
    return analysis


def get_analysis_brand(analysis: dict) -> dict:
    brand_id = (analysis.get("analysisResults") or {}).get("brandId")
    if not brand_id:
        raise HTTPException(status_code=404, detail="No brand data available for this analysis")
    brand = db.brand_profiles.find_one({"_id": to_object_id(brand_id, "brand")})
    if not brand:
        raise HTTPException(status_code=404, detail="Brand profile not found")
    return brand


def session_responses(brand_id: str, analysis_id: str) -> List[dict]:
    responses = db.prompt_ai_responses.find({"brandId": brand_id, "analysisSessionId": analysis_id})
    return [{**r, "_id": str(r["_id"])} for r in responses]


def recalculate_sov(analysis: dict, brand: dict, brand_name: Optional[str] = None) -> Dict[str, Any]:
    """Recompute share of voice from the responses left in this analysis session"""
    brand_id = str(brand["_id"])
    name = brand_name or brand["brandName"]
    competitors = (analysis.get("step3Data") or {}).get("competitors") or brand.get("competitors", [])
    brands = [name] + [c for c in competitors if c.lower() != name.lower()]

    mentions = extract_mentions(session_responses(brand_id, analysis["analysisId"]), brands)
    sov = calculate_share_of_voice(mention_counts_from_mentions(mentions, brands), name)
    save_share_of_voice(brand_id, analysis["superUserId"], analysis["analysisId"], sov)
    return sov


# Routes

@router.post("/create")
async def create_analysis(body: CreateAnalysisRequest, request: Request):
    user = require_superuser(request)
    user_id = str(user["_id"])
    if not body.domain:
        raise HTTPException(status_code=400, detail="Domain is required")

    description = body.brandInformation
    location = None
    if body.step == 1:
        try:
            info = await brand_analysis.get_domain_info(body.domain)
            description = info["description"] or description
            if body.isLocalBrand and description:
                location = await brand_analysis.extract_location(body.domain, description)
        except Exception as e:
            logger.warning("domain_info_unavailable", domain=body.domain, error=str(e))

    brand_name = brand_analysis.clean_brand_name(body.brandName or body.domain)
    now = datetime.utcnow()
    analysis = {
        "analysisId": generate_analysis_id(user_id),
        "superUserId": user_id,
        "domain": body.domain,
        "brandName": brand_name,
        "brandInformation": description,
        "status": STATUS_IN_PROGRESS,
        "currentStep": body.step or 1,
        "step1Data": {
            "domain": body.domain,
            "brandName": brand_name,
            "description": description,
            "isLocalBrand": body.isLocalBrand,
            "location": location,
            "completed": True,
        },
        "startedAt": now,
        "createdAt": now,
        "updatedAt": now,
    }
    try:
        db.super_user_analyses.insert_one(analysis)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to create analysis: {e}")

    logger.info("super_user_analysis_created", analysis_id=analysis["analysisId"], domain=body.domain)
    return {
        "success": True,
        "analysisId": analysis["analysisId"],
        "domain": analysis["domain"],
        "brandName": analysis["brandName"],
        "currentStep": analysis["currentStep"],
    }


@router.post("/update")
async def update_analysis(body: UpdateAnalysisRequest, request: Request):
    """Store categories (step 2) or competitors (step 3)"""
    user = require_superuser(request)
    if not body.analysisId or not body.step or body.stepData is None:
        raise HTTPException(status_code=400, detail="Analysis ID, step, and step data are required")

    analysis = get_owned_analysis(body.analysisId, str(user["_id"]))
    if body.step == 2:
        field, values = "step2Data", {"categories": body.stepData.get("categories") or []}
    elif body.step == 3:
        field, values = "step3Data", {"competitors": body.stepData.get("competitors") or []}
    else:
        raise HTTPException(status_code=400, detail="Invalid step number")

    current_step = max(analysis.get("currentStep", 1), body.step)
    db.super_user_analyses.update_one(
        {"_id": analysis["_id"]},
        {"$set": {
            field: {**values, "completed": True},
            "currentStep": current_step,
            "updatedAt": datetime.utcnow(),
        }}
    )
    return {
        "success": True,
        "analysisId": body.analysisId,
        "currentStep": current_step,
        "stepData": body.stepData,
    }


@router.post("/generate-prompts")
async def generate_prompts(body: AnalysisIdRequest, request: Request):
    user = require_superuser(request)
    if not body.analysisId:
        raise HTTPException(status_code=400, detail="Analysis ID is required")

    analysis = get_owned_analysis(body.analysisId, str(user["_id"]))
    categories = (analysis.get("step2Data") or {}).get("categories") or []
    if not categories:
        raise HTTPException(status_code=400, detail="Categories are required before generating prompts")

    competitors = (analysis.get("step3Data") or {}).get("competitors") or []
    location = (analysis.get("step1Data") or {}).get("location")
    try:
        grouped = []
        for category in categories:
            keywords = await brand_analysis.generate_keywords(category, analysis["domain"], location)
            questions = await brand_analysis.generate_prompts(
                category, keywords, analysis["brandName"], analysis["domain"], competitors, location
            )
            grouped.append({"categoryName": category, "prompts": questions})

        db.super_user_analyses.update_one(
            {"_id": analysis["_id"]},
            {"$set": {
                "step4Data": {"prompts": grouped, "completed": False},
                "currentStep": max(analysis.get("currentStep", 1), 4),
                "updatedAt": datetime.utcnow(),
            }}
        )
        return {
            "success": True,
            "analysisId": body.analysisId,
            "prompts": [
                {"categoryName": g["categoryName"], "promptText": text}
                for g in grouped for text in g["prompts"]
            ],
        }
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/complete")
async def complete_analysis(body: CompleteAnalysisRequest, request: Request):
    """
    Create the isolated brand, save categories and the (possibly edited) step 4
    prompts, then answer them and compute share of voice under this analysis id.
    """
    user = require_superuser(request)
    user_id = str(user["_id"])
    if not body.analysisId or body.step4Data is None:
        raise HTTPException(status_code=400, detail="Analysis ID and step 4 data are required")

    analysis = get_owned_analysis(body.analysisId, user_id)
    prompts = [p if isinstance(p, StepPrompt) else StepPrompt(promptText=p) for p in body.step4Data.prompts]
    prompts = [p for p in prompts if p.promptText.strip()]
    if not prompts:
        raise HTTPException(
            status_code=400,
            detail="No prompts available for analysis. Please generate prompts in Step 4 first.",
        )

    step1 = analysis.get("step1Data") or {}
    competitors = (analysis.get("step3Data") or {}).get("competitors") or []
    category_names = (analysis.get("step2Data") or {}).get("categories") or []
    if not category_names:
        category_names = list(dict.fromkeys(p.categoryName for p in prompts if p.categoryName))
    if not category_names:
        raise HTTPException(status_code=400, detail="Categories are required before completing the analysis")

    try:
        now = datetime.utcnow()
        brand = {
            "ownerUserId": user_id,
            "brandName": analysis["brandName"],
            "domain": analysis["domain"],
            "brandInformation": analysis.get("brandInformation", ""),
            "competitors": competitors,
            "isLocalBrand": step1.get("isLocalBrand", False),
            "location": step1.get("location"),
            "isAdminAnalysis": True,
            "analysisSessionId": analysis["analysisId"],
            "created_at": now,
            "updated_at": now,
        }
        brand["_id"] = db.brand_profiles.insert_one(brand).inserted_id
        brand_id = str(brand["_id"])

        categories = brand_analysis.save_categories(brand_id, category_names)
        by_name = {c["categoryName"].lower(): c for c in categories}
        saved = []
        for index, prompt in enumerate(prompts):
            category = by_name.get((prompt.categoryName or "").lower()) or categories[index % len(categories)]
            saved.extend(brand_analysis.save_prompts(brand_id, category, [prompt.promptText.strip()]))

        result = await brand_analysis.analyze_prompts(brand, user_id, saved, analysis["analysisId"])

        completed_at = datetime.utcnow()
        started_at = analysis.get("startedAt") or analysis.get("createdAt") or completed_at
        analysis_results = {
            "brandId": brand_id,
            "categories": [
                {"name": c["categoryName"], "prompts": [p["promptText"] for p in saved if p["categoryId"] == str(c["_id"])]}
                for c in categories
            ],
            "competitors": competitors,
            "shareOfVoice": result["shareOfVoice"],
            "mentionCounts": result["mentionCounts"],
            "totalMentions": result["totalMentions"],
            "brandShare": result["brandShare"],
            "aiVisibilityScore": result["brandShare"],
        }
        db.super_user_analyses.update_one(
            {"_id": analysis["_id"]},
            {"$set": {
                "step4Data": {"prompts": [p.model_dump() for p in prompts], "completed": True},
                "analysisResults": analysis_results,
                "status": STATUS_COMPLETED,
                "currentStep": 4,
                "completedAt": completed_at,
                "analysisTime": int((completed_at - started_at).total_seconds() * 1000),
                "updatedAt": completed_at,
            }}
        )
        logger.info(
            "super_user_analysis_completed",
            analysis_id=analysis["analysisId"],
            responses=result["responsesGenerated"],
        )
        return {
            "success": True,
            "analysisId": analysis["analysisId"],
            "brandId": brand_id,
            "analysisResults": analysis_results,
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("super_user_analysis_failed", analysis_id=analysis["analysisId"])
        db.super_user_analyses.update_one(
            {"_id": analysis["_id"]},
            {"$set": {"status": STATUS_FAILED, "updatedAt": datetime.utcnow()}}
        )
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/extract-mentions")
async def extract_brand_mentions(body: BrandRequest, request: Request):
    user = require_superuser(request)
    if not body.analysisId or not body.brandName:
        raise HTTPException(status_code=400, detail="Analysis ID and brand name are required")

    analysis = get_owned_analysis(body.analysisId, str(user["_id"]))
    brand = get_analysis_brand(analysis)
    brand_id = str(brand["_id"])

    prompts = {str(p["_id"]): p for p in db.category_prompts.find({"brandId": brand_id})}
    responses = {r["_id"]: r for r in session_responses(brand_id, body.analysisId)}
    mentions = []
    for mention in extract_mentions(responses.values(), [body.brandName]):
        prompt = prompts.get(mention["promptId"], {})
        mentions.append({
            "companyName": mention["companyName"],
            "promptText": prompt.get("promptText"),
            "responseText": responses[mention["responseId"]]["responseText"],
            "categoryName": prompt.get("categoryName"),
            "confidence": mention["confidence"],
            "createdAt": datetime.utcnow(),
        })

    step5 = {
        "mentions": mentions,
        "totalMentions": len(mentions),
        "completed": True,
        "completedAt": datetime.utcnow(),
    }
    db.super_user_analyses.update_one(
        {"_id": analysis["_id"]},
        {"$set": {"step5Data": step5, "updatedAt": datetime.utcnow()}}
    )
    return {
        "success": True,
        "mentions": mentions,
        "totalMentions": len(mentions),
        "brandName": body.brandName,
        "analysisId": body.analysisId,
        "step5Data": step5,
    }


@router.post("/calculate-sov")
async def calculate_sov(body: BrandRequest, request: Request):
    user = require_superuser(request)
    if not body.analysisId or not body.brandName:
        raise HTTPException(status_code=400, detail="Analysis ID and brand name are required")

    analysis = get_owned_analysis(body.analysisId, str(user["_id"]))
    brand = get_analysis_brand(analysis)
    sov = recalculate_sov(analysis, brand, body.brandName)

    step6 = {
        "shareOfVoice": sov["shareOfVoice"],
        "brandShare": sov["brandShare"],
        "competitorShares": [
            {"competitor": name, "share": sov["shareOfVoice"][name], "mentions": sov["mentionCounts"][name]}
            for name in sov["competitors"]
        ],
        "completed": True,
        "completedAt": datetime.utcnow(),
    }
    db.super_user_analyses.update_one(
        {"_id": analysis["_id"]},
        {"$set": {"step6Data": step6, "updatedAt": datetime.utcnow()}}
    )
    return {
        "success": True,
        "shareOfVoice": sov,
        "brandName": body.brandName,
        "analysisId": body.analysisId,
        "step6Data": step6,
    }


@router.get("/history")
async def get_history(request: Request):
    user = require_superuser(request)
    analyses = list(
        db.super_user_analyses.find({"superUserId": str(user["_id"])})
        .sort("createdAt", -1)
        .limit(HISTORY_LIMIT)
    )
    history = []
    for analysis in analyses:
        results = analysis.get("analysisResults") or {}
        history.append({
            "analysisId": analysis["analysisId"],
            "domain": analysis.get("domain"),
            "brandName": analysis.get("brandName"),
            "status": analysis.get("status"),
            "createdAt": analysis.get("createdAt"),
            "completedAt": analysis.get("completedAt"),
            "brandId": results.get("brandId"),
            "aiVisibilityScore": results.get("aiVisibilityScore", 0),
            "brandShare": results.get("brandShare", 0),
            "totalMentions": results.get("totalMentions", 0),
            "competitorsCount": len(results.get("competitors") or []),
        })
    return {"success": True, "analyses": history, "totalCount": len(history)}


@router.post("/save-to-history")
async def save_to_history(body: SaveToHistoryRequest, request: Request):
    user = require_superuser(request)
    user_id = str(user["_id"])
    if not body.sessionId or not body.analysisData:
        raise HTTPException(status_code=400, detail="Session ID and analysis data are required")

    data = body.analysisData
    now = datetime.utcnow()
    analysis = {
        "analysisId": generate_analysis_id(user_id),
        "superUserId": user_id,
        "domain": data.get("domain"),
        "brandName": data.get("brandName"),
        "brandInformation": data.get("brandInformation", ""),
        "status": STATUS_COMPLETED,
        "currentStep": 7,
        "analysisResults": {
            "brandId": data.get("brandId"),
            "sessionId": body.sessionId,
            **(data.get("analysisResults") or {}),
        },
        "completedAt": now,
        "startedAt": now,
        "createdAt": now,
        "updatedAt": now,
    }
    for step in range(1, 5):
        key = f"step{step}Data"
        analysis[key] = {**(data.get(key) or {}), "completed": True}

    db.super_user_analyses.insert_one(analysis)
    return {
        "success": True,
        "message": "Analysis saved to history successfully",
        "analysisId": analysis["analysisId"],
        "historyRecord": {
            "analysisId": analysis["analysisId"],
            "domain": analysis["domain"],
            "brandName": analysis["brandName"],
            "createdAt": analysis["createdAt"],
            "completedAt": analysis["completedAt"],
        },
    }


@router.get("/{analysis_id}")
async def get_analysis(analysis_id: str, request: Request):
    user = require_superuser(request)
    analysis = get_owned_analysis(analysis_id, str(user["_id"]))
    result = analysis_helper(analysis)

    brand_id = (analysis.get("analysisResults") or {}).get("brandId")
    if analysis.get("status") == STATUS_COMPLETED and brand_id:
        # Stored SOV can be newer than the cached results after prompt deletions
        latest = db.brand_share_of_voice.find_one({"analysisSessionId": analysis_id})
        if latest and latest.get("mentionCounts"):
            result["analysisResults"] = {
                **result["analysisResults"],
                "shareOfVoice": latest.get("shareOfVoice", {}),
                "mentionCounts": latest["mentionCounts"],
                "totalMentions": latest.get("totalMentions", 0),
                "brandShare": latest.get("brandShare", 0.0),
            }
        categories = []
        for category in db.brand_categories.find({"brandId": brand_id}):
            prompts = db.category_prompts.find({"categoryId": str(category["_id"])})
            categories.append({
                "_id": str(category["_id"]),
                "categoryName": category["categoryName"],
                "prompts": [brand_analysis.doc_helper(p) for p in prompts],
            })
        result["categories"] = categories
    return {"success": True, "analysis": result}


@router.get("/{analysis_id}/responses")
async def get_analysis_responses(analysis_id: str, request: Request):
    user = require_superuser(request)
    analysis = get_owned_analysis(analysis_id, str(user["_id"]))
    brand = get_analysis_brand(analysis)
    brand_id = str(brand["_id"])

    prompts = {str(p["_id"]): p for p in db.category_prompts.find({"brandId": brand_id})}
    responses = []
    for response in session_responses(brand_id, analysis_id):
        prompt = prompts.get(response["promptId"], {})
        responses.append({
            **response,
            "promptText": prompt.get("promptText"),
            "categoryName": prompt.get("categoryName"),
        })
    return {"success": True, "analysisId": analysis_id, "responses": responses}


@router.get("/{analysis_id}/mentions/{brand_name}")
async def get_brand_mentions(analysis_id: str, brand_name: str, request: Request):
    user = require_superuser(request)
    analysis = get_owned_analysis(analysis_id, str(user["_id"]))
    brand = get_analysis_brand(analysis)

    mentions = [
        brand_analysis.doc_helper(m)
        for m in db.category_prompt_mentions.find({
            "brandId": str(brand["_id"]),
            "analysisSessionId": analysis_id,
        })
        if m.get("companyName", "").lower() == brand_name.lower()
    ]
    return {
        "success": True,
        "analysisId": analysis_id,
        "brandName": brand_name,
        "mentions": mentions,
        "totalMentions": len(mentions),
    }


@router.delete("/{analysis_id}/prompts/{prompt_id}")
async def delete_prompt(analysis_id: str, prompt_id: str, request: Request):
    """Remove a prompt with its session responses and mentions, then recompute SOV"""
    user = require_superuser(request)
    analysis = get_owned_analysis(analysis_id, str(user["_id"]))
    brand = get_analysis_brand(analysis)

    prompt = db.category_prompts.find_one({"_id": to_object_id(prompt_id, "prompt")})
    if not prompt:
        raise HTTPException(status_code=404, detail="Prompt not found")
    if prompt["brandId"] != str(brand["_id"]):
        raise HTTPException(status_code=403, detail="Access denied: Prompt does not belong to this analysis")

    try:
        response_ids = [
            str(r["_id"])
            for r in db.prompt_ai_responses.find({"promptId": prompt_id, "analysisSessionId": analysis_id})
        ]
        deleted_mentions = db.category_prompt_mentions.delete_many({
            "responseId": {"$in": response_ids},
            "analysisSessionId": analysis_id,
        })
        deleted_responses = db.prompt_ai_responses.delete_many({
            "promptId": prompt_id,
            "analysisSessionId": analysis_id,
        })
        db.category_prompts.delete_one({"_id": prompt["_id"]})

        sov = recalculate_sov(analysis, brand)
        db.super_user_analyses.update_one(
            {"_id": analysis["_id"]},
            {"$set": {
                "analysisResults.shareOfVoice": sov["shareOfVoice"],
                "analysisResults.mentionCounts": sov["mentionCounts"],
                "analysisResults.totalMentions": sov["totalMentions"],
                "analysisResults.brandShare": sov["brandShare"],
                "analysisResults.aiVisibilityScore": sov["brandShare"],
                "updatedAt": datetime.utcnow(),
            }}
        )
        return {
            "success": True,
            "message": "Prompt deleted and analysis SOV recalculated successfully",
            "analysisId": analysis_id,
            "deletedData": {
                "promptId": prompt_id,
                "categoryId": prompt.get("categoryId"),
                "categoryName": prompt.get("categoryName"),
                "deletedResponses": deleted_responses.deleted_count,
                "deletedMentions": deleted_mentions.deleted_count,
            },
            "updatedSOV": sov,
        }
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/{analysis_id}")
async def delete_analysis(analysis_id: str, request: Request):
    user = require_superuser(request)
    user_id = str(user["_id"])
    analysis = db.super_user_analyses.find_one_and_delete({"analysisId": analysis_id, "superUserId": user_id})
    if not analysis:
        raise HTTPException(status_code=404, detail="Analysis not found or access denied")

    brand_id = (analysis.get("analysisResults") or {}).get("brandId")
    if brand_id:
        brand = db.brand_profiles.find_one({"_id": to_object_id(brand_id, "brand")})
        # Only the temporary brand created for this analysis is removed
        if brand and brand.get("isAdminAnalysis") and brand.get("ownerUserId") == user_id:
            db.brand_profiles.delete_one({"_id": brand["_id"]})
            db.category_prompts.delete_many({"brandId": brand_id})
            db.brand_categories.delete_many({"brandId": brand_id})
            logger.info("super_user_brand_cleaned", analysis_id=analysis_id, brand_id=brand_id)

    return {"success": True, "message": "Analysis deleted successfully"}
