#!/usr/bin/env python3
"""
Brand API - Domain analysis results, categories, prompts and competitors
"""

from datetime import datetime
from typing import List, Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, HTTPException, Request
from pydantic import BaseModel

from snowball import brand_analysis
from snowball.auth import require_user_id
from snowball.database import db, to_object_id
from snowball.share_of_voice import latest_share_of_voice
from snowball.task_manager import TaskStatus, task_manager

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/brand", tags=["brand"])


# Pydantic Models
class AnalyzeRequest(BaseModel):
    domain: str
    isLocalBrand: bool = False


class ExtractCategoriesRequest(BaseModel):
    domain: str


class CustomPromptRequest(BaseModel):
    brandId: str
    categoryId: str
    promptText: str


class CompetitorRequest(BaseModel):
    name: str


# Helper functions
def verify_brand_access(brand_id: str, user_id: str) -> dict:
    """
    Verify user owns the brand profile.
    Returns the brand if access is granted, raises HTTPException otherwise.
    """
    brand = db.brand_profiles.find_one({"_id": to_object_id(brand_id, "brand")})
    if not brand:
        raise HTTPException(status_code=404, detail="Brand not found")
    if brand.get("ownerUserId") != user_id:
        raise HTTPException(status_code=403, detail="Access denied to this brand")
    return brand


def verify_category_access(category_id: str, user_id: str) -> dict:
    category = db.brand_categories.find_one({"_id": to_object_id(category_id, "category")})
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    verify_brand_access(category["brandId"], user_id)
    return category


def verify_prompt_access(prompt_id: str, user_id: str) -> dict:
    prompt = db.category_prompts.find_one({"_id": to_object_id(prompt_id, "prompt")})
    if not prompt:
        raise HTTPException(status_code=404, detail="Prompt not found")
    verify_brand_access(prompt["brandId"], user_id)
    return prompt


async def _run_analysis_background(task_id: str, user_id: str, domain: str, is_local_brand: bool):
    task_manager.update_task(task_id, status=TaskStatus.PROCESSING, progress=5, message=f"Analyzing {domain}...")
    try:
        result = await brand_analysis.run_full_analysis(user_id, domain, is_local_brand)
        task_manager.update_task(
            task_id, status=TaskStatus.COMPLETED, progress=100,
            message="Analysis complete", result=result,
        )
    except Exception as e:
        logger.exception("brand_analysis_failed", task_id=task_id, domain=domain)
        task_manager.update_task(task_id, message="Analysis failed", error=str(e))


# Routes

@router.post("/analyze")
async def analyze_brand(body: AnalyzeRequest, background_tasks: BackgroundTasks, request: Request):
    """Kick off a full domain analysis as a background task"""
    user_id = require_user_id(request)
    domain = body.domain.strip()
    if not domain:
        raise HTTPException(status_code=400, detail="Domain is required")

    task_manager.cleanup_old_tasks()
    task = task_manager.create_task("brand_analysis", user_id, metadata={"domain": domain})
    background_tasks.add_task(_run_analysis_background, task["task_id"], user_id, domain, body.isLocalBrand)
    return {"task_id": task["task_id"], "status": "started"}


@router.get("/user/brands")
async def get_user_brands(request: Request):
    user_id = require_user_id(request)
    try:
        brands = db.brand_profiles.find(
            {"ownerUserId": user_id, "isAdminAnalysis": {"$ne": True}}
        ).sort("updated_at", -1)
        return {"success": True, "brands": [brand_analysis.brand_helper(b) for b in brands]}
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/analysis/{brand_id}")
async def get_brand_analysis(brand_id: str, request: Request):
    """Brand profile with categories, prompt counts and the freshest share of voice"""
    user_id = require_user_id(request)
    brand = verify_brand_access(brand_id, user_id)
    try:
        categories = list(db.brand_categories.find({"brandId": brand_id}))
        category_data = []
        for category in categories:
            category_id = str(category["_id"])
            category_data.append({
                "_id": category_id,
                "categoryName": category["categoryName"],
                "promptCount": db.category_prompts.count_documents({"categoryId": category_id}),
            })

        return {
            "success": True,
            "brand": brand_analysis.brand_helper(brand),
            "categories": category_data,
            "shareOfVoice": latest_share_of_voice(brand_id, brand.get("analysisResults")),
        }
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/extract-categories")
async def extract_categories(body: ExtractCategoriesRequest, request: Request):
    """Suggest categories for a domain without saving them"""
    require_user_id(request)
    categories = await brand_analysis.extract_categories(body.domain.strip())
    return {"success": True, "categories": categories}


@router.get("/categories/{category_id}/prompts")
async def get_category_prompts(category_id: str, request: Request):
    user_id = require_user_id(request)
    category = verify_category_access(category_id, user_id)
    prompts = db.category_prompts.find({"categoryId": category_id}).sort("created_at", 1)
    return {
        "success": True,
        "category": {"_id": category_id, "categoryName": category["categoryName"]},
        "prompts": [brand_analysis.doc_helper(p) for p in prompts],
    }


@router.get("/prompts/{prompt_id}/response")
async def get_prompt_response(prompt_id: str, request: Request):
    user_id = require_user_id(request)
    prompt = verify_prompt_access(prompt_id, user_id)
    response = db.prompt_ai_responses.find_one({"promptId": prompt_id}, sort=[("created_at", -1)])
    if not response:
        raise HTTPException(status_code=404, detail="No response generated for this prompt yet")
    return {
        "success": True,
        "prompt": brand_analysis.doc_helper(prompt),
        "response": brand_analysis.doc_helper(response),
    }


@router.post("/prompts/custom")
async def add_custom_prompt(body: CustomPromptRequest, request: Request):
    user_id = require_user_id(request)
    category = verify_category_access(body.categoryId, user_id)
    if category["brandId"] != body.brandId:
        raise HTTPException(status_code=400, detail="Category does not belong to this brand")
    text = body.promptText.strip()
    if len(text) < 10:
        raise HTTPException(status_code=400, detail="Prompt must be at least 10 characters long")

    saved = brand_analysis.save_prompts(body.brandId, category, [text], is_custom=True)
    return {"success": True, "prompt": brand_analysis.doc_helper(saved[0])}


@router.post("/prompts/{prompt_id}/generate")
async def generate_prompt_response(prompt_id: str, request: Request):
    """Answer a single prompt and record its mentions under a fresh session"""
    user_id = require_user_id(request)
    prompt = verify_prompt_access(prompt_id, user_id)
    brand = db.brand_profiles.find_one({"_id": to_object_id(prompt["brandId"], "brand")})
    try:
        result = await brand_analysis.analyze_prompts(brand, user_id, [prompt])
        response = db.prompt_ai_responses.find_one({"promptId": prompt_id}, sort=[("created_at", -1)])
        return {
            "success": True,
            "response": brand_analysis.doc_helper(response) if response else None,
            "shareOfVoice": result,
        }
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{brand_id}/responses")
async def get_brand_responses(brand_id: str, request: Request, analysisSessionId: Optional[str] = None):
    user_id = require_user_id(request)
    brand = verify_brand_access(brand_id, user_id)
    session_id = analysisSessionId or brand.get("lastAnalysisSessionId")
    query = {"brandId": brand_id}
    if session_id:
        query["analysisSessionId"] = session_id

    prompts = {str(p["_id"]): p for p in db.category_prompts.find({"brandId": brand_id})}
    responses = []
    for response in db.prompt_ai_responses.find(query).sort("created_at", 1):
        prompt = prompts.get(response["promptId"], {})
        responses.append({
            **brand_analysis.doc_helper(response),
            "promptText": prompt.get("promptText"),
            "categoryName": prompt.get("categoryName"),
        })
    return {"success": True, "responses": responses, "analysisSessionId": session_id}


@router.post("/{brand_id}/competitors")
async def add_competitor(brand_id: str, body: CompetitorRequest, request: Request):
    user_id = require_user_id(request)
    brand = verify_brand_access(brand_id, user_id)
    name = body.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Competitor name is required")

    competitors: List[str] = brand.get("competitors", [])
    if name.lower() in [c.lower() for c in competitors]:
        raise HTTPException(status_code=409, detail="Competitor already exists")
    competitors.append(name)
    db.brand_profiles.update_one(
        {"_id": brand["_id"]},
        {"$set": {"competitors": competitors, "updated_at": datetime.utcnow()}}
    )
    return {"success": True, "competitors": competitors}


@router.delete("/{brand_id}/competitors/{name}")
async def delete_competitor(brand_id: str, name: str, request: Request):
    user_id = require_user_id(request)
    brand = verify_brand_access(brand_id, user_id)
    competitors = [c for c in brand.get("competitors", []) if c.lower() != name.lower()]
    if len(competitors) == len(brand.get("competitors", [])):
        raise HTTPException(status_code=404, detail="Competitor not found")
    db.brand_profiles.update_one(
        {"_id": brand["_id"]},
        {"$set": {"competitors": competitors, "updated_at": datetime.utcnow()}}
    )
    return {"success": True, "competitors": competitors}
