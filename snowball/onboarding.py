#!/usr/bin/env python3
"""
Onboarding API - Four-step brand setup wizard followed by the first analysis
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from snowball import brand_analysis
from snowball.auth import require_user_id
from snowball.database import db, to_object_id
from snowball.role_helpers import ROLE_SUPERUSER, require_role

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/onboarding", tags=["onboarding"])

DEFAULT_PROGRESS = {
    "currentStep": 1,
    "completedSteps": [],
    "stepData": {},
    "isCompleted": False,
}


# Pydantic Models
class SaveProgressRequest(BaseModel):
    currentStep: int
    stepData: Dict[str, Any] = {}


class DomainStepRequest(BaseModel):
    domain: Optional[str] = None
    isLocalBrand: bool = False
    superUserMode: bool = False


class CategoriesStepRequest(BaseModel):
    brandId: str
    categories: Optional[List[str]] = None


class CompetitorsStepRequest(BaseModel):
    brandId: str
    competitors: Optional[List[str]] = None


class EditedPrompt(BaseModel):
    promptText: str
    categoryName: Optional[str] = None


class PromptsStepRequest(BaseModel):
    brandId: str
    prompts: Optional[List[EditedPrompt]] = None


class CompleteRequest(BaseModel):
    brandId: str


# Helper functions
def progress_helper(progress) -> dict:
    if not progress:
        return dict(DEFAULT_PROGRESS)
    return {
        "currentStep": progress.get("currentStep", 1),
        "completedSteps": progress.get("completedSteps", []),
        "stepData": progress.get("stepData", {}),
        "isCompleted": progress.get("isCompleted", False),
    }


def save_step(user_id: str, step: int, data: dict, completed: bool = False) -> None:
    update: Dict[str, Any] = {
        "$set": {
            f"stepData.step{step}": data,
            "currentStep": step + 1 if step < 4 else 4,
            "updated_at": datetime.utcnow(),
        },
        "$addToSet": {"completedSteps": step},
    }
    if completed:
        update["$set"]["isCompleted"] = True
        update["$set"]["completedAt"] = datetime.utcnow()
    db.onboarding_progress.update_one({"userId": user_id}, update, upsert=True)


def get_owned_brand(brand_id: str, user_id: str) -> dict:
    brand = db.brand_profiles.find_one({"_id": to_object_id(brand_id, "brand")})
    if not brand:
        raise HTTPException(status_code=404, detail="Brand not found")
    if brand.get("ownerUserId") != user_id:
        raise HTTPException(status_code=403, detail="Access denied to this brand")
    return brand


# Routes

@router.get("/progress")
async def get_progress(request: Request):
    user_id = require_user_id(request)
    progress = db.onboarding_progress.find_one({"userId": user_id})
    return {"success": True, "progress": progress_helper(progress)}


@router.post("/save-progress")
async def save_progress(body: SaveProgressRequest, request: Request):
    user_id = require_user_id(request)
    db.onboarding_progress.update_one(
        {"userId": user_id},
        {
            "$set": {
                "currentStep": body.currentStep,
                **{f"stepData.{k}": v for k, v in body.stepData.items()},
                "updated_at": datetime.utcnow(),
            },
            "$addToSet": {"completedSteps": body.currentStep},
        },
        upsert=True,
    )
    progress = db.onboarding_progress.find_one({"userId": user_id})
    return {"success": True, "progress": progress_helper(progress)}


@router.post("/step1-domain")
async def step1_domain(body: DomainStepRequest, request: Request):
    """Describe the domain and create the brand profile it belongs to"""
    user_id = require_user_id(request)
    domain = (body.domain or "").strip()
    if not domain:
        raise HTTPException(status_code=400, detail="Domain is required")
    if body.superUserMode:
        require_role(request, [ROLE_SUPERUSER])

    try:
        info = await brand_analysis.get_domain_info(domain)
        location = await brand_analysis.extract_location(domain, info["description"]) if body.isLocalBrand else None
        now = datetime.utcnow()
        fields = {
            "domain": domain,
            "brandName": brand_analysis.clean_brand_name(domain),
            "brandInformation": info["description"],
            "isLocalBrand": body.isLocalBrand,
            "location": location,
            "updated_at": now,
        }

        if body.superUserMode:
            # Temporary brand, kept out of the superuser's own brand list
            brand = {
                **fields,
                "ownerUserId": user_id,
                "isAdminAnalysis": True,
                "analysisSessionId": brand_analysis.new_session_id(),
                "created_at": now,
            }
            brand["_id"] = db.brand_profiles.insert_one(brand).inserted_id
        else:
            db.brand_profiles.update_one(
                {"ownerUserId": user_id, "isAdminAnalysis": {"$ne": True}},
                {"$set": fields, "$setOnInsert": {"ownerUserId": user_id, "created_at": now}},
                upsert=True,
            )
            brand = db.brand_profiles.find_one({"ownerUserId": user_id, "isAdminAnalysis": {"$ne": True}})
            save_step(user_id, 1, {"domain": domain, "brandId": str(brand["_id"])})

        logger.info("onboarding_step1", user_id=user_id, domain=domain, super_user=body.superUserMode)
        return {
            "success": True,
            "brand": brand_analysis.brand_helper(brand),
            "domainInfo": info["domainInfo"],
        }
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/step2-categories")
async def step2_categories(body: CategoriesStepRequest, request: Request):
    user_id = require_user_id(request)
    brand = get_owned_brand(body.brandId, user_id)

    names = [c.strip() for c in (body.categories or []) if c and c.strip()]
    if not names:
        names = await brand_analysis.extract_categories(brand["domain"], brand.get("brandInformation"))
    saved = brand_analysis.save_categories(body.brandId, list(dict.fromkeys(names)))

    if not brand.get("isAdminAnalysis"):
        save_step(user_id, 2, {"categories": [c["categoryName"] for c in saved]})
    return {
        "success": True,
        "categories": [{"_id": str(c["_id"]), "categoryName": c["categoryName"]} for c in saved],
    }


@router.post("/step3-competitors")
async def step3_competitors(body: CompetitorsStepRequest, request: Request):
    user_id = require_user_id(request)
    brand = get_owned_brand(body.brandId, user_id)

    competitors = [c.strip() for c in (body.competitors or []) if c and c.strip()]
    if not competitors:
        categories = [c["categoryName"] for c in db.brand_categories.find({"brandId": body.brandId})]
        competitors = await brand_analysis.extract_competitors(
            brand["domain"], brand.get("brandInformation"), categories
        )
    db.brand_profiles.update_one(
        {"_id": brand["_id"]},
        {"$set": {"competitors": competitors, "updated_at": datetime.utcnow()}}
    )

    if not brand.get("isAdminAnalysis"):
        save_step(user_id, 3, {"competitors": competitors})
    return {"success": True, "competitors": competitors}


@router.post("/step4-prompts")
async def step4_prompts(body: PromptsStepRequest, request: Request):
    """Generate prompts per category, or apply the user's edits to the existing ones"""
    user_id = require_user_id(request)
    brand = get_owned_brand(body.brandId, user_id)
    categories = list(db.brand_categories.find({"brandId": body.brandId}))
    if not categories:
        raise HTTPException(status_code=400, detail="No categories found. Complete step 2 first.")

    try:
        existing = list(db.category_prompts.find({"brandId": body.brandId}).sort("created_at", 1))
        if body.prompts and existing:
            for index, edited in enumerate(body.prompts):
                if index >= len(existing):
                    break
                text = edited.promptText.strip()
                if text and text != existing[index]["promptText"]:
                    db.category_prompts.update_one(
                        {"_id": existing[index]["_id"]},
                        {"$set": {"promptText": text, "updated_at": datetime.utcnow()}}
                    )
                    existing[index]["promptText"] = text
            prompts = existing
        else:
            prompts = await brand_analysis.generate_and_save_prompts(brand, categories)

        if not brand.get("isAdminAnalysis"):
            save_step(user_id, 4, {"promptCount": len(prompts)}, completed=True)
        return {
            "success": True,
            "prompts": [
                {"id": str(p["_id"]), "promptText": p["promptText"], "categoryName": p.get("categoryName")}
                for p in prompts
            ],
        }
    except HTTPException:
        raise
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/complete")
async def complete_onboarding(body: CompleteRequest, request: Request):
    """Answer every prompt and compute the brand's first share of voice"""
    user_id = require_user_id(request)
    brand = get_owned_brand(body.brandId, user_id)
    prompts = list(db.category_prompts.find({"brandId": body.brandId}))
    if not prompts:
        raise HTTPException(status_code=400, detail="No prompts found. Complete step 4 first.")

    try:
        result = await brand_analysis.analyze_prompts(
            brand, user_id, prompts, brand.get("analysisSessionId")
        )
        if not brand.get("isAdminAnalysis"):
            db.onboarding_progress.update_one(
                {"userId": user_id},
                {"$set": {"isCompleted": True, "completedAt": datetime.utcnow()}},
                upsert=True,
            )
        return {"success": True, "brandId": body.brandId, "analysis": result}
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("onboarding_complete_failed", user_id=user_id, brand_id=body.brandId)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/status")
async def get_status(request: Request):
    user_id = require_user_id(request)
    progress = progress_helper(db.onboarding_progress.find_one({"userId": user_id}))
    brand = db.brand_profiles.find_one({"ownerUserId": user_id, "isAdminAnalysis": {"$ne": True}})
    return {
        "success": True,
        "isCompleted": progress["isCompleted"],
        "currentStep": progress["currentStep"],
        "hasBrand": brand is not None,
        "brandId": str(brand["_id"]) if brand else None,
    }
