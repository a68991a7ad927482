#!/usr/bin/env python3
"""
MongoDB connection shared by every router
"""

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pymongo import ASCENDING, MongoClient

from snowball.config import MONGODB_DB_NAME, MONGODB_URI

client = MongoClient(MONGODB_URI)
db = client[MONGODB_DB_NAME]

OAUTH_STATE_TTL_SECONDS = 600


def to_object_id(value: str, label: str = "record") -> ObjectId:
    """Parse a path id, answering 404 for anything that is not an ObjectId"""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=404, detail=f"{label.capitalize()} not found")


def ensure_indexes() -> None:
    """Create the unique and TTL indexes the collections rely on"""
    db.users.create_index("email", unique=True)
    db.cms_credentials.create_index(
        [("userId", ASCENDING), ("platform", ASCENDING)], unique=True
    )
    db.oauth_states.create_index("state", unique=True)
    db.oauth_states.create_index("createdAt", expireAfterSeconds=OAUTH_STATE_TTL_SECONDS)
    db.content_calendar.create_index([("userId", ASCENDING), ("date", ASCENDING)])
    db.content_calendar.create_index([("status", ASCENDING), ("date", ASCENDING)])
    db.brand_share_of_voice.create_index("analysisSessionId")
    db.super_user_analyses.create_index("analysisId", unique=True)
