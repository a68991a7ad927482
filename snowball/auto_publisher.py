#!/usr/bin/env python3
"""
Auto publisher - pushes approved calendar entries to the user's CMS every day at 09:00 UTC
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

import httpx
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from snowball import cms_integration, config
from snowball.cms_integration import CMSPublishError
from snowball.database import db, to_object_id

logger = structlog.get_logger()

JOB_ID = "auto_publish_daily"
PUBLISHABLE_STATUSES = ("draft", "approved")


def start_of_day(moment: Optional[datetime] = None) -> datetime:
    moment = moment or datetime.utcnow()
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def find_credentials(user_id: str, platform: str) -> Tuple[Optional[dict], str]:
    """
    Credentials for the entry's platform, else any active CMS connection of the user.
    Returns (credentials, platform actually used).
    """
    credentials = db.cms_credentials.find_one({"userId": user_id, "platform": platform, "isActive": True})
    if credentials:
        return credentials, platform

    credentials = db.cms_credentials.find_one({"userId": user_id, "isActive": True})
    if credentials:
        logger.info("auto_publish_platform_fallback", requested=platform, using=credentials["platform"])
        return credentials, credentials["platform"]
    return None, platform


async def first_webflow_site(access_token: str) -> str:
    try:
        sites = await cms_integration.list_webflow_sites(access_token)
    except (CMSPublishError, httpx.HTTPError, KeyError, ValueError) as e:
        logger.error("auto_publish_webflow_sites_failed", error=str(e))
        raise CMSPublishError("Unable to fetch Webflow sites. Please check your Webflow connection.")
    if not sites:
        raise CMSPublishError("No Webflow sites found. Please create a site in Webflow first.")
    return sites[0]["id"]


class AutoPublisher:
    """Daily publisher for approved content-calendar entries"""

    def __init__(self):
        self.is_running = False
        self.scheduler: Optional[AsyncIOScheduler] = None

    def start(self) -> None:
        if not config.AUTO_PUBLISH_ENABLED:
            logger.info("auto_publisher_disabled")
            return
        if self.scheduler and self.scheduler.running:
            return

        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self.scheduler.add_job(
            self.check_and_publish_content,
            CronTrigger(hour=9, minute=0, timezone="UTC"),
            id=JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self.scheduler.start()
        logger.info("auto_publisher_started", schedule="09:00 UTC")

    def shutdown(self) -> None:
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("auto_publisher_stopped")
        self.scheduler = None

    async def publish_entry(self, entry: dict) -> Dict[str, Any]:
        """Publish one entry and mark it published. Raises CMSPublishError on failure."""
        credentials, platform = find_credentials(entry["userId"], entry.get("cmsPlatform") or "wordpress")
        if not credentials:
            raise CMSPublishError(
                "No active CMS credentials found. Please connect a CMS platform (Shopify, Webflow or WordPress) first."
            )

        content = {
            "title": entry.get("title"),
            "description": entry.get("content") or entry.get("description"),
            "keywords": entry.get("keywords") or [],
            "targetAudience": entry.get("targetAudience"),
        }
        if platform == "webflow":
            access_token = (credentials.get("authDetails") or {}).get("accessToken")
            if not access_token:
                raise CMSPublishError("Missing Webflow credentials: accessToken is required")
            content["siteId"] = await first_webflow_site(access_token)

        result = await cms_integration.publish_content(platform, credentials, content)
        if not result["success"]:
            raise CMSPublishError(f"CMS publishing failed: {result['error']}")

        now = datetime.utcnow()
        db.content_calendar.update_one(
            {"_id": entry["_id"]},
            {
                "$set": {
                    "status": "published",
                    "publishedAt": now,
                    "publishedUrl": result.get("url"),
                    "cmsPostId": result.get("postId"),
                    "cmsPlatform": platform,
                    "updatedAt": now,
                },
                "$unset": {"error": ""},
            },
        )
        logger.info("content_published", entry_id=str(entry["_id"]), platform=platform, url=result.get("url"))
        return {**result, "platform": platform}

    def mark_failed(self, entry: dict, error: Exception) -> None:
        message = str(error) or type(error).__name__
        if isinstance(error, CMSPublishError):
            logger.error("content_publish_failed", entry_id=str(entry["_id"]), error=message)
        else:
            logger.exception("content_publish_failed", entry_id=str(entry["_id"]), error=message)
        db.content_calendar.update_one(
            {"_id": entry["_id"]},
            {"$set": {"status": "failed", "error": message, "updatedAt": datetime.utcnow()}},
        )

    async def check_and_publish_content(self) -> Dict[str, int]:
        """Publish every approved entry dated today. Overlapping runs are skipped."""
        if self.is_running:
            logger.info("auto_publisher_already_running")
            return {"published": 0, "failed": 0, "skipped": 1}

        self.is_running = True
        published = failed = 0
        try:
            today = start_of_day()
            entries = list(db.content_calendar.find({
                "status": "approved",
                "date": {"$gte": today, "$lt": today + timedelta(days=1)},
            }))
            logger.info("auto_publish_check_started", entries=len(entries))

            for entry in entries:
                try:
                    await self.publish_entry(entry)
                    published += 1
                except Exception as e:
                    self.mark_failed(entry, e)
                    failed += 1

            logger.info("auto_publish_check_completed", published=published, failed=failed)
        finally:
            self.is_running = False
        return {"published": published, "failed": failed, "skipped": 0}

    async def publish_specific_content(self, content_id: str, user_id: str) -> Dict[str, Any]:
        entry = db.content_calendar.find_one({"_id": to_object_id(content_id, "content"), "userId": user_id})
        if not entry:
            return {"success": False, "error": "Content not found"}

        if entry.get("status") == "published":
            return {
                "success": True,
                "message": f'Content "{entry.get("title")}" was already published',
                "data": {"alreadyPublished": True, "url": entry.get("publishedUrl")},
            }
        if entry.get("status") not in PUBLISHABLE_STATUSES:
            return {
                "success": False,
                "error": f"Content status is {entry.get('status')}, must be draft or approved to publish",
            }

        try:
            result = await self.publish_entry(entry)
        except Exception as e:
            self.mark_failed(entry, e)
            return {"success": False, "error": str(e) or type(e).__name__}

        return {
            "success": True,
            "message": f'Content "{entry.get("title")}" published successfully to {result["platform"]}',
            "data": result,
        }

    async def retry_failed_publishing(self, user_id: Optional[str] = None) -> Dict[str, int]:
        query: Dict[str, Any] = {"status": "failed"}
        if user_id:
            query["userId"] = user_id

        retried = succeeded = 0
        for entry in list(db.content_calendar.find(query)):
            retried += 1
            try:
                await self.publish_entry(entry)
                succeeded += 1
            except Exception as e:
                self.mark_failed(entry, e)
        logger.info("auto_publish_retry_completed", retried=retried, succeeded=succeeded)
        return {"retried": retried, "succeeded": succeeded}

    def get_publishing_stats(self, user_id: Optional[str] = None) -> Dict[str, Any]:
        match: Dict[str, Any] = {"userId": user_id} if user_id else {}
        by_status = {
            row["_id"]: row["count"]
            for row in db.content_calendar.aggregate([
                {"$match": match},
                {"$group": {"_id": "$status", "count": {"$sum": 1}}},
            ])
        }
        return {
            "total": db.content_calendar.count_documents(match),
            "publishedToday": db.content_calendar.count_documents(
                {**match, "status": "published", "publishedAt": {"$gte": start_of_day()}}
            ),
            "byStatus": by_status,
        }


auto_publisher = AutoPublisher()
