"""Calendar generation helpers, the calendar routes and the auto publisher"""

import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from fastapi import HTTPException

from snowball import cms_integration, config, llm
from snowball.auto_publisher import AutoPublisher, auto_publisher, find_credentials
from snowball.content_calendar import match_source_keywords, normalize_calendar, parse_date


class TestParseDate:
    def test_truncates_to_midnight(self):
        assert parse_date("2025-03-04T15:30:00Z") == datetime(2025, 3, 4)

    def test_plain_date(self):
        assert parse_date("2025-03-04") == datetime(2025, 3, 4)

    @pytest.mark.parametrize("value", [None, "", "next tuesday"])
    def test_rejects(self, value):
        with pytest.raises(HTTPException) as exc:
            parse_date(value)
        assert exc.value.status_code == 400


class TestNormalizeCalendar:
    def test_consecutive_dates_and_defaults(self):
        raw = {"calendar": [
            {"title": "Post one", "description": "d1", "keywords": "a, b"},
            {"description": "no title is skipped"},
            {"title": "Post two", "keywords": ["c"], "targetAudience": "Founders"},
        ]}
        entries = normalize_calendar(raw, datetime(2025, 1, 31), days=7)
        assert [e["date"] for e in entries] == ["2025-01-31", "2025-02-01"]
        assert entries[0]["keywords"] == ["a", "b"]
        assert entries[0]["targetAudience"] == "General Audience"
        assert entries[1]["targetAudience"] == "Founders"

    def test_capped_at_days(self):
        raw = [{"title": f"T{i}"} for i in range(10)]
        assert len(normalize_calendar(raw, datetime(2025, 1, 1), days=3)) == 3

    def test_not_a_list(self):
        with pytest.raises(llm.LLMResponseError):
            normalize_calendar("text", datetime(2025, 1, 1), days=3)


class TestMatchSourceKeywords:
    researched = [
        {"keyword": "trail running shoes", "searchVolume": 900, "difficulty": 30},
        {"keyword": "marathon training", "searchVolume": 700, "difficulty": 40},
        {"keyword": "shoe care", "searchVolume": 200, "difficulty": 10},
        {"keyword": "running socks", "searchVolume": 100, "difficulty": 5},
    ]

    def test_matches_either_direction(self):
        matched = match_source_keywords(["Trail Running Shoes for beginners"], self.researched)
        assert [m["keyword"] for m in matched] == ["trail running shoes"]
        assert matched[0]["source"] == "dataforseo"

    def test_falls_back_to_top_three(self):
        matched = match_source_keywords(["cooking"], self.researched)
        assert [m["keyword"] for m in matched] == ["trail running shoes", "marathon training", "shoe care"]


@pytest.mark.api
class TestCalendarRoutes:
    def test_generate_returns_unsaved_calendar(self, client, mock_db, auth_headers, monkeypatch):
        mock_db.brand_profiles.find_one.return_value = None
        answer = json.dumps({"calendar": [
            {"title": "Why trail shoes matter", "description": "d", "keywords": ["trail shoes"]},
            {"title": "Marathon basics", "description": "d", "keywords": ["marathon"]},
        ]})
        monkeypatch.setattr(llm, "complete", AsyncMock(return_value=answer))

        response = client.post(
            "/api/v1/content-calendar/generate",
            json={"companyName": "Acme", "startDate": "2025-05-01", "days": 2},
            headers=auth_headers,
        )

        assert response.status_code == 200
        calendar = response.json()["calendar"]
        assert [e["date"] for e in calendar] == ["2025-05-01", "2025-05-02"]
        mock_db.content_calendar.insert_many.assert_not_called()

    def test_generate_unparseable_answer_is_502(self, client, mock_db, auth_headers, monkeypatch):
        mock_db.brand_profiles.find_one.return_value = None
        monkeypatch.setattr(llm, "complete", AsyncMock(return_value="I cannot help with that"))
        response = client.post("/api/v1/content-calendar/generate", json={"companyName": "Acme"}, headers=auth_headers)
        assert response.status_code == 502

    def test_approve_saves_entries(self, client, mock_db, auth_headers, user_id):
        mock_db.content_calendar.insert_many.return_value = MagicMock(inserted_ids=[ObjectId()])
        response = client.post(
            "/api/v1/content-calendar/approve",
            json={
                "companyName": "Acme",
                "cmsPlatform": "shopify",
                "calendar": [{"date": "2025-05-01", "title": "T", "description": "D"}],
            },
            headers=auth_headers,
        )
        assert response.status_code == 200
        saved = mock_db.content_calendar.insert_many.call_args[0][0][0]
        assert saved["status"] == "approved"
        assert saved["cmsPlatform"] == "shopify"
        assert saved["userId"] == user_id
        assert saved["date"] == datetime(2025, 5, 1)

    def test_approve_rejects_unknown_platform(self, client, auth_headers):
        response = client.post(
            "/api/v1/content-calendar/approve",
            json={"companyName": "Acme", "cmsPlatform": "ghost",
                  "calendar": [{"date": "2025-05-01", "title": "T", "description": "D"}]},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_other_users_entry_is_forbidden(self, client, mock_db, auth_headers):
        mock_db.content_calendar.find_one.return_value = {"_id": ObjectId(), "userId": "someone-else"}
        response = client.get(f"/api/v1/content-calendar/{ObjectId()}", headers=auth_headers)
        assert response.status_code == 403

    def test_missing_entry_is_404(self, client, mock_db, auth_headers):
        mock_db.content_calendar.find_one.return_value = None
        response = client.get(f"/api/v1/content-calendar/{ObjectId()}", headers=auth_headers)
        assert response.status_code == 404

    def test_invalid_status_filter(self, client, auth_headers):
        response = client.get("/api/v1/content-calendar/", params={"status": "archived"}, headers=auth_headers)
        assert response.status_code == 400

    def test_publish_already_published(self, client, mock_db, auth_headers, user_id):
        mock_db.content_calendar.find_one.return_value = {
            "_id": ObjectId(), "userId": user_id, "title": "T",
            "status": "published", "publishedUrl": "https://blog/t",
        }
        response = client.post(f"/api/v1/content-calendar/{ObjectId()}/publish", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["data"] == {"alreadyPublished": True, "url": "https://blog/t"}

    def test_trigger_publish_is_superuser_only(self, client, mock_db, auth_headers, user_id, monkeypatch):
        mock_db.users.find_one.return_value = {"_id": ObjectId(user_id), "role": "user"}
        run = AsyncMock()
        monkeypatch.setattr(auto_publisher, "check_and_publish_content", run)

        response = client.post("/api/v1/content-calendar/trigger-publish", headers=auth_headers)

        assert response.status_code == 403
        run.assert_not_called()

    def test_trigger_publish_for_superuser(self, client, mock_db, auth_headers, user_id, monkeypatch):
        mock_db.users.find_one.return_value = {"_id": ObjectId(user_id), "role": "superuser"}
        monkeypatch.setattr(auto_publisher, "check_and_publish_content", AsyncMock(
            return_value={"published": 2, "failed": 0, "skipped": 0},
        ))
        response = client.post("/api/v1/content-calendar/trigger-publish", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["result"]["published"] == 2


class TestFindCredentials:
    def test_exact_platform(self, mock_db):
        creds = {"platform": "shopify"}
        mock_db.cms_credentials.find_one.return_value = creds
        assert find_credentials("u1", "shopify") == (creds, "shopify")

    def test_falls_back_to_any_active(self, mock_db):
        mock_db.cms_credentials.find_one.side_effect = [None, {"platform": "webflow"}]
        creds, platform = find_credentials("u1", "wordpress")
        assert platform == "webflow"

    def test_nothing_connected(self, mock_db):
        mock_db.cms_credentials.find_one.return_value = None
        assert find_credentials("u1", "wordpress") == (None, "wordpress")


class TestAutoPublisher:
    def entry(self, **overrides):
        return {
            "_id": ObjectId(), "userId": "u1", "title": "Post", "description": "A description",
            "content": "<p>Body of the post</p>", "keywords": ["k"], "status": "approved",
            "cmsPlatform": "shopify", **overrides,
        }

    async def test_overlapping_run_is_skipped(self, mock_db):
        publisher = AutoPublisher()
        publisher.is_running = True
        assert await publisher.check_and_publish_content() == {"published": 0, "failed": 0, "skipped": 1}
        mock_db.content_calendar.find.assert_not_called()

    async def test_publishes_and_records_failures(self, mock_db, monkeypatch):
        good, bad = self.entry(), self.entry(userId="u2")
        mock_db.content_calendar.find.return_value = [good, bad]
        mock_db.cms_credentials.find_one.side_effect = lambda query: (
            {"platform": "shopify", "authDetails": {}} if query["userId"] == "u1" else None
        )
        publish = AsyncMock(return_value={"success": True, "postId": 7, "url": "https://shop/blogs/news/post"})
        monkeypatch.setattr(cms_integration, "publish_content", publish)

        publisher = AutoPublisher()
        result = await publisher.check_and_publish_content()

        assert result == {"published": 1, "failed": 1, "skipped": 0}
        assert publisher.is_running is False
        sent = publish.call_args[0][2]
        assert sent["description"] == "<p>Body of the post</p>"

        updates = [c[0] for c in mock_db.content_calendar.update_one.call_args_list]
        published = next(u for u in updates if u[0]["_id"] == good["_id"])[1]
        assert published["$set"]["status"] == "published"
        assert published["$set"]["publishedUrl"] == "https://shop/blogs/news/post"
        assert published["$unset"] == {"error": ""}
        failed = next(u for u in updates if u[0]["_id"] == bad["_id"])[1]
        assert failed["$set"]["status"] == "failed"
        assert "No active CMS credentials" in failed["$set"]["error"]

    async def test_publish_failure_marks_entry(self, mock_db, monkeypatch):
        entry = self.entry()
        mock_db.content_calendar.find_one.return_value = entry
        mock_db.cms_credentials.find_one.return_value = {"platform": "shopify", "authDetails": {}}
        monkeypatch.setattr(cms_integration, "publish_content", AsyncMock(
            return_value={"success": False, "platform": "shopify", "error": "Shopify API error: 422"},
        ))

        result = await AutoPublisher().publish_specific_content(str(entry["_id"]), "u1")

        assert result["success"] is False
        assert "Shopify API error: 422" in result["error"]
        assert mock_db.content_calendar.update_one.call_args[0][1]["$set"]["status"] == "failed"

    async def test_wrong_status_is_refused(self, mock_db):
        mock_db.content_calendar.find_one.return_value = self.entry(status="failed")
        result = await AutoPublisher().publish_specific_content(str(ObjectId()), "u1")
        assert result["success"] is False
        assert "must be draft or approved" in result["error"]

    async def test_retry_failed(self, mock_db, monkeypatch):
        mock_db.content_calendar.find.return_value = [self.entry(status="failed"), self.entry(status="failed")]
        mock_db.cms_credentials.find_one.return_value = {"platform": "shopify", "authDetails": {}}
        monkeypatch.setattr(cms_integration, "publish_content", AsyncMock(side_effect=[
            {"success": True, "postId": 1, "url": "u"},
            {"success": False, "platform": "shopify", "error": "boom"},
        ]))
        assert await AutoPublisher().retry_failed_publishing("u1") == {"retried": 2, "succeeded": 1}
        assert mock_db.content_calendar.find.call_args[0][0] == {"status": "failed", "userId": "u1"}

    async def test_incomplete_webflow_credentials_do_not_stop_the_batch(self, mock_db, monkeypatch):
        webflow_entry, shopify_entry = self.entry(userId="u-webflow", cmsPlatform="webflow"), self.entry()
        mock_db.content_calendar.find.return_value = [webflow_entry, shopify_entry]
        mock_db.cms_credentials.find_one.side_effect = lambda query: (
            {"platform": "webflow", "authDetails": {}} if query["userId"] == "u-webflow"
            else {"platform": "shopify", "authDetails": {"accessToken": "t"}}
        )
        publish = AsyncMock(return_value={"success": True, "postId": 1, "url": "https://shop/blogs/news/post"})
        monkeypatch.setattr(cms_integration, "publish_content", publish)

        result = await AutoPublisher().check_and_publish_content()

        assert result == {"published": 1, "failed": 1, "skipped": 0}
        publish.assert_awaited_once()
        updates = {c[0][0]["_id"]: c[0][1] for c in mock_db.content_calendar.update_one.call_args_list}
        assert updates[webflow_entry["_id"]]["$set"]["status"] == "failed"
        assert "accessToken is required" in updates[webflow_entry["_id"]]["$set"]["error"]
        assert updates[shopify_entry["_id"]]["$set"]["status"] == "published"

    async def test_unexpected_errors_are_recorded_per_entry(self, mock_db, monkeypatch):
        first, second = self.entry(), self.entry()
        mock_db.content_calendar.find.return_value = [first, second]
        mock_db.cms_credentials.find_one.return_value = {"platform": "shopify", "authDetails": {}}
        monkeypatch.setattr(cms_integration, "publish_content", AsyncMock(side_effect=[
            KeyError("article"),
            {"success": True, "postId": 2, "url": "u"},
        ]))

        publisher = AutoPublisher()
        assert await publisher.check_and_publish_content() == {"published": 1, "failed": 1, "skipped": 0}
        assert publisher.is_running is False
        failed = mock_db.content_calendar.update_one.call_args_list[0][0]
        assert failed[0]["_id"] == first["_id"]
        assert failed[1]["$set"]["status"] == "failed"
        assert failed[1]["$set"]["error"] == "'article'"

    async def test_unexpected_error_on_manual_publish(self, mock_db, monkeypatch):
        entry = self.entry()
        mock_db.content_calendar.find_one.return_value = entry
        mock_db.cms_credentials.find_one.return_value = {"platform": "shopify", "authDetails": {}}
        monkeypatch.setattr(cms_integration, "publish_content", AsyncMock(side_effect=ValueError()))

        result = await AutoPublisher().publish_specific_content(str(entry["_id"]), "u1")

        assert result == {"success": False, "error": "ValueError"}
        assert mock_db.content_calendar.update_one.call_args[0][1]["$set"]["status"] == "failed"

    async def test_retry_continues_after_unexpected_error(self, mock_db, monkeypatch):
        mock_db.content_calendar.find.return_value = [self.entry(status="failed"), self.entry(status="failed")]
        mock_db.cms_credentials.find_one.return_value = {"platform": "shopify", "authDetails": {}}
        monkeypatch.setattr(cms_integration, "publish_content", AsyncMock(side_effect=[
            RuntimeError("connection reset"),
            {"success": True, "postId": 1, "url": "u"},
        ]))
        assert await AutoPublisher().retry_failed_publishing("u1") == {"retried": 2, "succeeded": 1}

    def test_stats(self, mock_db):
        mock_db.content_calendar.aggregate.return_value = [{"_id": "approved", "count": 2}, {"_id": "published", "count": 1}]
        mock_db.content_calendar.count_documents.side_effect = [3, 1]
        stats = AutoPublisher().get_publishing_stats("u1")
        assert stats == {"total": 3, "publishedToday": 1, "byStatus": {"approved": 2, "published": 1}}

    def test_start_is_a_no_op_when_disabled(self, monkeypatch):
        monkeypatch.setattr(config, "AUTO_PUBLISH_ENABLED", False)
        publisher = AutoPublisher()
        publisher.start()
        assert publisher.scheduler is None
