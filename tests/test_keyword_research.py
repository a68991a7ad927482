"""DataForSEO keyword research, filtering and the template fallback"""

import json

import httpx
import pytest

from snowball import config, keyword_research
from snowball.keyword_research import (
    extract_domain_from_url,
    fallback_keywords,
    filter_keywords_by_relevance,
    format_keywords_for_content_generation,
)


def kw(keyword, volume, difficulty=10):
    return {"keyword": keyword, "searchVolume": volume, "difficulty": difficulty}


@pytest.mark.parametrize("url,expected", [
    ("https://www.example.com/blog/post", "example.com"),
    ("example.com", "example.com"),
    ("", None),
    (None, None),
])
def test_extract_domain_from_url(url, expected):
    assert extract_domain_from_url(url) == expected


class TestFilter:
    def test_thresholds_and_ordering(self):
        keywords = [kw("cheap shoes", 150), kw("rare term", 20), kw("hard term", 5000, 90), kw("running shoes", 900)]
        result = filter_keywords_by_relevance(keywords)
        assert [k["keyword"] for k in result] == ["running shoes", "cheap shoes"]

    def test_category_relevance(self):
        keywords = [kw("running shoes", 900), kw("tax advice", 800), kw("trail running tips", 300)]
        result = filter_keywords_by_relevance(keywords, ["Running", {"categoryName": "Trail Gear"}])
        assert [k["keyword"] for k in result] == ["running shoes", "trail running tips"]

    def test_irrelevant_categories_keep_everything(self):
        keywords = [kw("running shoes", 900), kw("tax advice", 800)]
        result = filter_keywords_by_relevance(keywords, ["Gardening"])
        assert len(result) == 2


def test_format_groups():
    keywords = [
        kw("best trail running shoes", 2000, 40),
        kw("shoes", 700, 20),
        kw("shoe care", 100, 50),
    ]
    formatted = format_keywords_for_content_generation(keywords)
    assert [k["keyword"] for k in formatted["highVolume"]] == ["best trail running shoes"]
    assert [k["keyword"] for k in formatted["mediumVolume"]] == ["shoes"]
    assert [k["keyword"] for k in formatted["longTail"]] == ["best trail running shoes"]
    assert [k["keyword"] for k in formatted["lowCompetition"]] == ["shoes"]
    assert formatted["averageSearchVolume"] == 933
    assert formatted["keywordString"].startswith("best trail running shoes (2000 searches)")


def test_format_empty():
    formatted = format_keywords_for_content_generation([])
    assert formatted["totalKeywords"] == 0
    assert formatted["averageSearchVolume"] == 0


def test_fallback_keywords_use_domain_and_categories():
    result = fallback_keywords("https://www.acme.com", ["Widgets", {"categoryName": "Gadgets"}])
    keywords = [k["keyword"] for k in result["keywords"]]
    assert keywords[0] == "acme guide"
    assert "best Widgets" in keywords
    assert "Gadgets guide" in keywords
    assert result["source"] == "fallback"
    assert all(k["source"] == "fallback" for k in result["keywords"])


async def test_comprehensive_keywords_fall_back_without_credentials(monkeypatch):
    monkeypatch.setattr(config, "DATAFORSEO_LOGIN", None)
    result = await keyword_research.get_comprehensive_keywords("acme.com", ["Widgets"])
    assert result["source"] == "fallback"


async def test_comprehensive_keywords_from_ranked_results(monkeypatch, mock_http):
    monkeypatch.setattr(config, "DATAFORSEO_LOGIN", "login")
    monkeypatch.setattr(config, "DATAFORSEO_PASSWORD", "password")
    sent = {}

    def handler(request: httpx.Request) -> httpx.Response:
        sent["url"] = str(request.url)
        sent["body"] = json.loads(request.content)
        items = [
            {"keyword_data": {"keyword": "widget reviews", "keyword_info": {"search_volume": 400, "keyword_difficulty": 20}}},
            {"keyword_data": {"keyword": "widget prices", "keyword_info": {"search_volume": 1200, "keyword_difficulty": 35}}},
            {"keyword_data": {"keyword": "obscure", "keyword_info": {"search_volume": 10, "keyword_difficulty": 5}}},
        ]
        return httpx.Response(200, json={"status_code": 20000, "tasks": [{"result": [{"items": items}]}]})

    mock_http(handler)
    result = await keyword_research.get_comprehensive_keywords("https://www.acme.com", [])

    assert sent["url"].endswith("/v3/dataforseo_labs/google/ranked_keywords/live")
    assert sent["body"][0]["target"] == "acme.com"
    assert result["source"] == "dataforseo"
    assert [k["keyword"] for k in result["keywords"]] == ["widget prices", "widget reviews"]


async def test_api_error_status_falls_back(monkeypatch, mock_http):
    monkeypatch.setattr(config, "DATAFORSEO_LOGIN", "login")
    monkeypatch.setattr(config, "DATAFORSEO_PASSWORD", "password")
    mock_http(lambda request: httpx.Response(200, json={"status_code": 40100, "status_message": "Unauthorized"}))

    ranked = await keyword_research.get_ranked_keywords("acme.com")
    assert ranked["success"] is False
    assert "Unauthorized" in ranked["error"]


async def test_keyword_suggestions(monkeypatch, mock_http):
    monkeypatch.setattr(config, "DATAFORSEO_LOGIN", "login")
    monkeypatch.setattr(config, "DATAFORSEO_PASSWORD", "password")
    sent = {}

    def handler(request: httpx.Request) -> httpx.Response:
        sent["body"] = json.loads(request.content)
        suggestions = [{"keyword": "widget ideas", "search_volume": 300, "keyword_difficulty": 12, "cpc": 0.4}]
        return httpx.Response(200, json={"status_code": 20000, "tasks": [{"result": suggestions}]})

    mock_http(handler)
    result = await keyword_research.get_keyword_suggestions("widget", limit=500)

    assert sent["body"][0]["limit"] == 100
    assert sent["body"][0]["filters"] == [["search_volume", ">=", 50]]
    assert result["totalSuggestions"] == 1
    assert result["suggestions"][0] == {
        "keyword": "widget ideas", "searchVolume": 300, "difficulty": 12,
        "cpc": 0.4, "competition": 0, "source": "dataforseo",
    }


async def test_keyword_suggestions_without_credentials(monkeypatch):
    monkeypatch.setattr(config, "DATAFORSEO_LOGIN", None)
    result = await keyword_research.get_keyword_suggestions("widget")
    assert result["success"] is False
    assert result["suggestions"] == []
