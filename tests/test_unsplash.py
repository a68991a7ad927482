"""Unsplash banner search and attribution"""

import httpx
import pytest

from snowball import config, unsplash


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(config, "UNSPLASH_ACCESS_KEY", "access-key")


@pytest.mark.parametrize("title,keywords,expected", [
    ("How to Brew the Best Coffee at Home", "", "brew coffee home business professional"),
    ("Tips", ["a", "to"], unsplash.FALLBACK_TERMS),
    ("Guide", ["espresso", "grinders"], "espresso grinders business professional"),
])
def test_extract_search_terms(title, keywords, expected):
    assert unsplash.extract_search_terms(title, keywords) == expected


async def test_not_configured(monkeypatch):
    monkeypatch.setattr(config, "UNSPLASH_ACCESS_KEY", "your_unsplash_access_key_here")
    assert await unsplash.search_banner("Coffee") is None


async def test_search_picks_first_photo_and_tracks_download(configured, mock_http):
    requests = []
    photo = {
        "id": "p1",
        "alt_description": "A cup of coffee",
        "urls": {"regular": "https://images.unsplash.com/p1"},
        "links": {"html": "https://unsplash.com/photos/p1", "download_location": "https://api.unsplash.com/photos/p1/download"},
        "user": {"name": "Ana", "links": {"html": "https://unsplash.com/@ana"}},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path == "/search/photos":
            return httpx.Response(200, json={"results": [photo]})
        return httpx.Response(200, json={})

    mock_http(handler)
    banner = await unsplash.search_banner("Brewing coffee", ["espresso"])

    assert banner["url"] == "https://images.unsplash.com/p1"
    assert banner["bannerData"]["photographer"] == "Ana"
    assert banner["bannerData"]["altText"] == "A cup of coffee"
    assert requests[0].url.params["orientation"] == "landscape"
    assert requests[0].headers["Authorization"] == "Client-ID access-key"
    assert requests[1].url.path == "/photos/p1/download"


async def test_search_errors_yield_no_banner(configured, mock_http):
    mock_http(lambda request: httpx.Response(500))
    assert await unsplash.search_banner("Coffee") is None


def test_banner_html_escapes_and_attributes():
    html = unsplash.banner_html("https://img/x.jpg", {
        "altText": 'Say "hi"', "photographer": "Ana <3",
        "photographerUrl": "https://unsplash.com/@ana", "unsplashUrl": "https://unsplash.com/photos/x",
    })
    assert 'alt="Say &quot;hi&quot;"' in html
    assert "Ana &lt;3" in html
    assert "utm_source=snowball" in html
    assert unsplash.banner_html(None, {}) == ""
