"""Content helpers and per-platform publishing over a mocked transport"""

import json

import httpx
import pytest
from bs4 import BeautifulSoup

from snowball import cms_integration, config
from snowball.cms_integration import (
    CMSPublishError,
    build_webflow_field_data,
    convert_local_image_urls,
    keyword_list,
    pick_blog_collection,
    plain_text,
    slugify,
    to_html,
    validate_content,
)

CONTENT = {
    "title": "Winter Running Guide",
    "description": "<p>Layer up and keep moving when it gets cold.</p>",
    "keywords": "running, winter",
    "targetAudience": "Runners",
}


class TestValidateContent:
    def test_returns_trimmed_fields(self):
        assert validate_content({"title": " Title ", "description": " long enough body "}) == (
            "Title", "long enough body",
        )

    @pytest.mark.parametrize("content,message", [
        ({"title": "", "description": "long enough body"}, "must have title and description"),
        ({"title": "ab", "description": "long enough body"}, "at least 3 characters"),
        ({"title": "Title", "description": "short"}, "at least 10 characters"),
    ])
    def test_rejects(self, content, message):
        with pytest.raises(CMSPublishError, match=message):
            validate_content(content)


def test_keyword_list():
    assert keyword_list("a, b,,c") == ["a", "b", "c"]
    assert keyword_list(None, ["AI Content"]) == ["AI Content"]
    assert keyword_list(["x"]) == ["x"]


@pytest.mark.parametrize("title,slug", [
    ("Hello, World!", "hello-world"),
    ("  Spaces  and -- dashes ", "spaces-and-dashes"),
    ("x" * 80, "x" * 50),
])
def test_slugify(title, slug):
    assert slugify(title) == slug


class TestToHtml:
    def test_html_passes_through(self):
        assert to_html("<p>Hi</p>") == "<p>Hi</p>"

    def test_markdown_is_rendered(self):
        html = to_html("# Title\n\nSome **bold** text")
        assert "<h1>Title</h1>" in html
        assert "<strong>bold</strong>" in html

    def test_comparison_signs_are_not_html(self):
        assert to_html("Use a < b and c > d") == "<p>Use a &lt; b and c &gt; d</p>"

    @pytest.mark.parametrize("body", [
        "<p>hello world</p><script>alert(1)</script>",
        '<p>hello world</p><iframe src="https://evil.example"></iframe>',
        '<p>hello world</p><object data="x.swf"></object><embed src="x.swf">',
        "hello world\n\n<script>alert(1)</script>",
    ])
    def test_embedded_code_is_dropped(self, body):
        html = to_html(body)
        assert "hello world" in html
        for tag in ("<script", "<iframe", "<object", "<embed"):
            assert tag not in html

    def test_handlers_and_javascript_links_are_dropped(self):
        html = to_html('<p onclick="steal()">x <a href="javascript:steal()">link</a> <a href="https://ok.example">ok</a></p>')
        soup = BeautifulSoup(html, "html.parser")
        assert soup.p.attrs == {}
        first, second = soup.find_all("a")
        assert "href" not in first.attrs
        assert second["href"] == "https://ok.example"

    def test_obfuscated_javascript_links_are_dropped(self):
        html = to_html('<a href=" Java\tScript:steal()">x</a>')
        assert "href" not in BeautifulSoup(html, "html.parser").a.attrs


def test_plain_text():
    assert plain_text("<h1>Title</h1><p>Some <b>bold</b>\n text</p>") == "Title Some bold text"
    assert plain_text(None) == ""


class TestLocalImages:
    def test_rewritten_to_public_url(self, monkeypatch):
        monkeypatch.setattr(config, "PUBLIC_URL", "https://api.example.com")
        html = '<p><img src="http://localhost:8000/uploads/a.png" alt="a"></p>'
        img = BeautifulSoup(convert_local_image_urls(html), "html.parser").img
        assert img["src"] == "https://api.example.com/uploads/a.png"
        assert img["alt"] == "a"

    def test_removed_when_no_public_url(self, monkeypatch):
        monkeypatch.setattr(config, "PUBLIC_URL", None)
        html = '<p>before</p><img src="http://127.0.0.1/a.png"><p>after</p>'
        converted = convert_local_image_urls(html)
        assert "Image removed" in converted
        assert "<img" not in converted
        assert "after" in converted

    def test_public_images_untouched(self):
        html = '<img src="https://cdn.example.com/a.png">'
        assert convert_local_image_urls(html) == html


def test_pick_blog_collection():
    collections = [{"id": "1", "displayName": "Team"}, {"id": "2", "singularName": "Blog Post"}]
    assert pick_blog_collection(collections)["id"] == "2"
    assert pick_blog_collection([{"id": "9"}])["id"] == "9"
    with pytest.raises(CMSPublishError):
        pick_blog_collection([])


class TestWebflowFields:
    def test_minimal_schema_sends_name_and_slug(self):
        data = build_webflow_field_data("T", "t", "<p>body</p>", [], [], ["name", "slug"])
        assert data == {"name": "T", "slug": "t"}

    def test_known_fields_are_mapped(self):
        slugs = ["name", "slug", "post-body", "post-summary", "tags"]
        data = build_webflow_field_data("T", "t", "<p>body text</p>", ["a", "b"], [], slugs)
        assert data["post-body"] == "<p>body text</p>"
        assert data["post-summary"] == "body text"
        assert data["tags"] == "a, b"

    def test_rich_text_field_used_when_no_body_slug(self):
        fields = [{"slug": "name"}, {"slug": "slug"}, {"slug": "story", "type": "RichText"}]
        data = build_webflow_field_data("T", "t", "<p>x</p>", [], fields, ["name", "slug", "story"])
        assert data["story"] == "<p>x</p>"


async def test_unsupported_platform():
    result = await cms_integration.publish_content("medium", {}, CONTENT)
    assert result == {"success": False, "platform": "medium", "error": "Unsupported platform: medium"}


async def test_wordpress_com_publish(mock_http):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ID": 42, "URL": "https://blog.example.com/winter"})

    mock_http(handler)
    credentials = {"authDetails": {"accessToken": "tok", "tokenType": "Bearer", "sites": [{"ID": 7}]}}
    result = await cms_integration.publish_content("wordpress", credentials, CONTENT)

    assert result["success"] is True
    assert result["postId"] == 42
    assert result["url"] == "https://blog.example.com/winter"
    assert seen["url"] == f"{cms_integration.WORDPRESS_COM_API}/sites/7/posts/new"
    assert seen["auth"] == "Bearer tok"
    assert seen["body"]["tags"] == "running,winter"


async def test_wordpress_com_error_message(mock_http):
    mock_http(lambda request: httpx.Response(403, json={}))
    credentials = {"authDetails": {"accessToken": "tok", "tokenType": "Bearer", "sites": [{"ID": 7}]}}
    result = await cms_integration.publish_content("wordpress", credentials, CONTENT)
    assert result["success"] is False
    assert "Permission denied" in result["error"]


async def test_self_hosted_wordpress_publish(mock_http):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization", "")
        return httpx.Response(201, json={"id": 5, "link": "https://mysite.com/?p=5"})

    mock_http(handler)
    credentials = {"authDetails": {
        "siteUrl": "https://mysite.com/", "username": "admin", "applicationPassword": "abcd efgh",
    }}
    result = await cms_integration.publish_content("wordpress", credentials, CONTENT)

    assert result["success"] is True
    assert result["url"] == "https://mysite.com/?p=5"
    assert seen["url"] == "https://mysite.com/wp-json/wp/v2/posts"
    assert seen["auth"].startswith("Basic ")


async def test_missing_credentials_are_reported(mock_http):
    mock_http(lambda request: httpx.Response(500))
    result = await cms_integration.publish_content("shopify", {"authDetails": {}}, CONTENT)
    assert result == {"success": False, "platform": "shopify", "error": "Missing Shopify credentials"}


async def test_shopify_publish_uses_first_blog(mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and request.url.path.endswith("/blogs.json"):
            return httpx.Response(200, json={"blogs": [{"id": 11, "handle": "news"}]})
        assert request.url.path.endswith("/blogs/11/articles.json")
        article = json.loads(request.content)["article"]
        assert article["tags"] == ["running", "winter"]
        assert "Target Audience:</strong> Runners" in article["body_html"]
        return httpx.Response(201, json={"article": {"id": 99, "handle": "winter-running-guide"}})

    mock_http(handler)
    credentials = {"authDetails": {"shopDomain": "acme.myshopify.com", "accessToken": "shpat"}}
    result = await cms_integration.publish_content("shopify", credentials, CONTENT)

    assert result["success"] is True
    assert result["url"] == "https://acme.myshopify.com/blogs/news/winter-running-guide"


async def test_webflow_requires_site_id():
    result = await cms_integration.publish_content("webflow", {"authDetails": {"accessToken": "t"}}, CONTENT)
    assert result["success"] is False
    assert "Site ID is required" in result["error"]


async def test_self_hosted_connection_requires_all_fields():
    result = await cms_integration.test_self_hosted_wordpress("https://mysite.com", None, "pw")
    assert result["success"] is False


async def test_self_hosted_connection_checks_publish_rights(mock_http):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/wp-json/wp/v2":
            return httpx.Response(200, json={"name": "My Site", "routes": {"/": {}}})
        return httpx.Response(200, json={"id": 1, "name": "Sub", "roles": ["subscriber"], "capabilities": {}})

    mock_http(handler)
    result = await cms_integration.test_self_hosted_wordpress("https://mysite.com", "sub", "pw")
    assert result["success"] is False
    assert "permission to publish" in result["error"]


UNSAFE_CONTENT = {
    **CONTENT,
    "siteId": "site-1",
    "description": (
        "<p>Layer up and keep moving when it gets cold.</p>"
        "<script>steal()</script><iframe src=\"https://evil.example\"></iframe>"
        "<img src=\"https://cdn.example.com/x.png\" onerror=\"steal()\">"
    ),
}

PLATFORM_CREDENTIALS = [
    ("wordpress", {"authDetails": {"accessToken": "tok", "tokenType": "Bearer", "sites": [{"ID": 7}]}}),
    ("wordpress", {"authDetails": {"siteUrl": "https://mysite.com", "username": "admin", "applicationPassword": "pw"}}),
    ("webflow", {"authDetails": {"accessToken": "tok"}}),
    ("shopify", {"authDetails": {"shopDomain": "acme.myshopify.com", "accessToken": "shpat"}}),
    ("wix", {"authDetails": {"siteId": "wix-1", "apiKey": "key", "accessToken": "tok"}}),
]


@pytest.mark.parametrize("platform,credentials", PLATFORM_CREDENTIALS)
async def test_every_platform_receives_sanitized_body(platform, credentials, mock_http):
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            sent.append(request.content.decode())
        # one payload that satisfies every platform's response parsing
        return httpx.Response(200, json={
            "ID": 1, "URL": "https://blog/1", "id": 1, "link": "https://blog/1",
            "blogs": [{"id": 1, "handle": "news"}],
            "article": {"id": 1, "handle": "winter"},
            "post": {"id": "p1", "slug": "winter"},
            "collections": [{"id": "c1", "slug": "blog", "displayName": "Blog"}],
            "fields": [{"slug": "name"}, {"slug": "slug"}, {"slug": "post-body", "type": "RichText"}],
            "shortName": "acme",
        })

    mock_http(handler)
    result = await cms_integration.publish_content(platform, credentials, UNSAFE_CONTENT)

    assert result["success"] is True, result
    bodies = [body for body in sent if "Layer up" in body]
    assert bodies
    for body in bodies:
        assert "<script" not in body
        assert "<iframe" not in body
        assert "onerror" not in body
        assert "cdn.example.com/x.png" in body
