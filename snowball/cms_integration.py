#!/usr/bin/env python3
"""
CMS publishing - WordPress, Webflow, Shopify and Wix

Every platform takes a credentials record (`authDetails` holds the tokens) and
a content dict with `title`, `description` (HTML or Markdown body),
`keywords`, `targetAudience` and platform extras such as Webflow's `siteId`.
"""

import asyncio
import re
from html import escape
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import httpx
import markdown
import structlog
from bs4 import BeautifulSoup

from snowball import config, http_client

logger = structlog.get_logger()

WORDPRESS_COM_API = "https://public-api.wordpress.com/rest/v1.1"
WEBFLOW_API = "https://api.webflow.com/v2"
WIX_API = "https://www.wixapis.com"
DEFAULT_SHOPIFY_API_VERSION = "2024-10"

SUPPORTED_PLATFORMS = ("wordpress", "webflow", "shopify", "wix")

WEBFLOW_PUBLISH_RETRIES = 2
WEBFLOW_RETRY_BASE_SECONDS = 2.0

_LOCAL_HOST_RE = re.compile(r"https?://(localhost|127\.0\.0\.1)(:\d+)?")
_LOCAL_MARKERS = ("localhost", "127.0.0.1", "192.168.")
UNSAFE_TAGS = ["script", "iframe", "object", "embed"]
_URL_NOISE_RE = re.compile(r"[\s\x00-\x1f]+")
IMAGE_REMOVED_NOTE = (
    "<p><em>[Image removed: Not accessible from the CMS. "
    "Please use public image URLs or deploy your backend.]</em></p>"
)


class CMSPublishError(Exception):
    """Publishing or connection test failed with a user-facing message"""


# =============================================================================
# Content helpers
# =============================================================================

def validate_content(content: Dict[str, Any]) -> tuple:
    title = (content.get("title") or "").strip()
    description = (content.get("description") or "").strip()
    if not title or not description:
        raise CMSPublishError("Content must have title and description")
    if len(title) < 3:
        raise CMSPublishError("Title must be at least 3 characters long")
    if len(description) < 10:
        raise CMSPublishError("Description must be at least 10 characters long")
    return title, description


def keyword_list(keywords: Union[str, List[str], None], default: Optional[List[str]] = None) -> List[str]:
    if isinstance(keywords, str):
        keywords = [k.strip() for k in keywords.split(",")]
    keywords = [k for k in (keywords or []) if k]
    return keywords or list(default or [])


def is_local_url(url: str) -> bool:
    return any(marker in url for marker in _LOCAL_MARKERS)


def convert_local_image_urls(html: str) -> str:
    """
    Point images served from a development host at PUBLIC_URL. Images that
    would still be unreachable from the CMS are replaced with a note.
    """
    if not html:
        return html

    soup = BeautifulSoup(html, "html.parser")
    local_images = [img for img in soup.find_all("img", src=True) if is_local_url(img["src"])]
    if not local_images:
        return html

    for img in local_images:
        src = img["src"]
        public_src = _LOCAL_HOST_RE.sub(config.PUBLIC_URL, src, count=1) if config.PUBLIC_URL else src
        if is_local_url(public_src):
            logger.warning("local_image_removed", src=src)
            img.replace_with(BeautifulSoup(IMAGE_REMOVED_NOTE, "html.parser").p)
        else:
            img["src"] = public_src
    return str(soup)


def metadata_footer(target_audience: str, keywords: List[str]) -> str:
    audience = escape(target_audience)
    return (
        "\n\n<hr>\n\n"
        f"<p><strong>Target Audience:</strong> {audience}</p>\n"
        f"<p><strong>Keywords:</strong> {escape(', '.join(keywords))}</p>\n"
        f"<p><em>Generated by AI Content Creator - Optimized for {audience}</em></p>"
    )


def slugify(title: str, max_length: int = 50) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug[:max_length]


def plain_text(html: str) -> str:
    return BeautifulSoup(html or "", "html.parser").get_text(" ", strip=True)


def sanitize_html(html: str) -> str:
    """Drop embedded code: script-like tags, on* handlers and javascript: links"""
    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup(UNSAFE_TAGS):
        tag.decompose()
    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            value = tag.attrs[attr]
            if attr.lower().startswith("on"):
                del tag.attrs[attr]
            elif isinstance(value, str) and _URL_NOISE_RE.sub("", value).lower().startswith("javascript:"):
                del tag.attrs[attr]
    return str(soup)


def looks_like_html(body: str) -> bool:
    return BeautifulSoup(body, "html.parser").find() is not None


def to_html(body: str) -> str:
    """HTML bodies are sanitized as they are; anything else is rendered as Markdown first"""
    if not looks_like_html(body):
        body = markdown.markdown(body, extensions=["nl2br", "fenced_code", "tables"])
    return sanitize_html(body)


def render_body(description: str) -> str:
    """The post body every platform receives"""
    return convert_local_image_urls(to_html(description))


def pick_blog_collection(collections: List[Dict[str, Any]]) -> Dict[str, Any]:
    for collection in collections:
        singular = (collection.get("singularName") or "").lower()
        display = (collection.get("displayName") or "").lower()
        if any(word in singular for word in ("blog", "post", "article")) or any(
            word in display for word in ("blog", "post")
        ):
            return collection
    if collections:
        return collections[0]
    raise CMSPublishError("No collections found in this Webflow site. Please create a blog collection first.")


def build_webflow_field_data(
    title: str,
    slug: str,
    body_html: str,
    keywords: List[str],
    fields: List[Dict[str, Any]],
    valid_slugs: List[str],
) -> Dict[str, Any]:
    """
    Map the post onto the collection's fields. Without a usable schema only
    name and slug are sent, since unknown fields fail validation.
    """
    text = plain_text(body_html)
    excerpt, meta_description = text[:150], text[:160]
    tags = ", ".join(keywords)
    mappings = {
        "content": body_html,
        "body": body_html,
        "post-body": body_html,
        "article-body": body_html,
        "description": body_html,
        "excerpt": excerpt,
        "summary": excerpt,
        "post-summary": excerpt,
        "meta-title": title,
        "meta-description": meta_description,
        "seo-title": title,
        "seo-description": meta_description,
        "tags": tags,
        "keywords": tags,
    }

    field_data: Dict[str, Any] = {"name": title, "slug": slug}
    if len(valid_slugs) <= 2:
        return field_data

    for field_slug, value in mappings.items():
        if field_slug in valid_slugs:
            field_data[field_slug] = value

    if not any(key in field_data for key in ("content", "body", "description")):
        rich_text = next((f for f in fields if f.get("type") in ("RichText", "rich-text")), None)
        if rich_text:
            field_data[rich_text["slug"]] = body_html
    return field_data


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        data = response.json()
    except ValueError:
        return None
    if isinstance(data, dict):
        return data.get("message") or data.get("error_description") or data.get("errors")
    return None


# =============================================================================
# WordPress
# =============================================================================

def is_self_hosted_wordpress(auth: Dict[str, Any]) -> bool:
    return bool(auth.get("siteUrl") and auth.get("applicationPassword"))


async def publish_to_wordpress(credentials: Dict[str, Any], content: Dict[str, Any]) -> Dict[str, Any]:
    auth = credentials.get("authDetails") or {}
    if is_self_hosted_wordpress(auth):
        return await publish_to_self_hosted_wordpress(auth, content)

    access_token, token_type, sites = auth.get("accessToken"), auth.get("tokenType"), auth.get("sites") or []
    if not access_token or not token_type or not sites:
        raise CMSPublishError("Missing WordPress.com credentials: accessToken, tokenType, and sites are required")
    site = sites[0]
    if not site or not site.get("ID"):
        raise CMSPublishError("No valid WordPress.com site found for publishing")

    title, description = validate_content(content)
    post = {
        "title": title,
        "content": render_body(description),
        "status": content.get("status") or "publish",
        "format": "standard",
        "tags": ",".join(keyword_list(content.get("keywords"))),
        "categories": content.get("targetAudience") or "",
    }

    async with http_client.async_client() as client:
        response = await client.post(
            f"{WORDPRESS_COM_API}/sites/{site['ID']}/posts/new",
            json=post,
            headers={"Authorization": f"{token_type} {access_token}"},
        )

    if response.status_code >= 400:
        message = _error_message(response)
        if not message:
            message = {
                401: "WordPress.com authentication failed. Please reconnect your WordPress account.",
                403: "Permission denied. Please ensure your WordPress.com token has publishing permissions.",
                404: "WordPress.com site not found. Please check your site configuration.",
            }.get(response.status_code, "Failed to publish to WordPress.com")
        raise CMSPublishError(message)

    data = response.json()
    logger.info("wordpress_post_created", site_id=site["ID"], post_id=data.get("ID"))
    return {"postId": data.get("ID"), "url": data.get("URL")}


async def publish_to_self_hosted_wordpress(auth: Dict[str, Any], content: Dict[str, Any]) -> Dict[str, Any]:
    title, description = validate_content(content)
    site_url = auth["siteUrl"].rstrip("/")
    post = {
        "title": title,
        "content": render_body(description),
        "status": content.get("status") or "publish",
    }
    async with http_client.async_client(auth=httpx.BasicAuth(auth.get("username") or "", auth["applicationPassword"])) as client:
        response = await client.post(f"{site_url}/wp-json/wp/v2/posts", json=post)

    if response.status_code >= 400:
        raise CMSPublishError(_error_message(response) or f"WordPress API error: {response.status_code}")
    data = response.json()
    return {"postId": data.get("id"), "url": data.get("link")}


async def test_wordpress_connection(credentials: Dict[str, Any]) -> Dict[str, Any]:
    """Self-hosted sites are checked with their application password; WordPress.com via /me"""
    auth = credentials.get("authDetails") or {}
    if not is_self_hosted_wordpress(auth):
        if not auth.get("accessToken"):
            raise CMSPublishError("Missing WordPress credentials")
        async with http_client.async_client() as client:
            response = await client.get(
                f"{WORDPRESS_COM_API}/me",
                headers={"Authorization": f"{auth.get('tokenType') or 'Bearer'} {auth['accessToken']}"},
            )
        if response.status_code >= 400:
            raise CMSPublishError("WordPress.com authentication failed. Please reconnect your WordPress account.")
        me = response.json()
        return {"success": True, "user": me.get("username"), "sitesCount": len(auth.get("sites") or [])}

    return await test_self_hosted_wordpress(auth.get("siteUrl"), auth.get("username"), auth.get("applicationPassword"))


async def test_self_hosted_wordpress(
    site_url: Optional[str],
    username: Optional[str],
    application_password: Optional[str],
) -> Dict[str, Any]:
    if not site_url or not username or not application_password:
        return {
            "success": False,
            "error": "Missing WordPress credentials: siteUrl, username, and applicationPassword are required",
        }

    site_url = site_url.rstrip("/")
    try:
        async with http_client.async_client() as client:
            api_response = await client.get(f"{site_url}/wp-json/wp/v2")
            api_response.raise_for_status()
            api_data = api_response.json()
            if not api_data or not api_data.get("routes"):
                return {"success": False, "error": "WordPress REST API is not accessible or not properly configured"}

            user_response = await client.get(
                f"{site_url}/wp-json/wp/v2/users/me",
                params={"context": "edit"},
                auth=httpx.BasicAuth(username, application_password),
            )
            user_response.raise_for_status()
            user = user_response.json()
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        message = {
            401: "WordPress authentication failed. Please check your username and application password.",
            403: "WordPress access forbidden. Please check your user permissions.",
            404: "WordPress REST API not found. Please ensure REST API is enabled on your WordPress site.",
        }.get(status) or _error_message(e.response) or "WordPress connection failed"
        return {"success": False, "error": message}
    except httpx.RequestError:
        return {"success": False, "error": "Cannot reach WordPress site. Please check the site URL."}

    capabilities = user.get("capabilities") or {}
    roles = user.get("roles") or []
    can_publish = bool(
        capabilities.get("publish_posts") or capabilities.get("edit_posts")
        or "administrator" in roles or "editor" in roles
    )
    if not can_publish:
        return {
            "success": False,
            "error": "WordPress user does not have permission to publish posts. "
                     "User needs Editor or Administrator role.",
        }

    return {
        "success": True,
        "message": "WordPress connection successful",
        "data": {
            "siteUrl": site_url,
            "siteName": api_data.get("name") or "WordPress Site",
            "user": {
                "id": user.get("id"),
                "name": user.get("name"),
                "username": user.get("username") or user.get("slug"),
                "email": user.get("email"),
                "roles": roles,
            },
            "capabilities": {
                "canPublishPosts": can_publish,
                "canEditPosts": bool(capabilities.get("edit_posts")),
                "canManageCategories": bool(capabilities.get("manage_categories")),
            },
        },
    }


# =============================================================================
# Webflow
# =============================================================================

async def _publish_webflow_site(client: httpx.AsyncClient, site_id: str, headers: Dict[str, str]) -> None:
    """Push the site live; 429s are retried with backoff, other failures only logged"""
    for attempt in range(WEBFLOW_PUBLISH_RETRIES + 1):
        try:
            response = await client.post(f"{WEBFLOW_API}/sites/{site_id}/publish", json={}, headers=headers)
        except httpx.RequestError as e:
            logger.warning("webflow_site_publish_failed", site_id=site_id, error=str(e))
            return
        if response.status_code < 400:
            return
        if response.status_code == 429 and attempt < WEBFLOW_PUBLISH_RETRIES:
            await asyncio.sleep(WEBFLOW_RETRY_BASE_SECONDS * (2 ** attempt))
            continue
        logger.warning(
            "webflow_site_publish_failed",
            site_id=site_id,
            status=response.status_code,
            rate_limited=response.status_code == 429,
        )
        return


async def publish_to_webflow(credentials: Dict[str, Any], content: Dict[str, Any]) -> Dict[str, Any]:
    access_token = (credentials.get("authDetails") or {}).get("accessToken")
    site_id = content.get("siteId")
    if not access_token:
        raise CMSPublishError("Missing Webflow credentials: accessToken is required")
    if not site_id:
        raise CMSPublishError("Site ID is required to publish to Webflow. Please select a site.")

    title, description = validate_content(content)
    keywords = keyword_list(content.get("keywords"), ["AI Content", "Blog"])
    audience = (content.get("targetAudience") or "General Audience").strip()
    headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}

    async with http_client.async_client() as client:
        response = await client.get(f"{WEBFLOW_API}/sites/{site_id}/collections", headers=headers)
        if response.status_code >= 400:
            raise CMSPublishError(f"Webflow API error: {_error_message(response) or response.status_code}")
        collection = pick_blog_collection(response.json().get("collections") or [])

        fields: List[Dict[str, Any]] = []
        schema = await client.get(f"{WEBFLOW_API}/collections/{collection['id']}", headers=headers)
        if schema.status_code < 400 and schema.json().get("fields"):
            fields = schema.json()["fields"]
            valid_slugs = [f["slug"] for f in fields]
        else:
            logger.warning("webflow_schema_unavailable", collection_id=collection["id"], status=schema.status_code)
            valid_slugs = ["name", "slug"]

        slug = slugify(title)
        body_html = render_body(description) + metadata_footer(audience, keywords)
        item = {
            "isArchived": False,
            "isDraft": False,
            "fieldData": build_webflow_field_data(title, slug, body_html, keywords, fields, valid_slugs),
        }

        created = await client.post(f"{WEBFLOW_API}/collections/{collection['id']}/items", json=item, headers=headers)
        if created.status_code == 400:
            details = (created.json() or {}).get("details")
            if isinstance(details, list) and details:
                errors = ", ".join(
                    f"{d.get('param') or d.get('field') or 'unknown field'}: "
                    f"{d.get('description') or d.get('message') or 'validation error'}"
                    for d in details
                )
                raise CMSPublishError(f"Webflow validation failed: {errors}")
            raise CMSPublishError(f"Webflow validation error: {_error_message(created) or 'Invalid field data'}")
        if created.status_code >= 400:
            raise CMSPublishError(f"Webflow API error: {_error_message(created) or created.status_code}")

        await _publish_webflow_site(client, site_id, headers)

        site = (await client.get(f"{WEBFLOW_API}/sites/{site_id}", headers=headers)).json()

    custom_domains = site.get("customDomains") or []
    if custom_domains:
        domain = custom_domains[0].get("url") if isinstance(custom_domains[0], dict) else custom_domains[0]
    else:
        domain = f"{site.get('shortName')}.webflow.io"
    return {"postId": created.json().get("id"), "url": f"https://{domain}/{collection.get('slug')}/{slug}"}


async def list_webflow_sites(access_token: str) -> List[Dict[str, Any]]:
    async with http_client.async_client() as client:
        response = await client.get(
            f"{WEBFLOW_API}/sites",
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
    if response.status_code == 401:
        raise CMSPublishError("Invalid access token. Please reconnect your Webflow account.")
    if response.status_code == 403:
        raise CMSPublishError("Insufficient permissions. Please reconnect with proper scopes.")
    if response.status_code >= 400:
        raise CMSPublishError(f"Webflow API error: {_error_message(response) or response.status_code}")
    return response.json().get("sites") or []


async def test_webflow_connection(credentials: Dict[str, Any]) -> Dict[str, Any]:
    access_token = (credentials.get("authDetails") or {}).get("accessToken")
    if not access_token:
        raise CMSPublishError("Missing Webflow credentials: accessToken is required")
    try:
        sites = await list_webflow_sites(access_token)
    except httpx.RequestError:
        raise CMSPublishError("Cannot connect to Webflow API. Please try again.")
    return {"success": True, "sites": sites, "sitesCount": len(sites)}


# =============================================================================
# Shopify
# =============================================================================

async def _shopify_blog(client: httpx.AsyncClient, base_url: str, headers: Dict[str, str]) -> tuple:
    """First blog of the store, created when the store has none"""
    try:
        response = await client.get(f"{base_url}/blogs.json", headers=headers)
        response.raise_for_status()
        blogs = response.json().get("blogs") or []
        if blogs:
            return blogs[0]["id"], blogs[0]["handle"]

        response = await client.post(
            f"{base_url}/blogs.json",
            json={"blog": {"title": "AI Generated Content", "handle": "ai-content", "commentable": "moderate"}},
            headers=headers,
        )
        response.raise_for_status()
        blog = response.json()["blog"]
        return blog["id"], blog["handle"]
    except (httpx.HTTPError, KeyError, ValueError) as e:
        logger.warning("shopify_blog_lookup_failed", error=str(e))
        return 1, "news"


async def publish_to_shopify(credentials: Dict[str, Any], content: Dict[str, Any]) -> Dict[str, Any]:
    auth = credentials.get("authDetails") or {}
    shop, access_token = auth.get("shopDomain"), auth.get("accessToken")
    if not shop or not access_token:
        raise CMSPublishError("Missing Shopify credentials")

    title, description = validate_content(content)
    keywords = keyword_list(content.get("keywords"), ["AI Content", "SEO"])
    audience = (content.get("targetAudience") or "General Audience").strip()
    api_version = auth.get("apiVersion") or DEFAULT_SHOPIFY_API_VERSION
    base_url = f"https://{shop}/admin/api/{api_version}"
    headers = {"X-Shopify-Access-Token": access_token}
    body_html = render_body(description)

    article = {
        "article": {
            "title": title,
            "body_html": body_html + metadata_footer(audience, keywords),
            "summary_html": escape(plain_text(body_html)[:150]),
            "tags": keywords,
            "author": "AI Content Generator",
            "published": True,
        }
    }

    async with http_client.async_client() as client:
        blog_id, blog_handle = await _shopify_blog(client, base_url, headers)
        response = await client.post(f"{base_url}/blogs/{blog_id}/articles.json", json=article, headers=headers)

    if response.status_code >= 400:
        raise CMSPublishError(f"Shopify API error: {_error_message(response) or response.status_code}")
    created = response.json()["article"]
    logger.info("shopify_article_created", shop=shop, article_id=created.get("id"))
    return {"postId": created.get("id"), "url": f"https://{shop}/blogs/{blog_handle}/{created.get('handle')}"}


async def test_shopify_connection(credentials: Dict[str, Any]) -> Dict[str, Any]:
    auth = credentials.get("authDetails") or {}
    shop, access_token = auth.get("shopDomain"), auth.get("accessToken")
    if not shop or not access_token:
        raise CMSPublishError("Missing Shopify credentials: shopDomain and accessToken are required")

    shop = re.sub(r"^https?://", "", shop)
    try:
        async with http_client.async_client() as client:
            response = await client.get(
                f"https://{shop}/admin/api/{DEFAULT_SHOPIFY_API_VERSION}/shop.json",
                headers={"X-Shopify-Access-Token": access_token},
            )
    except httpx.RequestError:
        raise CMSPublishError("Cannot connect to Shopify store. Please check your shop domain.")

    if response.status_code == 401:
        raise CMSPublishError("Invalid access token. Please check your Shopify access token.")
    if response.status_code == 404:
        raise CMSPublishError("Shop domain not found. Please check your shop domain.")
    if response.status_code >= 400:
        raise CMSPublishError(f"Shopify API error: {_error_message(response) or response.status_code}")
    return {"success": True, "shop": response.json()["shop"].get("name"), "domain": shop}


# =============================================================================
# Wix
# =============================================================================

async def publish_to_wix(credentials: Dict[str, Any], content: Dict[str, Any]) -> Dict[str, Any]:
    auth = credentials.get("authDetails") or {}
    site_id, api_key, access_token = auth.get("siteId"), auth.get("apiKey"), auth.get("accessToken")
    if not site_id or not api_key or not access_token:
        raise CMSPublishError("Missing Wix credentials")

    title, description = validate_content(content)
    body_html = render_body(description)
    post = {
        "post": {
            "title": title,
            "excerpt": plain_text(body_html)[:150],
            "content": body_html,
            "tags": keyword_list(content.get("keywords")),
            "status": "PUBLISHED",
        }
    }
    async with http_client.async_client() as client:
        response = await client.post(
            f"{WIX_API}/blog/v3/posts",
            json=post,
            headers={"Authorization": access_token, "wix-site-id": site_id},
        )
    if response.status_code >= 400:
        raise CMSPublishError(f"Wix API error: {_error_message(response) or response.status_code}")
    created = response.json()["post"]
    return {"postId": created.get("id"), "url": f"https://{site_id}.wixsite.com/blog/{created.get('slug')}"}


async def test_wix_connection(credentials: Dict[str, Any]) -> Dict[str, Any]:
    auth = credentials.get("authDetails") or {}
    async with http_client.async_client() as client:
        response = await client.get(
            f"{WIX_API}/site/v1/site",
            headers={"Authorization": auth.get("accessToken") or "", "wix-site-id": auth.get("siteId") or ""},
        )
    if response.status_code >= 400:
        raise CMSPublishError(f"Wix API error: {_error_message(response) or response.status_code}")
    site = response.json()["site"]
    return {"success": True, "site": site.get("displayName"), "siteId": site.get("id")}


# =============================================================================
# Dispatch
# =============================================================================

PUBLISHERS: Dict[str, Callable[[Dict[str, Any], Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
    "wordpress": publish_to_wordpress,
    "webflow": publish_to_webflow,
    "shopify": publish_to_shopify,
    "wix": publish_to_wix,
}

CONNECTION_TESTS = {
    "wordpress": test_wordpress_connection,
    "webflow": test_webflow_connection,
    "shopify": test_shopify_connection,
    "wix": test_wix_connection,
}


async def publish_content(platform: str, credentials: Dict[str, Any], content: Dict[str, Any]) -> Dict[str, Any]:
    """
    Publish to one platform.
    Returns {success, platform, postId, url, message} or {success: False, platform, error}.
    """
    publisher = PUBLISHERS.get(platform)
    if publisher is None:
        return {"success": False, "platform": platform, "error": f"Unsupported platform: {platform}"}
    try:
        result = await publisher(credentials, content)
    except (CMSPublishError, httpx.HTTPError, KeyError, ValueError) as e:
        logger.error("cms_publish_failed", platform=platform, error=str(e))
        return {"success": False, "platform": platform, "error": str(e) or type(e).__name__}

    return {
        "success": True,
        "platform": platform,
        "postId": result.get("postId"),
        "url": result.get("url"),
        "message": f"Successfully published to {platform}",
    }


async def test_connection(platform: str, credentials: Dict[str, Any]) -> Dict[str, Any]:
    tester = CONNECTION_TESTS.get(platform)
    if tester is None:
        return {"success": False, "error": f"Unsupported platform: {platform}"}
    try:
        return await tester(credentials)
    except (CMSPublishError, httpx.HTTPError, KeyError, ValueError) as e:
        logger.info("cms_connection_test_failed", platform=platform, error=str(e))
        return {"success": False, "error": str(e) or type(e).__name__}
