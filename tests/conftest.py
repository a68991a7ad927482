"""
Test configuration and shared fixtures.

The app is imported after the environment defaults are set. MongoDB is never
contacted: every module's `db` is swapped for a MagicMock, and outbound HTTP
goes through `httpx.MockTransport`.
"""

import os
from typing import Callable
from unittest.mock import MagicMock

import httpx
import pytest
from bson import ObjectId

os.environ.setdefault("MONGODB_URI", "mongodb://localhost:27017/")
os.environ.setdefault("MONGODB_DB_NAME", "snowball_test")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("SHOPIFY_API_KEY", "shopify-key")
os.environ.setdefault("SHOPIFY_API_SECRET", "shopify-secret")
os.environ.setdefault("AUTO_PUBLISH_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from fastapi.testclient import TestClient  # noqa: E402

from snowball import http_client, rate_limit  # noqa: E402
from snowball.app import app  # noqa: E402
from snowball.auth import create_access_token  # noqa: E402

DB_MODULES = [
    "snowball.analytics",
    "snowball.auto_publisher",
    "snowball.brand_analysis",
    "snowball.brands",
    "snowball.cms_credentials",
    "snowball.content_calendar",
    "snowball.google_analytics",
    "snowball.oauth_state",
    "snowball.onboarding",
    "snowball.payments",
    "snowball.role_helpers",
    "snowball.share_of_voice",
    "snowball.shopify",
    "snowball.super_user_analysis",
    "snowball.users",
    "snowball.webflow",
    "snowball.wordpress",
]


def pytest_collection_modifyitems(config, items):
    for item in items:
        if not item.get_closest_marker("api"):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    rate_limit.auth_limiter.reset()
    rate_limit.user_api_limiter.reset()
    rate_limit.payment_limiter.reset()
    yield


@pytest.fixture
def mock_db(monkeypatch) -> MagicMock:
    """One MagicMock database shared by every module that imports `db`"""
    db = MagicMock()
    for module in DB_MODULES:
        monkeypatch.setattr(f"{module}.db", db)
    return db


@pytest.fixture
def client(mock_db) -> TestClient:
    # No context manager: the lifespan (indexes, scheduler) is not run
    return TestClient(app)


@pytest.fixture
def user_id() -> str:
    return str(ObjectId())


@pytest.fixture
def auth_headers(user_id) -> dict:
    token = create_access_token({"_id": user_id, "name": "Test User", "role": "user"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def mock_http(monkeypatch) -> Callable[[Callable[[httpx.Request], httpx.Response]], None]:
    """Route every outbound client through a handler: mock_http(lambda request: httpx.Response(...))"""

    def install(handler):
        monkeypatch.setattr(
            http_client,
            "async_client",
            lambda **kwargs: httpx.AsyncClient(transport=httpx.MockTransport(handler), **kwargs),
        )

    return install
