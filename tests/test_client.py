"""Error mapping and session handling in the REST client"""

import json

import httpx
import pytest

from snowball.client import (
    AccessDeniedError,
    APIError,
    ServerError,
    SessionExpiredError,
    SnowballClient,
    error_message,
)


def make_client(handler, **kwargs) -> SnowballClient:
    return SnowballClient("http://api.test", transport=httpx.MockTransport(handler), **kwargs)


@pytest.mark.parametrize("payload,expected", [
    ({"msg": "Invalid credentials"}, "Invalid credentials"),
    ({"error": "Validation failed"}, "Validation failed"),
    ({"detail": "Brand not found"}, "Brand not found"),
    ({"detail": {"error": "nested"}}, "nested"),
    ({}, "fallback"),
    ("not a dict", "fallback"),
])
def test_error_message(payload, expected):
    assert error_message(payload, "fallback") == expected


def test_login_stores_token_and_sends_it():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers.get("Authorization"))
        if request.url.path == "/api/v1/login":
            assert json.loads(request.content) == {"email": "a@b.com", "password": "pw"}
            return httpx.Response(200, json={"token": "tok", "user": {"id": "1"}})
        return httpx.Response(200, json={"user": {"id": "1"}})

    with make_client(handler) as client:
        client.login("a@b.com", "pw")
        client.me()

    assert seen == [None, "Bearer tok"]


def test_401_clears_session_and_redirects():
    redirects = []
    client = make_client(lambda request: httpx.Response(401, json={"detail": "Invalid or expired token"}),
                         token="old", on_unauthorized=redirects.append)
    with pytest.raises(SessionExpiredError) as exc:
        client.me()
    assert exc.value.status_code == 401
    assert client.token is None
    assert redirects == ["/login"]


def test_403_is_access_denied():
    client = make_client(lambda request: httpx.Response(403, json={"detail": "nope"}), token="t")
    with pytest.raises(AccessDeniedError, match="Access denied"):
        client.user_brands()


def test_5xx_is_server_error():
    client = make_client(lambda request: httpx.Response(502, json={"detail": "bad gateway"}), token="t")
    with pytest.raises(ServerError):
        client.health()


def test_other_errors_keep_server_message():
    client = make_client(lambda request: httpx.Response(400, json={"error": "Validation failed"}), token="t")
    with pytest.raises(APIError) as exc:
        client.analyze_brand("")
    assert str(exc.value) == "Validation failed"
    assert exc.value.status_code == 400


def test_logout_errors_do_not_trigger_redirect():
    redirects = []
    client = make_client(lambda request: httpx.Response(401, json={"detail": "expired"}),
                         token="t", on_unauthorized=redirects.append)
    with pytest.raises(APIError) as exc:
        client.logout()
    assert not isinstance(exc.value, SessionExpiredError)
    assert client.token is None
    assert redirects == []


def test_none_query_params_are_dropped():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["query"] = dict(request.url.params)
        return httpx.Response(200, json={"data": []})

    make_client(handler, token="t").calendar(status="approved")
    assert seen["query"] == {"status": "approved"}
