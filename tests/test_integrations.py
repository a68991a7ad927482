"""OAuth state handling, Shopify signing and the CMS connection routes"""

from datetime import datetime, timedelta

import httpx
import pytest
from bson import ObjectId

from snowball import config
from snowball.cms_credentials import credentials_helper
from snowball.oauth_state import InvalidOAuthState, consume_state, create_state
from snowball.shopify import compute_hmac, normalize_shop_domain, verify_hmac


class TestOAuthState:
    def test_create_stores_platform_and_extra(self, mock_db):
        state = create_state("u1", "shopify", {"shop": "a.myshopify.com"})
        stored = mock_db.oauth_states.insert_one.call_args[0][0]
        assert stored["state"] == state
        assert stored["platform"] == "shopify"
        assert stored["extra"] == {"shop": "a.myshopify.com"}

    def test_missing_state(self, mock_db):
        with pytest.raises(InvalidOAuthState) as exc:
            consume_state(None, "shopify")
        assert exc.value.status_code == 400

    def test_unknown_state(self, mock_db):
        mock_db.oauth_states.find_one_and_delete.return_value = None
        with pytest.raises(InvalidOAuthState):
            consume_state("abc", "shopify")

    def test_state_bound_to_platform(self, mock_db):
        mock_db.oauth_states.find_one_and_delete.return_value = {
            "state": "abc", "platform": "webflow", "userId": "u1", "createdAt": datetime.utcnow(),
        }
        with pytest.raises(InvalidOAuthState):
            consume_state("abc", "shopify")

    def test_expired_state(self, mock_db):
        mock_db.oauth_states.find_one_and_delete.return_value = {
            "state": "abc", "platform": "shopify", "userId": "u1",
            "createdAt": datetime.utcnow() - timedelta(minutes=11),
        }
        with pytest.raises(InvalidOAuthState, match="expired"):
            consume_state("abc", "shopify")

    def test_valid_state_is_returned(self, mock_db):
        record = {"state": "abc", "platform": "shopify", "userId": "u1", "createdAt": datetime.utcnow()}
        mock_db.oauth_states.find_one_and_delete.return_value = record
        assert consume_state("abc", "shopify") == record


class TestShopifySigning:
    def test_hmac_ignores_hmac_param_and_sorts_keys(self):
        params = {"shop": "a.myshopify.com", "code": "c", "timestamp": "1"}
        signature = compute_hmac(params, "secret")
        assert verify_hmac({**params, "hmac": signature}, "secret")
        assert compute_hmac({**params, "hmac": "x"}, "secret") == signature

    def test_tampered_params_fail(self):
        params = {"shop": "a.myshopify.com", "code": "c"}
        signature = compute_hmac(params, "secret")
        assert not verify_hmac({**params, "code": "other", "hmac": signature}, "secret")
        assert not verify_hmac(params, "secret")

    @pytest.mark.parametrize("raw,expected", [
        ("https://Acme.myshopify.com/", "acme.myshopify.com"),
        ("  acme.myshopify.com ", "acme.myshopify.com"),
    ])
    def test_normalize_shop_domain(self, raw, expected):
        assert normalize_shop_domain(raw) == expected


def test_credentials_are_masked():
    record = {
        "_id": ObjectId(), "platform": "wordpress", "isActive": True,
        "authDetails": {"siteUrl": "https://s.com", "applicationPassword": "secret", "username": "me"},
    }
    masked = credentials_helper(record)["authDetails"]
    assert masked["applicationPassword"] == "********"
    assert masked["username"] == "me"


@pytest.mark.api
class TestShopifyRoutes:
    def test_auth_url_rejects_bad_shop(self, client, auth_headers, monkeypatch):
        monkeypatch.setattr(config, "SHOPIFY_API_KEY", "shopify-key")
        response = client.get("/api/v1/shopify/auth-url", params={"shop": "evil.com"}, headers=auth_headers)
        assert response.status_code == 400

    def test_auth_url_carries_state(self, client, mock_db, auth_headers, monkeypatch):
        monkeypatch.setattr(config, "SHOPIFY_API_KEY", "shopify-key")
        response = client.get("/api/v1/shopify/auth-url", params={"shop": "acme.myshopify.com"}, headers=auth_headers)
        assert response.status_code == 200
        url = response.json()["authUrl"]
        assert url.startswith("https://acme.myshopify.com/admin/oauth/authorize?")
        state = mock_db.oauth_states.insert_one.call_args[0][0]["state"]
        assert f"state={state}" in url

    def test_callback_rejects_bad_hmac(self, client, monkeypatch):
        monkeypatch.setattr(config, "SHOPIFY_API_KEY", "shopify-key")
        monkeypatch.setattr(config, "SHOPIFY_API_SECRET", "shopify-secret")
        params = {"code": "c", "shop": "acme.myshopify.com", "state": "s", "hmac": "bad"}
        response = client.get("/api/v1/shopify/callback", params=params, follow_redirects=False)
        assert response.status_code == 401

    def test_callback_stores_token_and_redirects(self, client, mock_db, mock_http, user_id, monkeypatch):
        monkeypatch.setattr(config, "SHOPIFY_API_KEY", "shopify-key")
        monkeypatch.setattr(config, "SHOPIFY_API_SECRET", "shopify-secret")
        mock_db.oauth_states.find_one_and_delete.return_value = {
            "state": "s", "platform": "shopify", "userId": user_id,
            "extra": {"shop": "acme.myshopify.com"}, "createdAt": datetime.utcnow(),
        }
        mock_http(lambda request: httpx.Response(200, json={"access_token": "shpat_123"}))

        params = {"code": "c", "shop": "acme.myshopify.com", "state": "s", "timestamp": "1"}
        params["hmac"] = compute_hmac(params, "shopify-secret")
        response = client.get("/api/v1/shopify/callback", params=params, follow_redirects=False)

        assert response.status_code in (302, 307)
        assert response.headers["location"].endswith("/dashboard?shopify=connected")
        assert "shpat_123" not in response.headers["location"]
        update = mock_db.cms_credentials.update_one.call_args[0][1]
        assert update["$set"]["authDetails"]["accessToken"] == "shpat_123"


@pytest.mark.api
class TestCredentialRoutes:
    def test_unsupported_platform(self, client, auth_headers):
        response = client.post(
            "/api/v1/cms-credentials/",
            json={"platform": "medium", "authDetails": {"token": "x"}},
            headers=auth_headers,
        )
        assert response.status_code == 400

    def test_delete_someone_elses_credentials(self, client, mock_db, auth_headers):
        mock_db.cms_credentials.find_one.return_value = {"_id": ObjectId(), "userId": "other", "platform": "wix"}
        response = client.delete(f"/api/v1/cms-credentials/{ObjectId()}", headers=auth_headers)
        assert response.status_code == 403

    def test_list_masks_secrets(self, client, mock_db, auth_headers):
        mock_db.cms_credentials.find.return_value = [{
            "_id": ObjectId(), "platform": "shopify",
            "authDetails": {"shopDomain": "a.myshopify.com", "accessToken": "shpat"},
        }]
        response = client.get("/api/v1/cms-credentials/", headers=auth_headers)
        assert response.status_code == 200
        assert response.json()["credentials"][0]["authDetails"]["accessToken"] == "********"
