"""Registration, login and per-IP rate limiting"""

from unittest.mock import MagicMock

import pytest
from bson import ObjectId

from snowball.auth import hash_password
from snowball.rate_limit import SlidingWindowRateLimiter
from snowball.users import LoginRequest, RegisterRequest, validate_login, validate_registration


class TestValidation:
    def test_valid_registration(self):
        body = RegisterRequest(name="Jane Doe", email="jane@example.com", password="Str0ng!pass")
        assert validate_registration(body) == []

    @pytest.mark.parametrize("name", ["J", "Jane99", "x" * 51])
    def test_bad_names(self, name):
        body = RegisterRequest(name=name, email="jane@example.com", password="Str0ng!pass")
        assert [e["field"] for e in validate_registration(body)] == ["name"]

    @pytest.mark.parametrize("password", ["short1!", "alllowercase1!", "NoDigits!!", "NoSpecial123"])
    def test_weak_passwords(self, password):
        body = LoginRequest(email="jane@example.com", password=password)
        assert [e["field"] for e in validate_login(body)] == ["password"]

    def test_bad_email(self):
        body = LoginRequest(email="not-an-email", password="Str0ng!pass")
        assert [e["field"] for e in validate_login(body)] == ["email"]


class TestSlidingWindow:
    def test_blocks_after_limit_and_recovers(self):
        now = [0.0]
        limiter = SlidingWindowRateLimiter(limit=2, window_seconds=10, clock=lambda: now[0])
        assert limiter.hit("ip").allowed
        assert limiter.hit("ip").allowed
        blocked = limiter.hit("ip")
        assert not blocked.allowed
        assert blocked.remaining == 0

        now[0] = 10.5
        assert limiter.hit("ip").allowed

    def test_check_does_not_record(self):
        limiter = SlidingWindowRateLimiter(limit=1)
        assert limiter.check("ip").allowed
        assert limiter.check("ip").allowed
        assert limiter.hit("ip").allowed
        assert not limiter.check("ip").allowed

    def test_keys_are_independent(self):
        limiter = SlidingWindowRateLimiter(limit=1)
        limiter.hit("a")
        assert limiter.hit("b").allowed

    def test_expired_keys_are_evicted(self):
        now = [0.0]
        limiter = SlidingWindowRateLimiter(limit=5, window_seconds=10, clock=lambda: now[0])
        for i in range(50):
            limiter.hit(f"10.0.0.{i}")
        assert limiter.tracked_keys() == 50

        now[0] = 11.0
        limiter.hit("10.0.1.1")
        assert limiter.tracked_keys() == 1

    def test_check_on_unknown_key_keeps_nothing(self):
        limiter = SlidingWindowRateLimiter(limit=1)
        for i in range(20):
            assert limiter.check(f"spoofed-{i}").allowed
        assert limiter.tracked_keys() == 0


@pytest.mark.api
class TestRoutes:
    def test_register_validation_errors_are_400(self, client):
        response = client.post("/api/v1/register", json={"name": "J", "email": "bad", "password": "x"})
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Validation failed"
        assert {d["field"] for d in body["details"]} == {"name", "email", "password"}

    def test_register_duplicate_email_is_409(self, client, mock_db):
        mock_db.users.find_one.return_value = {"_id": ObjectId(), "email": "jane@example.com"}
        response = client.post(
            "/api/v1/register",
            json={"name": "Jane", "email": "jane@example.com", "password": "Str0ng!pass"},
        )
        assert response.status_code == 409

    def test_register_creates_user_and_token(self, client, mock_db):
        mock_db.users.find_one.return_value = None
        mock_db.users.insert_one.return_value = MagicMock(inserted_id=ObjectId())
        response = client.post(
            "/api/v1/register",
            json={"name": "Jane", "email": "Jane@Example.com", "password": "Str0ng!pass"},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["token"]
        assert body["user"]["email"] == "jane@example.com"
        stored = mock_db.users.insert_one.call_args[0][0]
        assert stored["password"] != "Str0ng!pass"
        assert stored["planType"] == "free"

    def test_login_success(self, client, mock_db):
        mock_db.users.find_one.return_value = {
            "_id": ObjectId(), "name": "Jane", "email": "jane@example.com",
            "password": hash_password("Str0ng!pass"),
        }
        response = client.post("/api/v1/login", json={"email": "jane@example.com", "password": "Str0ng!pass"})
        assert response.status_code == 200
        assert response.json()["token"]

    def test_failed_logins_are_rate_limited(self, client, mock_db):
        mock_db.users.find_one.return_value = None
        credentials = {"email": "jane@example.com", "password": "Str0ng!pass"}
        for _ in range(5):
            assert client.post("/api/v1/login", json=credentials).status_code == 401
        assert client.post("/api/v1/login", json=credentials).status_code == 429
