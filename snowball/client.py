#!/usr/bin/env python3
"""
Snowball API client

Thin synchronous wrapper over the REST API for scripts and the front end's
server-side helpers. The session token is attached to every request once set.
"""

from typing import Any, Callable, Dict, List, Optional

import httpx
import structlog

logger = structlog.get_logger()

DEFAULT_BASE_URL = "http://localhost:8000"
# analysis and onboarding completion can run for minutes
DEFAULT_TIMEOUT = httpx.Timeout(180.0, connect=10.0)
LOGOUT_PATH = "/api/v1/logout"


class APIError(Exception):
    """The API rejected the request"""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class SessionExpiredError(APIError):
    pass


class AccessDeniedError(APIError):
    pass


class ServerError(APIError):
    pass


def error_message(payload: Any, default: str) -> str:
    """Pick the server's message out of `msg`, `error` or `detail`"""
    if not isinstance(payload, dict):
        return default
    for key in ("msg", "error", "detail"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, dict):
            nested = value.get("error") or value.get("message")
            if nested:
                return nested
    return default


class SnowballClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token: Optional[str] = None,
        on_unauthorized: Optional[Callable[[str], None]] = None,
        login_path: str = "/login",
        **client_kwargs,
    ):
        self.token = token
        self.on_unauthorized = on_unauthorized
        self.login_path = login_path
        client_kwargs.setdefault("timeout", DEFAULT_TIMEOUT)
        self._client = httpx.Client(base_url=base_url.rstrip("/"), **client_kwargs)

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # -- transport ----------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def request(self, method: str, path: str, **kwargs) -> Any:
        response = self._client.request(method, path, headers=self._headers(), **kwargs)
        if response.status_code < 400:
            return response.json() if response.content else None
        self._raise_for_status(path, response)

    def _raise_for_status(self, path: str, response: httpx.Response) -> None:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        status = response.status_code
        message = error_message(payload, response.reason_phrase or "An error occurred")
        logger.info("api_request_failed", path=path, status=status, error=message)

        if path.endswith(LOGOUT_PATH):
            raise APIError(message, status, payload)
        if status == 401:
            self.token = None
            if self.on_unauthorized:
                self.on_unauthorized(self.login_path)
            raise SessionExpiredError("Session expired. Please login again.", status, payload)
        if status == 403:
            raise AccessDeniedError("Access denied", status, payload)
        if status >= 500:
            raise ServerError("Server error. Please try again later.", status, payload)
        raise APIError(message, status, payload)

    def get(self, path: str, **params) -> Any:
        return self.request("GET", path, params={k: v for k, v in params.items() if v is not None})

    def post(self, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("POST", path, json=data or {})

    def put(self, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("PUT", path, json=data or {})

    def delete(self, path: str) -> Any:
        return self.request("DELETE", path)

    # -- users ----------------------------------------------------------------

    def login(self, email: str, password: str) -> Dict[str, Any]:
        result = self.post("/api/v1/login", {"email": email, "password": password})
        self.token = result["token"]
        return result

    def register(self, name: str, email: str, password: str) -> Dict[str, Any]:
        result = self.post("/api/v1/register", {"name": name, "email": email, "password": password})
        self.token = result.get("token")
        return result

    def logout(self) -> None:
        try:
            self.post(LOGOUT_PATH)
        finally:
            self.token = None

    def me(self) -> Dict[str, Any]:
        return self.get("/api/v1/me")

    # -- brand analysis -------------------------------------------------------

    def analyze_brand(self, domain: str, is_local_brand: bool = False) -> Dict[str, Any]:
        return self.post("/api/v1/brand/analyze", {"domain": domain, "isLocalBrand": is_local_brand})

    def get_task(self, task_id: str) -> Dict[str, Any]:
        return self.get(f"/api/v1/tasks/{task_id}")

    def user_brands(self) -> Dict[str, Any]:
        return self.get("/api/v1/brand/user/brands")

    def brand_analysis(self, brand_id: str) -> Dict[str, Any]:
        return self.get(f"/api/v1/brand/analysis/{brand_id}")

    def extract_categories(self, domain: str) -> Dict[str, Any]:
        return self.post("/api/v1/brand/extract-categories", {"domain": domain})

    def add_custom_prompt(self, brand_id: str, category_id: str, prompt_text: str) -> Dict[str, Any]:
        return self.post("/api/v1/brand/prompts/custom", {
            "brandId": brand_id, "categoryId": category_id, "promptText": prompt_text,
        })

    # -- onboarding -----------------------------------------------------------

    def onboarding_progress(self) -> Dict[str, Any]:
        return self.get("/api/v1/onboarding/progress")

    def onboarding_step(self, step: int, data: Dict[str, Any]) -> Dict[str, Any]:
        paths = {1: "step1-domain", 2: "step2-categories", 3: "step3-competitors", 4: "step4-prompts"}
        return self.post(f"/api/v1/onboarding/{paths[step]}", data)

    def complete_onboarding(self) -> Dict[str, Any]:
        return self.post("/api/v1/onboarding/complete")

    # -- content calendar -----------------------------------------------------

    def generate_calendar(self, company_name: str, **options) -> Dict[str, Any]:
        return self.post("/api/v1/content-calendar/generate", {"companyName": company_name, **options})

    def approve_calendar(self, company_name: str, calendar: List[Dict[str, Any]],
                         cms_platform: Optional[str] = None) -> Dict[str, Any]:
        return self.post("/api/v1/content-calendar/approve", {
            "companyName": company_name, "calendar": calendar, "cmsPlatform": cms_platform,
        })

    def calendar(self, company_name: Optional[str] = None, status: Optional[str] = None) -> Dict[str, Any]:
        return self.get("/api/v1/content-calendar/", companyName=company_name, status=status)

    def publish_entry(self, entry_id: str) -> Dict[str, Any]:
        return self.post(f"/api/v1/content-calendar/{entry_id}/publish")

    # -- integrations ---------------------------------------------------------

    def cms_credentials(self, platform: Optional[str] = None) -> Dict[str, Any]:
        return self.get("/api/v1/cms-credentials/", platform=platform)

    def integration_status(self, platform: str) -> Dict[str, Any]:
        return self.get(f"/api/v1/{platform}/status")

    def analytics_overview(self) -> Dict[str, Any]:
        return self.get("/api/v1/analytics/overview")

    def payment_info(self) -> Dict[str, Any]:
        return self.get("/api/v1/payment/info")

    def health(self) -> Dict[str, Any]:
        return self.get("/api/v1/health")
