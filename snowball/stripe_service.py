#!/usr/bin/env python3
"""
Stripe REST client

Requests are form-encoded with Stripe's bracket notation for nested values,
authenticated with the secret key.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import httpx
import structlog

from snowball import config, http_client

logger = structlog.get_logger()

STRIPE_API = "https://api.stripe.com/v1"
APP_SOURCE = "snowball_app"


class StripeError(Exception):
    """A Stripe call failed"""

    def __init__(self, message: str, status_code: int = 502, stripe_message: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.stripe_message = stripe_message


def to_cents(amount: float) -> int:
    return int(round(amount * 100))


def encode_form(params: Dict[str, Any], prefix: str = "") -> List[Tuple[str, str]]:
    """
    Flatten nested dicts and lists into Stripe form pairs:
    {"items": [{"price": "p"}]} -> [("items[0][price]", "p")]
    """
    pairs: List[Tuple[str, str]] = []
    for key, value in params.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            pairs.extend(encode_form(value, name))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                item_name = f"{name}[{index}]"
                if isinstance(item, dict):
                    pairs.extend(encode_form(item, item_name))
                else:
                    pairs.append((item_name, _form_value(item)))
        else:
            pairs.append((name, _form_value(value)))
    return pairs


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


async def _request(method: str, path: str, params: Optional[Dict[str, Any]] = None, failure: str = "Stripe request failed") -> Dict[str, Any]:
    if not config.STRIPE_SECRET_KEY:
        raise StripeError("Stripe is not configured", 500)

    encoded = encode_form(params or {})
    kwargs: Dict[str, Any] = {"params": encoded} if method == "GET" else {"data": dict(encoded)}
    try:
        async with http_client.async_client(auth=(config.STRIPE_SECRET_KEY, "")) as client:
            response = await client.request(method, f"{STRIPE_API}{path}", **kwargs)
    except httpx.RequestError as e:
        logger.error("stripe_unreachable", path=path, error=str(e))
        raise StripeError(failure)

    if response.status_code >= 400:
        try:
            stripe_message = (response.json().get("error") or {}).get("message")
        except ValueError:
            stripe_message = None
        logger.error("stripe_request_failed", path=path, status=response.status_code, error=stripe_message)
        raise StripeError(failure, 400 if response.status_code < 500 else 502, stripe_message)
    return response.json()


async def create_customer(email: str, name: Optional[str]) -> Dict[str, Any]:
    return await _request("POST", "/customers", {
        "email": email,
        "name": name,
        "metadata": {"source": APP_SOURCE, "created_at": datetime.utcnow().isoformat()},
    }, "Failed to create customer")


async def create_subscription(customer_id: str, price_id: str) -> Dict[str, Any]:
    return await _request("POST", "/subscriptions", {
        "customer": customer_id,
        "items": [{"price": price_id}],
        "payment_behavior": "default_incomplete",
        "expand": ["latest_invoice.payment_intent"],
    }, "Failed to create subscription")


async def create_payment_intent(
    amount: float,
    currency: str = "usd",
    customer_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """One-time payment; `amount` is in major units"""
    return await _request("POST", "/payment_intents", {
        "amount": to_cents(amount),
        "currency": currency,
        "customer": customer_id,
        "automatic_payment_methods": {"enabled": True},
        "metadata": {**(metadata or {}), "source": APP_SOURCE},
    }, "Failed to create payment intent")


async def get_customer(customer_id: str) -> Dict[str, Any]:
    return await _request("GET", f"/customers/{customer_id}", failure="Failed to retrieve customer")


async def get_customer_subscriptions(customer_id: str) -> List[Dict[str, Any]]:
    result = await _request("GET", "/subscriptions", {
        "customer": customer_id,
        "status": "active",
        "expand": ["data.items.data.price"],
    }, "Failed to retrieve subscriptions")
    return result.get("data") or []


async def get_payment_intent(payment_intent_id: str) -> Dict[str, Any]:
    return await _request("GET", f"/payment_intents/{payment_intent_id}", failure="Failed to retrieve payment intent")


async def create_setup_intent(customer_id: str) -> Dict[str, Any]:
    return await _request("POST", "/setup_intents", {
        "customer": customer_id,
        "payment_method_types": ["card"],
    }, "Failed to create setup intent")


async def get_customer_payment_methods(customer_id: str) -> List[Dict[str, Any]]:
    result = await _request("GET", "/payment_methods", {
        "customer": customer_id,
        "type": "card",
    }, "Failed to retrieve payment methods")
    return result.get("data") or []


async def cancel_subscription(subscription_id: str) -> Dict[str, Any]:
    return await _request("DELETE", f"/subscriptions/{subscription_id}", failure="Failed to cancel subscription")


async def update_subscription(subscription_id: str, update_data: Dict[str, Any]) -> Dict[str, Any]:
    return await _request("POST", f"/subscriptions/{subscription_id}", update_data, "Failed to update subscription")
