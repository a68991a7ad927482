#!/usr/bin/env python3
"""
Payment API - Stripe customers, one-time payments, subscriptions and billing details
"""

from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from snowball import stripe_service
from snowball.auth import require_user_id
from snowball.database import db, to_object_id
from snowball.rate_limit import payment_rate_limit
from snowball.stripe_service import StripeError

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/payment", tags=["payment"])

PLAN_TYPES = ("free", "basic", "premium", "enterprise")
SUBSCRIPTION_PLANS = ("basic", "premium", "enterprise")
BILLING_FIELDS = ("line1", "city", "state", "postal_code", "country")


# Pydantic Models
class PaymentIntentRequest(BaseModel):
    amount: Optional[float] = None
    planType: Optional[str] = None
    currency: str = "usd"


class PaymentSuccessRequest(BaseModel):
    paymentIntentId: Optional[str] = None
    planType: Optional[str] = None


class SubscriptionRequest(BaseModel):
    priceId: Optional[str] = None
    planType: Optional[str] = None


class BillingAddress(BaseModel):
    line1: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None


class BillingAddressRequest(BaseModel):
    billingAddress: Optional[BillingAddress] = None


# Helper functions
def get_user(user_id: str) -> dict:
    user = db.users.find_one({"_id": to_object_id(user_id, "user")}, {"password": 0})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def ensure_customer(user: dict) -> str:
    """The user's Stripe customer id, created on first use"""
    if user.get("stripeCustomerId"):
        return user["stripeCustomerId"]
    customer = await stripe_service.create_customer(user["email"], user.get("name"))
    db.users.update_one({"_id": user["_id"]}, {"$set": {"stripeCustomerId": customer["id"]}})
    logger.info("stripe_customer_created", user_id=str(user["_id"]), customer_id=customer["id"])
    return customer["id"]


def stripe_http_error(e: StripeError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.stripe_message or str(e))


# Routes

@router.get("/info")
async def get_payment_info(request: Request):
    user_id = require_user_id(request)
    user = get_user(user_id)

    customer, subscriptions, payment_methods = None, [], []
    customer_id = user.get("stripeCustomerId")
    if customer_id:
        try:
            customer = await stripe_service.get_customer(customer_id)
            subscriptions = await stripe_service.get_customer_subscriptions(customer_id)
            payment_methods = await stripe_service.get_customer_payment_methods(customer_id)
        except StripeError as e:
            logger.warning("stripe_info_unavailable", user_id=user_id, error=str(e))

    return {
        "success": True,
        "data": {
            "planType": user.get("planType", "free"),
            "subscriptionStatus": user.get("subscriptionStatus"),
            "subscriptionId": user.get("subscriptionId"),
            "customer": customer,
            "subscriptions": subscriptions,
            "paymentMethods": payment_methods,
            "paymentHistory": user.get("paymentHistory", []),
            "billingAddress": user.get("billingAddress"),
            "hasStripeCustomer": bool(customer_id),
        },
    }


@router.post("/create-payment-intent", dependencies=[Depends(payment_rate_limit)])
async def create_payment_intent(body: PaymentIntentRequest, request: Request):
    user_id = require_user_id(request)
    if not body.amount or body.amount <= 0:
        raise HTTPException(status_code=400, detail="Valid amount is required")
    if not body.planType:
        raise HTTPException(status_code=400, detail="Plan type is required")
    if body.planType not in PLAN_TYPES:
        raise HTTPException(status_code=400, detail="Invalid plan type")
    if len(body.currency) != 3:
        raise HTTPException(status_code=400, detail="Currency must be 3 characters")

    user = get_user(user_id)
    try:
        customer_id = await ensure_customer(user)
        intent = await stripe_service.create_payment_intent(
            body.amount, body.currency.lower(), customer_id,
            {"userId": user_id, "planType": body.planType, "userEmail": user["email"]},
        )
    except StripeError as e:
        raise stripe_http_error(e)

    return {
        "success": True,
        "data": {
            "clientSecret": intent.get("client_secret"),
            "paymentIntentId": intent["id"],
            "customerId": customer_id,
        },
    }


@router.post("/success", dependencies=[Depends(payment_rate_limit)])
async def payment_success(body: PaymentSuccessRequest, request: Request):
    """Record a completed payment after confirming it with Stripe"""
    user_id = require_user_id(request)
    if not body.paymentIntentId or not body.planType:
        raise HTTPException(status_code=400, detail="Payment intent ID and plan type are required")
    if body.planType not in PLAN_TYPES:
        raise HTTPException(status_code=400, detail="Invalid plan type")

    user = get_user(user_id)
    try:
        intent = await stripe_service.get_payment_intent(body.paymentIntentId)
    except StripeError as e:
        raise stripe_http_error(e)
    if intent.get("status") != "succeeded":
        raise HTTPException(status_code=400, detail="Payment has not been completed successfully")

    metadata = intent.get("metadata") or {}
    if metadata.get("userId") != user_id:
        logger.warning("payment_intent_owner_mismatch", user_id=user_id, payment_intent_id=body.paymentIntentId)
        raise HTTPException(status_code=403, detail="Payment does not belong to this user")
    if metadata.get("planType") != body.planType:
        raise HTTPException(status_code=400, detail="Plan type does not match the payment")

    amount = (intent.get("amount") or 0) / 100
    updates = {"planType": body.planType, "updated_at": datetime.utcnow()}
    if body.planType != "free":
        updates["subscriptionStatus"] = "active"
    # the filter makes recording a payment intent single-use
    result = db.users.update_one(
        {"_id": user["_id"], "paymentHistory.paymentIntentId": {"$ne": body.paymentIntentId}},
        {
            "$set": updates,
            "$push": {"paymentHistory": {
                "paymentIntentId": body.paymentIntentId,
                "amount": amount,
                "currency": intent.get("currency"),
                "status": "succeeded",
                "planType": body.planType,
                "createdAt": datetime.utcnow(),
            }},
        },
    )
    if result.matched_count == 0:
        raise HTTPException(status_code=400, detail="Payment has already been recorded")
    logger.info("payment_recorded", user_id=user_id, plan=body.planType, amount=amount)
    return {
        "success": True,
        "msg": "Payment processed successfully",
        "data": {"planType": body.planType, "paymentIntentId": body.paymentIntentId, "amount": amount},
    }


@router.post("/create-subscription", dependencies=[Depends(payment_rate_limit)])
async def create_subscription(body: SubscriptionRequest, request: Request):
    user_id = require_user_id(request)
    if not body.priceId or not body.planType:
        raise HTTPException(status_code=400, detail="Price ID and plan type are required")
    if body.planType not in SUBSCRIPTION_PLANS:
        raise HTTPException(status_code=400, detail="Invalid plan type for subscription")

    user = get_user(user_id)
    try:
        customer_id = await ensure_customer(user)
        subscription = await stripe_service.create_subscription(customer_id, body.priceId)
    except StripeError as e:
        raise stripe_http_error(e)

    db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {
            "subscriptionId": subscription["id"],
            "subscriptionStatus": "incomplete",
            "planType": body.planType,
            "updated_at": datetime.utcnow(),
        }},
    )
    payment_intent = (subscription.get("latest_invoice") or {}).get("payment_intent") or {}
    return {
        "success": True,
        "data": {
            "subscriptionId": subscription["id"],
            "clientSecret": payment_intent.get("client_secret"),
            "status": subscription.get("status"),
        },
    }


@router.post("/cancel-subscription", dependencies=[Depends(payment_rate_limit)])
async def cancel_subscription(request: Request):
    user_id = require_user_id(request)
    user = get_user(user_id)
    if not user.get("subscriptionId"):
        raise HTTPException(status_code=404, detail="No active subscription found")

    try:
        canceled = await stripe_service.cancel_subscription(user["subscriptionId"])
    except StripeError as e:
        raise stripe_http_error(e)

    db.users.update_one(
        {"_id": user["_id"]},
        {"$set": {"subscriptionStatus": "canceled", "planType": "free", "updated_at": datetime.utcnow()}},
    )
    logger.info("subscription_canceled", user_id=user_id, subscription_id=canceled.get("id"))
    return {
        "success": True,
        "msg": "Subscription canceled successfully",
        "data": {"subscriptionId": canceled.get("id"), "status": canceled.get("status")},
    }


@router.post("/billing-address", dependencies=[Depends(payment_rate_limit)])
async def update_billing_address(body: BillingAddressRequest, request: Request):
    user_id = require_user_id(request)
    if not body.billingAddress:
        raise HTTPException(status_code=400, detail="Billing address is required")

    address = body.billingAddress.model_dump()
    missing = [field for field in BILLING_FIELDS if not (address.get(field) or "").strip()]
    if missing:
        raise HTTPException(status_code=400, detail=f"Missing billing address fields: {', '.join(missing)}")

    user = get_user(user_id)
    db.users.update_one({"_id": user["_id"]}, {"$set": {"billingAddress": address, "updated_at": datetime.utcnow()}})
    return {"success": True, "msg": "Billing address updated successfully"}
