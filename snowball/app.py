#!/usr/bin/env python3
"""
FastAPI application for the Snowball marketing API
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from snowball.analytics import router as analytics_router
from snowball.auth import AuthMiddleware
from snowball.auto_publisher import auto_publisher
from snowball.brands import router as brands_router
from snowball.cms_credentials import router as cms_credentials_router
from snowball.config import CORS_ORIGINS
from snowball.content_calendar import router as content_calendar_router
from snowball.database import ensure_indexes
from snowball.logging_config import configure_logging
from snowball.onboarding import router as onboarding_router
from snowball.payments import router as payments_router
from snowball.shopify import router as shopify_router
from snowball.super_user_analysis import router as super_user_analysis_router
from snowball.tasks import router as tasks_router
from snowball.users import router as users_router
from snowball.webflow import router as webflow_router
from snowball.wordpress import router as wordpress_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    ensure_indexes()
    auto_publisher.start()
    logger.info("snowball_api_started")
    try:
        yield
    finally:
        auto_publisher.shutdown()
        logger.info("snowball_api_stopped")


# Initialize FastAPI app
app = FastAPI(title="Snowball API", version="1.0.0", lifespan=lifespan)

# Middleware executes in reverse order of addition: CORS wraps auth so
# rejected requests still carry CORS headers
app.add_middleware(AuthMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(users_router)
app.include_router(brands_router)
app.include_router(onboarding_router)
app.include_router(super_user_analysis_router)
app.include_router(tasks_router)
app.include_router(content_calendar_router)
app.include_router(cms_credentials_router)
app.include_router(shopify_router)
app.include_router(webflow_router)
app.include_router(wordpress_router)
app.include_router(analytics_router)
app.include_router(payments_router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "field": ".".join(str(part) for part in error["loc"] if part != "body"),
            "message": error["msg"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Validation failed", "details": details})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path, method=request.method)
    return JSONResponse(status_code=500, content={"msg": "Server error", "error": str(exc)})


@app.get("/")
async def root():
    """Root endpoint"""
    return {"message": "Snowball API", "version": "1.0.0"}


@app.get("/api/v1/health")
async def health():
    return {
        "status": "OK",
        "message": "Snowball API is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
