# app/main.py
"""
FastAPI application entry point.
Includes security middleware, error handlers, and all routers.
"""

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from app.routers import admin_violations, auth, detection_logs, health, payments, vehicles, violations, webhook
from app.database import create_tables
from app.config import settings
from app.exceptions import HighBeamError
from app.utils.logger import get_logger
from app.utils.security import keys_match
import logging
import time

logger = get_logger(__name__)

app = FastAPI(
    title="High-Beam Enforcement API",
    description="High-beam detection → human review → fine payment.",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── CORS (owner portal + reviewer dashboard) ─────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],   # Restrict to portal origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── API Key Middleware ───────────────────────────────────────────────────────
class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Reviewer endpoints (/admin/*, /detection-logs) require X-API-Key = ADMIN_API_KEY.
    The sensor webhook carries its own key and is checked by the ingestor.
    Leave ADMIN_API_KEY empty to disable.
    """
    protected_prefixes = ("/api/v1/admin", "/api/v1/detection-logs")

    async def dispatch(self, request: Request, call_next):
        if not settings.ADMIN_API_KEY or not request.url.path.startswith(self.protected_prefixes):
            return await call_next(request)

        api_key = request.headers.get("X-API-Key") or request.query_params.get("api_key")
        if not keys_match(api_key, settings.ADMIN_API_KEY):
            logger.warning(f"Rejected admin request to {request.url.path}: invalid or missing API key")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"success": False, "error": "UNAUTHORIZED",
                         "message": "Invalid or missing API key", "details": {}},
            )
        return await call_next(request)


app.add_middleware(APIKeyMiddleware)


# ── Request Timing Middleware ────────────────────────────────────────────────
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 2)
    logger.debug(f"{request.method} {request.url.path} → {response.status_code} ({duration}ms)")
    return response


# ── Exception Handlers ───────────────────────────────────────────────────────
_LOG_LEVELS = {
    "policy": logging.INFO,
    "input": logging.WARNING,
    "consistency": logging.ERROR,
    "upstream": logging.ERROR,
}


@app.exception_handler(HighBeamError)
async def highbeam_exception_handler(request: Request, exc: HighBeamError):
    logger.log(_LOG_LEVELS.get(exc.category, logging.ERROR),
               f"{request.method} {request.url.path} → {exc.status_code} {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "INTERNAL_ERROR", "message": "Internal server error",
                 "details": {}},
    )


# ── Routers ──────────────────────────────────────────────────────────────────
app.include_router(webhook.router,          prefix="/api/v1", tags=["📡 Sensor Webhook"])
app.include_router(detection_logs.router,   prefix="/api/v1", tags=["🧾 Detection Logs"])
app.include_router(admin_violations.router, prefix="/api/v1", tags=["🛡️ Review"])
app.include_router(violations.router,       prefix="/api/v1", tags=["🚨 Violations"])
app.include_router(payments.router,         prefix="/api/v1", tags=["💳 Payments"])
app.include_router(vehicles.router,         prefix="/api/v1", tags=["🚗 Vehicles"])
app.include_router(auth.router,             prefix="/api/v1", tags=["🔑 Auth"])
app.include_router(health.router,           prefix="/api/v1", tags=["💚 Health"])


# ── Startup ───────────────────────────────────────────────────────────────────
@app.on_event("startup")
async def startup():
    logger.info("🚀 High-Beam backend starting up...")
    create_tables()
    logger.info("✅ Database tables ready")
    if not settings.WEBHOOK_API_KEY:
        logger.warning("⚠️ WEBHOOK_API_KEY not set — sensor webhook is unauthenticated")
    if not settings.ADMIN_API_KEY:
        logger.warning("⚠️ ADMIN_API_KEY not set — reviewer endpoints are unauthenticated")
    logger.info(f"🌐 Listening on http://{settings.BACKEND_HOST}:{settings.BACKEND_PORT}")
    logger.info("📖 API docs at /docs")


@app.on_event("shutdown")
async def shutdown():
    logger.info("🛑 High-Beam backend shutting down...")
