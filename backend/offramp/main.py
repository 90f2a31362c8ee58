"""
Stablecoin Off-Ramp Partner API — FastAPI Application Entry Point

Aggregates all routers, registers the error envelope handlers and request
logging, initializes storage and starts the webhook sweep on startup.
"""
import logging
import time
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from offramp.config import get_settings
from offramp.errors import GatewayError, ValidationError
from offramp.schemas.schemas import ErrorResponse
from offramp.routes import (
    session_router, quote_router, kyc_router, transaction_router, webhook_router, admin_router,
)
from offramp.scheduler import WebhookSweepScheduler
from offramp.utils.logger import setup_logging

settings = get_settings()
logger = logging.getLogger("offramp")

HTTP_ERROR_CODES = {
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    429: "rate_limited",
}

# ─── Application Instance ───────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "Partner API for converting USDC/USDT to INR. Covers sessions, locked "
        "quotes with TDS/fee/GST breakdown, multi-method KYC (Aadhaar OKYC, PAN, "
        "face liveness, UPI, bank, name match), deposit tracking, INR payouts "
        "and signed webhooks."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

# ─── Startup ─────────────────────────────────────────────────────────
BOOT_TIME = time.time()
sweeper = WebhookSweepScheduler(settings)


@app.on_event("startup")
def on_startup():
    """Initialize logging and storage, start the webhook sweep."""
    setup_logging(settings)
    if settings.STORAGE_BACKEND == "sql":
        from offramp.database import init_db
        init_db()
    sweeper.start()

    logger.info(
        f"\n{'='*60}\n"
        f"  {settings.APP_NAME} v{settings.APP_VERSION}\n"
        f"  TIME: {datetime.now().isoformat()}\n"
        f"  ENVIRONMENT: {settings.ENVIRONMENT}\n"
        f"  STORAGE: {settings.STORAGE_BACKEND}"
        f"{' (' + settings.DATABASE_URL + ')' if settings.STORAGE_BACKEND == 'sql' else ''}\n"
        f"  FX API KEY: {'[OK] Loaded' if settings.EXCHANGE_RATE_API_KEY else '[!] Missing (fallback rate)'}\n"
        f"  CASHFREE: {'[OK] Loaded' if settings.CASHFREE_CLIENT_ID else '[!] Missing'}\n"
        f"  SUREPASS: {'[OK] Loaded' if settings.SUREPASS_API_TOKEN else '[!] Missing'}\n"
        f"  DEBUG: {settings.DEBUG}\n"
        f"{'='*60}"
    )


@app.on_event("shutdown")
def on_shutdown():
    sweeper.shutdown()


# ─── Error Envelope ──────────────────────────────────────────────────

@app.exception_handler(GatewayError)
def gateway_error_handler(request: Request, exc: GatewayError):
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    error = ValidationError("Request validation failed", details=details)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


@app.exception_handler(StarletteHTTPException)
def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "success": False,
            "error": HTTP_ERROR_CODES.get(exc.status_code, "http_error"),
            "message": str(exc.detail),
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
def server_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "internal_error", "message": "An unexpected error occurred."},
    )


# ─── Middleware ──────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log every API request with timing."""
    start = time.time()
    response = await call_next(request)
    duration = round((time.time() - start) * 1000, 1)

    if request.url.path.startswith("/api"):
        logger.info("%s %s -> %s (%sms)", request.method, request.url.path, response.status_code, duration)

    return response


# ─── API Routers ─────────────────────────────────────────────────────
# Documented error envelope for every API route
ERROR_RESPONSES = {code: {"model": ErrorResponse} for code in (400, 401, 404, 409, 422, 429, 502, 503)}

for router in (session_router, quote_router, kyc_router, transaction_router, webhook_router, admin_router):
    app.include_router(router, responses=ERROR_RESPONSES)


@app.get("/health", tags=["Health"])
def deep_health():
    """Detailed health check including storage connectivity."""
    db_status = "in-memory"
    if settings.STORAGE_BACKEND == "sql":
        from sqlalchemy import text
        from sqlalchemy.exc import SQLAlchemyError
        from offramp.database import SessionLocal

        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
            db_status = "connected"
        except SQLAlchemyError as e:
            logger.warning("Health check database error: %s", e)
            db_status = "disconnected"
        finally:
            db.close()

    return {
        "status": "degraded" if db_status == "disconnected" else "healthy",
        "database": db_status,
        "environment": settings.ENVIRONMENT,
        "uptime_seconds": round(time.time() - BOOT_TIME, 1),
        "version": settings.APP_VERSION,
    }
