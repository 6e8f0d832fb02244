# main.py - Workboard API
# Wires the routers, request context middleware and the domain error mapping.
# Configuration comes from the environment:
#   LOG_LEVEL, CORS_ORIGINS, ENVIRONMENT, JWT_SECRET_KEY, PUBLIC_BOARD_ACCESS,
#   DATABASE_URL (database.py), OTEL_* (telemetry.py), PORT, WORKERS

import os
import json
import uuid
import time
import logging
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text

from access import PUBLIC_BOARD_PERMISSION
from database import init_db, close_db, get_db_context
from errors import WorkboardError
from telemetry import setup_telemetry, tracing_enabled

VERSION = "1.0.0"
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if origin.strip()
]

logging.basicConfig(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
)
logger = logging.getLogger("workboard")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def _startup_warnings() -> List[str]:
    warnings = []
    jwt_key = os.getenv("JWT_SECRET_KEY", "")
    if len(jwt_key) < 32:
        warnings.append("JWT_SECRET_KEY is not set or shorter than 32 characters")

    public_access = os.getenv("PUBLIC_BOARD_ACCESS", "edit").lower()
    if public_access not in ("edit", "read_only"):
        warnings.append(f"PUBLIC_BOARD_ACCESS={public_access!r} is not one of: edit, read_only")

    if ENVIRONMENT == "production" and "*" in CORS_ORIGINS:
        warnings.append("CORS_ORIGINS allows any origin in production")
    return warnings


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Workboard v{VERSION} starting ({ENVIRONMENT})")
    for warning in _startup_warnings():
        logger.warning(warning)
    await init_db()
    setup_telemetry(app)
    logger.info(f"Public boards grant customers '{PUBLIC_BOARD_PERMISSION.value}'")
    yield
    await close_db()
    logger.info("Workboard stopped")


app = FastAPI(
    title="Workboard",
    description="Workspaces, boards, groups, columns and tasks with hierarchical access control",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Correlation-ID"],
    expose_headers=["X-Request-ID", "X-Correlation-ID", "X-Response-Time"],
)


# ============================================================
# MIDDLEWARE: request context
# ============================================================

@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Request/correlation ids, timing and security headers on every response"""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    correlation_id = request.headers.get("X-Correlation-ID", request_id)

    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    response.headers.update(SECURITY_HEADERS)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Correlation-ID"] = correlation_id
    response.headers["X-Response-Time"] = f"{elapsed:.4f}s"

    logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed * 1000:.1f}ms rid={request_id[:8]}")
    return response


def _request_id(request: Request):
    return getattr(request.state, "request_id", None)


# ============================================================
# ERROR MAPPING
# ============================================================

@app.exception_handler(WorkboardError)
async def workboard_error_handler(request: Request, exc: WorkboardError):
    logger.info(f"{request.method} {request.url.path} rejected with {exc.status_code}: {exc.message}")
    body = exc.to_dict()
    body["request_id"] = _request_id(request)
    return JSONResponse(status_code=exc.status_code, content=body)


def _plain_validation_error(err: dict) -> dict:
    cleaned = {
        "type": str(err.get("type", "unknown")),
        "loc": list(err.get("loc", [])),
        "msg": str(err.get("msg", "")),
    }
    if "input" in err:
        try:
            json.dumps(err["input"])
            cleaned["input"] = err["input"]
        except (TypeError, ValueError):
            cleaned["input"] = repr(err["input"])
    return cleaned


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "detail": [_plain_validation_error(e) for e in exc.errors()],
            "request_id": _request_id(request),
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "detail": "Internal server error", "request_id": _request_id(request)},
    )


# ============================================================
# ROUTERS
# ============================================================

from routers import (
    auth, workspaces, boards, groups, columns, tasks,
    notifications, websocket_router,
)

for module in (auth, workspaces, boards, groups, columns, tasks, notifications, websocket_router):
    app.include_router(module.router)


# ============================================================
# HEALTH
# ============================================================

@app.get("/health")
async def health_check():
    """Liveness plus a database round trip"""
    try:
        async with get_db_context() as db:
            await db.execute(text("SELECT 1"))
        database = "connected"
    except Exception as e:
        logger.warning(f"Health check database probe failed: {e}")
        database = f"error: {str(e)[:100]}"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "version": VERSION,
        "environment": ENVIRONMENT,
        "database": database,
        "tracing": tracing_enabled(),
        "public_board_access": PUBLIC_BOARD_PERMISSION.value,
        "websocket": websocket_router.manager.get_stats(),
    }


@app.get("/")
async def root():
    return {"name": "Workboard", "version": VERSION, "docs": "/docs", "health": "/health"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        workers=int(os.getenv("WORKERS", "1")),
        reload=ENVIRONMENT == "development",
    )
