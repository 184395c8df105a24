from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from .core.config import get_settings
from .core.exceptions import AssessmentError
from .core.rate_limit import limiter
from .db.mongo import close_mongo_connection, connect_to_mongo, ensure_indexes, get_database
from .routers import assessments, candidate, users
from .utils.responses import error_response

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("uvicorn.error")

app = FastAPI(title=settings.app_name, version="1.0.0")

app.state.limiter = limiter
if limiter is not None:
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    logger.info("Rate limiter initialized successfully")
else:
    logger.warning("Rate limiter not available - session start will work without rate limiting")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    allow_credentials=True,
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    if request.url.scheme == "https" or settings.debug is False:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.on_event("startup")
async def startup() -> None:
    await connect_to_mongo()
    await ensure_indexes(get_database())
    logger.info("MongoDB connected and indexes ensured")


@app.on_event("shutdown")
async def shutdown() -> None:
    await close_mongo_connection()


@app.exception_handler(AssessmentError)
async def assessment_error_handler(request: Request, exc: AssessmentError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_response(exc.message, exc.code))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.error(f"Validation error for {request.url.path}: {exc.errors()}")

    error_messages = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error.get("loc", []) if loc != "body")
        error_type = error.get("type", "")
        error_msg = error.get("msg", "")
        field_name = field.split(".")[-1] if field else "request"

        if "email" in field_name.lower():
            if "missing" in error_type:
                error_messages.append("Email is required")
            else:
                error_messages.append("Please enter a valid email address")
        elif "missing" in error_type:
            error_messages.append(f"{field_name} is required")
        else:
            error_messages.append(f"{field_name}: {error_msg}")

    message = "; ".join(error_messages) if error_messages else "Validation error"
    return JSONResponse(status_code=422, content=error_response(message, "validation_error"))


@app.get("/")
@app.head("/")
async def root() -> dict[str, Any]:
    return {
        "message": f"{settings.app_name} is running",
        "timestamp": _now_iso(),
        "status": "healthy",
    }


@app.get("/health")
@app.head("/health")
async def health_check() -> dict[str, Any]:
    return {
        "message": "Health check passed",
        "timestamp": _now_iso(),
        "status": "healthy",
    }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


app.include_router(users.router)
app.include_router(assessments.router)
app.include_router(candidate.router)
