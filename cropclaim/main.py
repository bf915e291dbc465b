"""
Main Application Entry Point
----------------------------
FastAPI app for the crop-insurance claim lifecycle engine.

Handles:
 - Claim intake and reviewer routing
 - Automated assessment dispatch and callbacks
 - Reviewer drafts, decisions and fraud flags
 - Settlement release and payout
 - Health and system info endpoints
"""

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import ORJSONResponse
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from datetime import datetime
import traceback
import json

# =========================================================
# 📦 Internal Imports
# =========================================================
from cropclaim import __version__
from cropclaim.config import config
from cropclaim.exceptions import ClaimEngineError
from cropclaim.utils.db import init_db, seed_reference_data
from cropclaim.utils.logger import logger
from cropclaim.utils.logging_middleware import LoggingMiddleware
from cropclaim.api.endpoints import assessment, claims, review, settlement

# =========================================================
# 🚀 FastAPI Initialization
# =========================================================
app = FastAPI(
    title="CropClaim Engine",
    version=__version__,
    description="Crop-insurance claim lifecycle and settlement API.",
    default_response_class=ORJSONResponse,
)

# =========================================================
# 🌐 Middleware
# =========================================================
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["ETag", "X-Trace-Id"],
)
app.add_middleware(LoggingMiddleware)

# =========================================================
# 🔌 Include Routers (only main file uses prefix)
# =========================================================
app.include_router(claims.router, prefix="/api/v1")
app.include_router(assessment.router, prefix="/api/v1")
app.include_router(review.router, prefix="/api/v1")
app.include_router(settlement.router, prefix="/api/v1")


# =========================================================
# ⚙️ Exception Handlers
# =========================================================
@app.exception_handler(ClaimEngineError)
async def engine_exception_handler(request: Request, exc: ClaimEngineError):
    """Engine errors map to their status code with a {kind, code, message, details} body."""
    log_data = {
        "event": "request_error",
        "type": type(exc).__name__,
        "status": exc.status_code,
        "path": str(request.url.path),
        "error": exc.to_dict(),
    }
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(json.dumps(log_data, default=str))

    return ORJSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handles invalid request payloads gracefully."""
    errors = jsonable_encoder(exc.errors())
    log_data = {
        "event": "request_error",
        "type": "ValidationError",
        "status": 422,
        "path": str(request.url.path),
        "errors": errors,
    }
    logger.error(json.dumps(log_data, default=str))

    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", [])[1:]) or None
    return ORJSONResponse(
        status_code=422,
        content={
            "error": {
                "kind": "validation_error",
                "code": "INVALID_PAYLOAD",
                "message": "Invalid input. Please check your request payload.",
                "details": {"field": field, "errors": errors},
            }
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all for unexpected runtime exceptions."""
    log_data = {
        "event": "request_error",
        "type": type(exc).__name__,
        "status": 500,
        "path": str(request.url.path),
        "trace": traceback.format_exc(),
    }
    logger.error(json.dumps(log_data))

    return ORJSONResponse(
        status_code=500,
        content={
            "error": {
                "kind": "engine_error",
                "code": "INTERNAL_ERROR",
                "message": "Internal server error. Please try again later.",
                "details": {},
            }
        },
    )


# =========================================================
# 🧩 Utility Endpoints
# =========================================================
@app.get("/")
async def root():
    """Root endpoint for system information."""
    return {
        "status": "running",
        "version": __version__,
        "timestamp": datetime.utcnow().isoformat(),
        "message": "Welcome to the CropClaim Engine API",
        "environment": config.ENV,
        "collaborators": "http" if config.use_http_collaborators else "simulated",
    }


@app.get("/health")
async def health():
    """Basic health check."""
    return {"status": "healthy"}


# =========================================================
# 🗄️ Startup
# =========================================================
@app.on_event("startup")
def prepare_database():
    """Create tables; local environments also get the reference policies."""
    init_db()
    if config.is_local_env:
        seed_reference_data()
    routes = [route.path for route in app.routes]
    logger.info("🚦 Registered Routes:")
    for r in routes:
        logger.info(f"  • {r}")


# =========================================================
# 🏁 Runner
# =========================================================
def run_api():
    """Console entry point: `cropclaim-api`."""
    import uvicorn

    logger.info("🚀 Starting CropClaim Engine API")
    uvicorn.run(
        "cropclaim.main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=config.DEBUG,
    )


if __name__ == "__main__":
    run_api()
