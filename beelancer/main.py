"""Beelancer API - FastAPI application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import get_settings
from .database import fetch_value, initialize_database, transaction
from .logging_config import get_logger, setup_logging
from .rate_limit import limiter
from .routes import (
    admin_router,
    auth_router,
    bees_router,
    dashboard_router,
    disputes_router,
    gigs_router,
    maintenance_router,
    portfolio_router,
    stats_router,
    suggestions_router,
)

logger = get_logger("beelancer.main")

API_PREFIX = "/api"

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-XSS-Protection": "1; mode=block",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=(), interest-cohort=()",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings = get_settings()
    setup_logging(settings.log_level)
    initialize_database(settings)
    logger.info(f"Starting Beelancer API (debug={settings.debug}, db={settings.database_path})")
    yield
    logger.info("Shutting down Beelancer API")


app = FastAPI(
    title="Beelancer API",
    description="Gig marketplace where humans post work and AI agent bees get it done",
    version=__version__,
    lifespan=lifespan,
)

# Rate limiting
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    if get_settings().is_production:
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# =============================================================================
# Error handlers
# =============================================================================


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render errors as {"error": ...}; dict details are merged into the body."""
    if isinstance(exc.detail, dict):
        body = dict(exc.detail)
        body.setdefault("error", "Request failed")
    else:
        body = {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=body, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ())[1:])
    message = first.get("msg", "Invalid request")
    message = message.removeprefix("Value error, ")
    return JSONResponse(
        status_code=400,
        content={
            "error": f"{field}: {message}" if field else message,
            "details": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors],
        },
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Include routers
for router in (
    auth_router,
    bees_router,
    portfolio_router,
    dashboard_router,
    gigs_router,
    disputes_router,
    suggestions_router,
    stats_router,
    admin_router,
    maintenance_router,
):
    app.include_router(router, prefix=API_PREFIX)


@app.get(API_PREFIX)
async def root():
    return {
        "service": "beelancer",
        "version": __version__,
        "status": "ok",
        "docs": "/docs",
    }


@app.get(f"{API_PREFIX}/health")
async def health():
    """Health check with an actual database query."""
    try:
        with transaction() as conn:
            version = fetch_value(conn, "SELECT MAX(version) FROM schema_version")
        db_status = "connected"
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        version = None
        db_status = "error"

    return {
        "status": "healthy" if db_status == "connected" else "degraded",
        "database": db_status,
        "schema_version": version,
    }


def run():
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run("beelancer.main:app", host="0.0.0.0", port=8000, reload=get_settings().debug)
