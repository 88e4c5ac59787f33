"""
Vitalis - Main Application.

FastAPI application exposing the governed AI insight layer.
"""

import logging
import sys
import traceback
from contextlib import asynccontextmanager
from uuid import UUID, uuid4

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vitalis import __version__
from vitalis.config import get_settings
from vitalis.core.governance import AIGovernance, build_governance
from vitalis.deps import get_governance
from vitalis.exceptions import VitalisException
from vitalis.schemas import HealthResponse, StatusResponse

# Import module routers
from vitalis.admin import router as admin_router
from vitalis.insights.router import router as insights_router

# Configure standard logging
logging.basicConfig(
    level=get_settings().app_log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("vitalis")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    logger.info(
        f"Starting Vitalis API v{__version__} "
        f"[env={settings.app_env}] "
        f"[features={settings.features.to_dict()}]"
    )
    if getattr(app.state, "governance", None) is None:
        app.state.governance = await build_governance(settings)
    yield
    logger.info("Shutting down Vitalis API")
    await app.state.governance.aclose()
    app.state.governance = None


# Create FastAPI application
app = FastAPI(
    title="Vitalis API",
    description="Rate-limited, cached, deduplicated AI insights for a personal health dashboard.",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Middleware
# =============================================================================


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add request ID to all requests."""
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id

    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all requests."""
    request_id = getattr(request.state, "request_id", "unknown")
    logger.info(f"[{request_id}] {request.method} {request.url.path}")

    response = await call_next(request)

    logger.info(f"[{request_id}] {request.method} {request.url.path} -> {response.status_code}")

    return response


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(VitalisException)
async def vitalis_exception_handler(request: Request, exc: VitalisException):
    """Handle Vitalis custom exceptions."""
    request_id_str = getattr(request.state, "request_id", None)
    request_id = None
    if request_id_str:
        try:
            request_id = UUID(request_id_str)
        except (ValueError, TypeError):
            pass

    logger.warning(f"VitalisException: {exc.code} - {exc.message}")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "code": exc.code,
                "message": exc.message,
                "details": exc.details,
                "request_id": str(request_id) if request_id else None,
            }
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id_str = getattr(request.state, "request_id", None)

    logger.error(f"Unhandled exception on {request.url.path}: {type(exc).__name__}: {exc}")
    logger.error(f"Traceback:\n{traceback.format_exc()}")

    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "code": "INTERNAL_ERROR",
                "message": str(exc) if get_settings().app_debug else "An unexpected error occurred",
                "request_id": request_id_str,
            }
        },
    )


# =============================================================================
# Health Check / Status
# =============================================================================


@app.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(request: Request):
    """Health check endpoint. Degraded when no context has a usable API key."""
    settings = get_settings()
    governance = getattr(request.app.state, "governance", None)
    healthy = governance is not None and governance.client.is_available()
    return HealthResponse(
        status="healthy" if healthy else "degraded",
        version=__version__,
        features=settings.features.to_dict(),
        app_env=settings.app_env,
        is_production=settings.is_production,
    )


@app.get("/status", response_model=StatusResponse, tags=["health"])
async def governance_status(governance: AIGovernance = Depends(get_governance)):
    """Limiter, cache and metrics snapshot."""
    return governance.status()


# =============================================================================
# Register Module Routers
# =============================================================================

app.include_router(insights_router)
app.include_router(admin_router)
