"""
CoverWatch API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from core.config import get_settings
from core.errors import CoverWatchError

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("CoverWatch API starting up", version=settings.app_version)
    yield
    logger.info("CoverWatch API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Insurance certificate compliance tracking for vendors and tenants",
    lifespan=lifespan,
)


@app.exception_handler(CoverWatchError)
async def coverwatch_error_handler(request: Request, exc: CoverWatchError):
    """Map domain errors onto HTTP status codes."""
    logger.info(
        "api.domain_error",
        path=request.url.path,
        error=type(exc).__name__,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import certificates, entities, notifications, portal, templates

app.include_router(templates.router)
app.include_router(entities.router)
app.include_router(certificates.router)
app.include_router(notifications.router)
app.include_router(portal.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
