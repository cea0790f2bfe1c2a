# src/rahnavard/main.py
"""Main entry point for the Rahnavard application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from rahnavard.api.v1 import rep_router, security_router
from rahnavard.api.v1.routing import register_exception_handlers
from rahnavard.core.settings import settings
from rahnavard.db.session import SessionLocal, create_tables
from rahnavard.services.container import SecurityContainer, build_container

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Rahnavard API",
    description="Security-hardened API for matching aid requests with providers",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Framework errors (404, 405, validation) use the same envelope and headers
register_exception_handlers(app)

# Include API routers
app.include_router(rep_router, prefix="/api/v1")
app.include_router(security_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    # Tests attach their own container before the app starts.
    container: SecurityContainer | None = getattr(app.state, "security", None)
    if container is None:
        create_tables()
        container = build_container(SessionLocal)
        app.state.security = container
    await container.maintenance.start()
    logger.info("%s %s started", settings.app_name, settings.app_version)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    container: SecurityContainer | None = getattr(app.state, "security", None)
    if container:
        await container.maintenance.stop()

@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}

@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "Security-hardened API for matching aid requests with providers",
        "docs": "/docs",
        "redoc": "/redoc"
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("rahnavard.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
