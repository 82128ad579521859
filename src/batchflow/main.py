"""FastAPI application entry point."""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import health, workflows
from .config import settings
from .services.workflow import SessionRegistry


def _default_optimizer():
    from .services.routing.optimizer import OsrmRouteOptimizer
    return OsrmRouteOptimizer()


def _default_store():
    from .persistence.batches import get_batch_store
    return get_batch_store()


def _default_directory():
    if not settings.supabase_configured:
        return None
    from .data.directory import Directory
    return Directory()


def default_registry() -> SessionRegistry:
    return SessionRegistry(
        optimizer_factory=_default_optimizer,
        store_factory=_default_store,
        directory_factory=_default_directory,
    )


def create_app(registry: SessionRegistry | None = None) -> FastAPI:
    app = FastAPI(title=settings.app_name)
    app.state.registry = registry if registry is not None else default_registry()
    if settings.frontend_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.frontend_allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Root endpoint for diagnostics
    @app.get("/")
    def root():
        return {
            "service": settings.app_name,
            "status": "running",
            "api_prefix": settings.api_prefix,
            "health": f"{settings.api_prefix}/health",
            "docs": "/docs",
        }

    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(workflows.router, prefix=settings.api_prefix)
    return app


app = create_app()
