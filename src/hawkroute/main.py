"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes import hawkers, health, routes
from .config import settings
from .services.routing.service import build_scheduler_registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.schedulers = build_scheduler_registry(settings)
    try:
        yield
    finally:
        await app.state.schedulers.close()
        app.state.schedulers = None


def create_app() -> FastAPI:
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    if settings.frontend_allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.frontend_allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

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
    app.include_router(hawkers.router, prefix=settings.api_prefix)
    app.include_router(routes.router, prefix=settings.api_prefix)
    return app


app = create_app()
