from __future__ import annotations

import structlog
from fastapi import FastAPI

from app.api.demo import router as demo_router
from app.api.metrics import router as metrics_router
from app.config import Settings, get_settings
from app.observability.logging import configure_logging, shutdown_logging
from app.observability.metrics import MetricsRegistry
from app.observability.middleware import InstrumentationMiddleware


def create_app(settings: Settings | None = None, registry: MetricsRegistry | None = None) -> FastAPI:
    settings = settings or get_settings()
    registry = registry or MetricsRegistry()

    app = FastAPI(title="Instrumented Demo", version="0.1.0")
    app.state.settings = settings
    app.state.metrics = registry
    app.add_middleware(InstrumentationMiddleware, registry=registry)
    app.include_router(demo_router)
    app.include_router(metrics_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.on_event("startup")
    def _startup() -> None:
        configure_logging(settings)
        log = structlog.get_logger("app")
        log.info("server_started", url=settings.public_url)
        log.info("metrics_available", url=f"{settings.public_url}/metrics")

    @app.on_event("shutdown")
    def _shutdown() -> None:
        shutdown_logging()

    return app
