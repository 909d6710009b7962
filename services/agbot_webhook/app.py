import logging

import asyncpg
from fastapi import FastAPI
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from agbot_webhook.middleware import TraceMiddleware
from agbot_webhook.orchestrator import WebhookOrchestrator
from agbot_webhook.routes import router as webhook_router
from agbot_webhook.settings import Settings, load_settings
from shared.logging import DEFAULT_SERVICE, configure_logging, log_event

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, pool=None) -> FastAPI:
    """
    Build the service. With both a pool and settings supplied (tests) the app
    is ready immediately; otherwise startup loads settings from the
    environment and opens its own asyncpg pool.
    """
    app = FastAPI(title="AgBot webhook ingest")
    app.add_middleware(TraceMiddleware)
    app.include_router(webhook_router)

    app.state.settings = settings
    app.state.pool = pool
    app.state.owns_pool = False
    if settings is not None and pool is not None:
        app.state.orchestrator = WebhookOrchestrator(pool, settings)

    @app.on_event("startup")
    async def startup():
        configure_logging(DEFAULT_SERVICE)
        if app.state.settings is None:
            app.state.settings = load_settings()
        if app.state.pool is None:
            app.state.pool = await asyncpg.create_pool(
                app.state.settings.database_url,
                min_size=app.state.settings.pool_min_size,
                max_size=app.state.settings.pool_max_size,
            )
            app.state.owns_pool = True
        app.state.orchestrator = WebhookOrchestrator(app.state.pool, app.state.settings)
        log_event(logger, "startup complete", pool_max_size=app.state.settings.pool_max_size)

    @app.on_event("shutdown")
    async def shutdown():
        if app.state.owns_pool and app.state.pool is not None:
            await app.state.pool.close()
            app.state.pool = None

    @app.get("/health")
    async def health():
        return {"status": "ok", "service": DEFAULT_SERVICE}

    @app.get("/metrics")
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
