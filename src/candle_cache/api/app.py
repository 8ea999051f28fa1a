"""FastAPI application exposing candle cache rebuild and status endpoints."""

import asyncio
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from candle_cache.config.loader import load_config
from candle_cache.config.schema import AppConfig
from candle_cache.db.engine import dispose_engine, get_session, init_engine, session_scope
from candle_cache.errors import describe_error
from candle_cache.models.status import ALL_SCOPE, scope_key
from candle_cache.service import CandleCacheService

logger = structlog.get_logger()

# Load config once at import; CANDLE_CACHE_CONFIG points at the YAML file.
config = load_config(os.environ.get("CANDLE_CACHE_CONFIG"))


def create_app(service=None, app_config: AppConfig | None = None) -> FastAPI:
    """Build the app. With *service* given, startup skips DB wiring.

    The live builder only starts here when ``api.run_builder`` is set; by
    default the worker process owns it.
    """
    settings = app_config if app_config is not None else config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        session_gen = None
        if service is not None:
            app.state.service = service
        else:
            init_engine(settings.database.url)
            session_gen = get_session()
            session = next(session_gen)
            app.state.service = CandleCacheService(settings, session, session_scope)
            logger.info("Database engine initialized")

        builder_task = None
        if settings.builder_process == "api":
            builder_task = asyncio.create_task(app.state.service.run_builder())
            logger.info("Live builder started in the API process")
        try:
            yield
        finally:
            if builder_task is not None:
                builder_task.cancel()
                await asyncio.gather(builder_task, return_exceptions=True)
            if session_gen is not None:
                session_gen.close()
                dispose_engine()

    app = FastAPI(
        title="Candle Cache API",
        description="Rebuild and status endpoints for the candle cache engine",
        version="0.1.0",
        lifespan=lifespan,
    )
    if service is not None:
        app.state.service = service

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("request_failed", path=request.url.path)
        return JSONResponse(status_code=500, content={"success": False, "error": describe_error(exc)})

    def _start_response(result, what: str):
        if result.success:
            logger.info("Candle Cache Refresh Process Started", target=what, job_id=result.job_id)
            return {"success": True, "message": result.message, "jobId": result.job_id}
        return JSONResponse(status_code=400, content={"success": False, "error": result.message})

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    @app.get("/refresh-candle-cache")
    async def refresh_candle_cache(request: Request):
        """Start a rebuild of every market's candles."""
        logger.info("Starting Candle Cache Refresh")
        result = request.app.state.service.orchestrator.start_rebuild_all()
        return _start_response(result, ALL_SCOPE)

    @app.get("/refresh-candle-cache/{resource_slug}")
    async def refresh_resource_candle_cache(resource_slug: str, request: Request):
        """Start a rebuild of one resource's candles."""
        resource_slug = resource_slug.lower()
        logger.info("Starting Candle Cache Refresh", resource_slug=resource_slug)
        result = request.app.state.service.orchestrator.start_rebuild_resource(resource_slug)
        return _start_response(result, scope_key(resource_slug))

    def _cancel(request: Request, key: str):
        if not request.app.state.service.orchestrator.cancel(key):
            raise HTTPException(status_code=404, detail=f"No running rebuild for scope {key!r}")
        return {"success": True, "message": f"Cancellation requested for {key}"}

    @app.post("/candle-cache-rebuild/all/cancel")
    async def cancel_rebuild_all(request: Request):
        """Cancel the running full rebuild."""
        return _cancel(request, ALL_SCOPE)

    @app.post("/candle-cache-rebuild/resource/{resource_slug}/cancel")
    async def cancel_rebuild_resource(resource_slug: str, request: Request):
        """Cancel the running rebuild of one resource."""
        return _cancel(request, scope_key(resource_slug.lower()))

    @app.get("/candle-cache-status")
    @app.get("/candle-cache-status/rebuilder")
    async def rebuilder_status(request: Request):
        return request.app.state.service.status.get_rebuilder_status().model_dump(mode="json")

    @app.get("/candle-cache-status/builder")
    async def builder_status(request: Request):
        return request.app.state.service.status.get_builder_status().model_dump(mode="json")

    @app.get("/candle-cache-status/all")
    async def all_builders_status(request: Request):
        return request.app.state.service.status.get_all_builders_status().model_dump(mode="json")

    return app


app = create_app()
