from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.core.config import Settings, settings
from app.core.db import close_db_pools
from app.core.exceptions import CompletionBackendError
from app.core.logging_setup import configure_logging
from app.core.middleware import RequestIDMiddleware
from app.core.redis import close_redis, get_redis
from app.services.container import build_services

configure_logging(settings.LOG_LEVEL, settings.ENVIRONMENT)

logger = structlog.get_logger(__name__)


async def _check_model(app: FastAPI) -> bool:
    services = app.state.services
    model = app.state.generation.model
    try:
        available = await services.catalog.is_available(model)
    except CompletionBackendError as exc:
        logger.warning("ollama.unreachable", base_url=services.ollama.base_url, error=exc.message)
        return False
    if not available:
        logger.warning(
            "ollama.model_missing",
            model=model,
            hint=f"Run `ollama pull {model}` or set OLLAMA_MODEL",
        )
    return available


def create_app(app_settings: Settings | None = None, **service_overrides) -> FastAPI:
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "app.startup",
            environment=app_settings.ENVIRONMENT,
            store_backend=app_settings.STORE_BACKEND,
        )
        app.state.settings = app_settings
        app.state.services = build_services(app_settings, **service_overrides)
        app.state.generation = app_settings.generation_options()

        try:
            await app.state.services.tag_store.ping()
            logger.info("store.connected", backend=app_settings.STORE_BACKEND)
        except Exception as e:
            logger.warning("store.connection_failed", error=str(e))

        if app_settings.STORE_BACKEND != "memory":
            try:
                await get_redis()
                logger.info("redis.connected")
            except Exception as e:
                logger.warning("redis.connection_failed", error=str(e))

        await _check_model(app)

        yield

        logger.info("app.shutdown")
        await app.state.services.aclose()
        if app_settings.STORE_BACKEND != "memory":
            await close_db_pools()
            await close_redis()

    app = FastAPI(
        title="Tagrelay API",
        description="Streaming chat relay for Ollama with automatic hashtagging",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "PUT", "OPTIONS"],
        allow_headers=["Content-Type", "X-Request-ID"],
        max_age=3600,
    )

    app.add_middleware(RequestIDMiddleware)

    from app.api.v1 import backend, chat, messages, sessions, tags

    app.include_router(chat.router, tags=["chat"])
    app.include_router(tags.router, prefix="/api/v1/tags", tags=["tags"])
    app.include_router(messages.router, prefix="/api/v1/messages", tags=["messages"])
    app.include_router(sessions.router, prefix="/api/v1/sessions", tags=["sessions"])
    app.include_router(backend.router, prefix="/api/v1", tags=["backend"])

    @app.get("/metrics", include_in_schema=False)
    async def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/health")
    async def health_check():
        """
        Liveness + readiness check.

        Returns 503 when the tag/message store is unreachable. Redis and the
        completion backend are reported but only degrade the status.
        """
        services = app.state.services
        store_ok = False
        redis_ok = None

        try:
            await services.tag_store.ping()
            store_ok = True
        except Exception as exc:
            logger.warning("health.store_unreachable", error=str(exc))

        if app_settings.STORE_BACKEND != "memory":
            redis_ok = False
            try:
                r = await get_redis()
                await r.ping()
                redis_ok = True
            except Exception as exc:
                logger.warning("health.redis_unreachable", error=str(exc))

        backend_ok = await _check_model(app)

        healthy = store_ok and redis_ok is not False and backend_ok
        body = {
            "status": "healthy" if healthy else "degraded",
            "store": "ok" if store_ok else "unavailable",
            "redis": "disabled" if redis_ok is None else ("ok" if redis_ok else "unavailable"),
            "backend": "ok" if backend_ok else "unavailable",
            "model": app.state.generation.model,
        }
        http_status = status.HTTP_200_OK if store_ok else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(content=body, status_code=http_status)

    return app


app = create_app()
