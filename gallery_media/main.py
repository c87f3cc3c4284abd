import sys
import time
from contextlib import asynccontextmanager
from uuid import uuid4

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import Response
from loguru import logger

from gallery_media.config import Settings, settings
from gallery_media.routes.derive import router as derive_router
from gallery_media.routes.health import router as health_router
from gallery_media.routes.maintenance import router as maintenance_router
from gallery_media.routes.transforms import router as transforms_router
from gallery_media.routes.upload import router as upload_router
from gallery_media.services.invoker import build_invoker
from gallery_media.services.orchestrator import DerivationOrchestrator
from gallery_media.services.readiness import build_readiness_store
from gallery_media.services.storage import build_storage


def _configure_logging(app_settings: Settings) -> None:
    logger.configure(patcher=lambda record: record["extra"].setdefault("request_id", "-"))
    logger.remove()
    logger.add(
        sys.stderr,
        level=app_settings.log_level.upper(),
        format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | req={extra[request_id]} | {name}:{function}:{line} | {message}",
    )


def create_app(app_settings: Settings = settings) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _configure_logging(app_settings)
        storage = build_storage(app_settings)
        readiness = build_readiness_store(app_settings, storage)
        client = None
        if app_settings.transform_mode != "local":
            client = httpx.AsyncClient(timeout=app_settings.unit_timeout_seconds)
        invoker = build_invoker(app_settings, storage, readiness, client)

        app.state.settings = app_settings
        app.state.storage = storage
        app.state.readiness = readiness
        app.state.orchestrator = DerivationOrchestrator(app_settings, invoker)
        logger.bind(request_id="-").info(
            "Starting app app_name={} storage_backend={} transform_mode={} log_level={}",
            app_settings.app_name,
            app_settings.storage_backend,
            app_settings.transform_mode,
            app_settings.log_level,
        )
        yield
        if client is not None:
            await client.aclose()
        logger.bind(request_id="-").info("Shutting down app app_name={}", app_settings.app_name)

    app = FastAPI(title=app_settings.app_name, debug=app_settings.debug, lifespan=lifespan)

    app.include_router(health_router)
    app.include_router(upload_router)
    app.include_router(derive_router)
    app.include_router(transforms_router)
    app.include_router(maintenance_router)

    @app.middleware("http")
    async def add_request_context(request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id", str(uuid4()))
        bound_logger = logger.bind(request_id=request_id)
        start = time.perf_counter()
        bound_logger.info("Request start method={} path={}", request.method, request.url.path)
        with logger.contextualize(request_id=request_id):
            try:
                response = await call_next(request)
            except Exception:
                bound_logger.exception("Request failed method={} path={}", request.method, request.url.path)
                raise
        duration_ms = (time.perf_counter() - start) * 1000
        bound_logger.info(
            "Request finish method={} path={} status={} duration_ms={:.2f}",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        response.headers["X-Request-ID"] = request_id
        return response

    return app


app = create_app()
