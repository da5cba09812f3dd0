from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from . import __version__
from .db.core import dispose_engine, health_check, init_models
from .deps import Services, build_services
from .errors import register_error_handlers
from .integrations.google.routes import router as google_router
from .logging_config import configure_logging, req_id_var
from .replies.routes import router as replies_router

logger = logging.getLogger(__name__)


def create_app(services: Services | None = None, *, configure_logs: bool = True) -> FastAPI:
    if configure_logs:
        configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_models()
        logger.info("reviewsync started", extra={"meta": {"version": __version__}})
        try:
            yield
        finally:
            await dispose_engine()

    app = FastAPI(title="reviewsync", version=__version__, lifespan=lifespan)
    app.state.services = services or build_services()

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next):
        rid = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        token = req_id_var.set(rid)
        try:
            response = await call_next(request)
        finally:
            req_id_var.reset(token)
        response.headers["X-Request-ID"] = rid
        return response

    register_error_handlers(app)
    app.include_router(google_router)
    app.include_router(replies_router)

    @app.get("/healthz")
    async def healthz():
        ok = await health_check()
        return {"status": "ok" if ok else "degraded", "db": ok}

    @app.get("/metrics")
    async def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app
