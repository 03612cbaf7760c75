"""
Logbook API.

Routes live under /api/v1. Every write path ends in a pending Document and a
Celery task; the HTTP layer never runs the pipeline itself.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from logbook.api.dependencies import Storage
from logbook.api.v1.documents import router as documents_router
from logbook.api.v1.webhooks import router as webhooks_router
from logbook.core.config import settings
from logbook.db.session import check_db_health, engine
from logbook.schemas.documents import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Logbook API starting | env=%s bucket=%s search=%s",
        settings.app_env, settings.s3_bucket, settings.search_enabled,
    )
    db_health = await check_db_health()
    if db_health["status"] != "ok":
        logger.critical("Database unreachable at startup | %s", db_health)
        raise RuntimeError(f"DB unavailable: {db_health}")

    yield

    logger.info("Logbook API stopping")
    await engine.dispose()


def _error(status_code: int, body: ErrorResponse, request_id: str | None = None) -> JSONResponse:
    headers = {"X-Request-ID": request_id} if request_id else None
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"), headers=headers)


def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(RequestValidationError)
    async def on_validation_error(request: Request, exc: RequestValidationError):
        body = ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Request validation failed.",
            details=[
                ErrorDetail(
                    field=".".join(str(loc) for loc in err["loc"]),
                    message=err["msg"],
                    code="VALIDATION_ERROR",
                )
                for err in exc.errors()
            ],
            request_id=request.headers.get("X-Request-ID"),
        )
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, body)

    @app.exception_handler(Exception)
    async def on_unhandled(request: Request, exc: Exception):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        logger.exception("Unhandled exception | path=%s request_id=%s", request.url.path, request_id)
        body = ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            request_id=request_id,
        )
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, body, request_id)


def create_app() -> FastAPI:
    docs = not settings.is_production
    app = FastAPI(
        title="Logbook",
        description="Archive ingestion and document processing API.",
        version="1.0.0",
        docs_url="/api/docs" if docs else None,
        redoc_url=None,
        openapi_url="/api/openapi.json" if docs else None,
        lifespan=lifespan,
    )

    app.add_middleware(GZipMiddleware, minimum_size=1024)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if docs else [],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID", "X-Webhook-Secret"],
        expose_headers=["X-Request-ID", "X-Document-ID", "Location"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        started = time.perf_counter()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "HTTP %s %s %d %.1fms | request_id=%s",
            request.method, request.url.path, response.status_code,
            (time.perf_counter() - started) * 1000, request_id,
        )
        return response

    _register_error_handlers(app)

    app.include_router(documents_router, prefix="/api/v1")
    app.include_router(webhooks_router,  prefix="/api/v1")

    @app.get("/health", tags=["Operations"], summary="Liveness")
    async def health() -> dict:
        return {"status": "ok", "service": "logbook-api"}

    @app.get("/ready", tags=["Operations"], summary="Database and archive bucket reachable")
    async def ready(storage: Storage) -> JSONResponse:
        checks = {"database": await check_db_health(), "storage": await storage.check_health()}
        ok = all(check["status"] == "ok" for check in checks.values())
        return JSONResponse(
            status_code=status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "ready" if ok else "not_ready", **checks},
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "logbook.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
    )
