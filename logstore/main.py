from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import ORJSONResponse

from logstore.api.routes.ingest import router as ingest_router
from logstore.api.routes.logs import router as logs_router
from logstore.core.config import settings
from logstore.core.errors import (
    IngestStateError,
    LogStoreError,
    ParseError,
    RecordNotFound,
    SourceIOError,
    StorageIOError,
)
from logstore.core.logging import configure_logging

logger = logging.getLogger("logstore")


# -------------------------
# Response helpers
# -------------------------
def ok(data: Any = None, meta: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"success": True, "data": data, "error": None, "meta": meta or {}}


def fail(
    code: str,
    message: str,
    details: Optional[Any] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "success": False,
        "data": None,
        "error": {"code": code, "message": message, "details": details},
        "meta": meta or {},
    }


# status, error code per core error type (checked in order)
_ERROR_STATUS = (
    (RecordNotFound, 404, "NOT_FOUND"),
    (IngestStateError, 409, "INGEST_STATE"),
    (ParseError, 400, "PARSE_ERROR"),
    (SourceIOError, 400, "SOURCE_IO_ERROR"),
    (StorageIOError, 503, "STORAGE_UNAVAILABLE"),
)


def create_app(database_url: Optional[str] = None) -> FastAPI:
    """
    Build the HTTP app. Storage is opened at startup, not at import.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.LOG_LEVEL)

        # Imported here so importing the app has no side effects.
        from logstore.services.ingest_service import IngestionPipeline
        from logstore.services.positions import PositionTracker
        from logstore.services.query_service import QueryService
        from logstore.services.storage import LogStore

        store = LogStore.open(database_url)
        tracker = PositionTracker(store)
        app.state.store = store
        app.state.tracker = tracker
        app.state.pipeline = IngestionPipeline(store, tracker)
        app.state.queries = QueryService(store)
        logger.info(
            "Log store ready (policy=%s, files=%d)",
            app.state.pipeline.policy.value,
            len(tracker.snapshot()),
        )
        try:
            yield
        finally:
            store.close()

    app = FastAPI(
        title="Log Store API",
        version="0.1.0",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # -------------------------
    # Middleware
    # -------------------------
    app.add_middleware(GZipMiddleware, minimum_size=1024)

    # Request-id + timing + upload-size guard
    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        start = time.perf_counter()

        content_length = request.headers.get("content-length")
        if content_length is not None:
            try:
                if int(content_length) > settings.MAX_UPLOAD_BYTES:
                    return ORJSONResponse(
                        status_code=413,
                        content=fail(
                            code="PAYLOAD_TOO_LARGE",
                            message=f"Upload too large. Max is {settings.MAX_UPLOAD_MB} MB.",
                            meta={"request_id": request_id},
                        ),
                    )
            except ValueError:
                pass

        response = await call_next(request)

        response.headers["x-request-id"] = request_id
        response.headers["x-response-ms"] = f"{(time.perf_counter() - start) * 1000:.2f}"
        return response

    # -------------------------
    # Routes
    # -------------------------
    @app.get("/health", response_class=ORJSONResponse)
    async def health():
        return ok({"status": "ok", "env": settings.ENV})

    app.include_router(ingest_router, prefix="", tags=["ingest"])
    app.include_router(logs_router, prefix="", tags=["logs"])

    # -------------------------
    # Error handling
    # -------------------------
    @app.exception_handler(LogStoreError)
    async def log_store_error_handler(request: Request, exc: LogStoreError):
        status, code = 500, "INTERNAL_ERROR"
        for exc_type, exc_status, exc_code in _ERROR_STATUS:
            if isinstance(exc, exc_type):
                status, code = exc_status, exc_code
                break
        if status >= 500:
            logger.error("%s on %s %s: %s", code, request.method, request.url.path, exc)
        return ORJSONResponse(
            status_code=status,
            content=fail(
                code=code,
                message=exc.message,
                details={"file_id": exc.file_id, "line_no": exc.line_no},
            ),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)

        # Show minimal debug info only in dev
        details = None
        if settings.ENV == "dev":
            details = {"type": exc.__class__.__name__, "message": str(exc)}

        return ORJSONResponse(
            status_code=500,
            content=fail(
                code="INTERNAL_ERROR",
                message="An unexpected error occurred.",
                details=details,
            ),
        )

    return app


app = create_app()
