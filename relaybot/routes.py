import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.health_routes import router as health_router
from .api.session_routes import router as session_router
from .api.webhook_routes import router as webhook_router
from .logging_config import logger
from .runtime import RelayRuntime, build_runtime
from .settings import Settings, settings as default_settings


async def handle_unexpected_error(request: Request, exc: Exception):
    """
    Global exception handler: structured 500 body plus a log line that
    carries the same error id.
    """
    error_id = uuid.uuid4().hex
    logger.exception(
        "Unhandled error %s %s (error_id=%s)",
        request.method,
        request.url.path,
        error_id,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error_code": "internal_error",
            "message": "Internal server error, please try again later",
            "error_id": error_id,
        },
    )


def create_app(
    config: Optional[Settings] = None,
    *,
    runtime: Optional[RelayRuntime] = None,
) -> FastAPI:
    """
    Build the FastAPI app. Without an explicit runtime one is built from
    settings; missing required configuration aborts here.
    """
    config = config or default_settings
    if runtime is None:
        runtime = build_runtime(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await runtime.start()
        try:
            yield
        finally:
            await runtime.stop()

    app = FastAPI(title="Relay Bot", version="0.1.0", lifespan=lifespan)
    app.state.runtime = runtime
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(health_router)
    app.include_router(webhook_router)
    app.include_router(session_router)
    return app


__all__ = ["create_app", "handle_unexpected_error"]
