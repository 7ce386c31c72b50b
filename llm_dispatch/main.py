"""LLM Dispatch: FastAPI application entry point and composition root."""

import signal
import uuid
from collections.abc import Mapping
from contextlib import asynccontextmanager

# configure_structlog MUST run before the other package imports
# (structlog caches the processor chain on first use).
from llm_dispatch.core.logging import configure_structlog
from llm_dispatch.core.config import get_settings as _get_settings_early

_early_settings = _get_settings_early()
configure_structlog(
    log_level="DEBUG" if _early_settings.debug else _early_settings.log_level,
    json_logs=_early_settings.json_logs and not _early_settings.debug,
)

import structlog

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from llm_dispatch.api.routes import api_router
from llm_dispatch.core.config import Settings, get_settings
from llm_dispatch.executors import fake_executors
from llm_dispatch.middleware.correlation import get_correlation_id, setup_correlation_middleware
from llm_dispatch.queue.dispatcher import Dispatcher, Executor
from llm_dispatch.queue.schemas import JobKind

logger = structlog.get_logger(__name__)


def build_lifespan(executors: Mapping[JobKind, Executor] | None, settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Own the Dispatcher for the life of the process."""
        app.state.shutting_down = False

        def handle_sigterm(signum, frame):
            app.state.shutting_down = True
            logger.info("sigterm_received", action="health_check_503_draining_connections")

        try:
            signal.signal(signal.SIGTERM, handle_sigterm)
        except ValueError:
            # Not on the main thread (e.g. TestClient portal)
            pass

        logger.info("startup_begin", app_name=settings.app_name, debug=settings.debug)

        bound = executors
        if bound is None:
            bound = fake_executors()
            logger.warning("using_fake_executors", reason="no executors injected")

        dispatcher = Dispatcher(bound, config=settings.dispatch_config())
        await dispatcher.start()
        app.state.dispatcher = dispatcher

        yield

        logger.info("shutdown_begin")
        await dispatcher.stop()
        app.state.dispatcher = None
        logger.info("shutdown_complete")

    return lifespan


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Log HTTP errors with a debug_id and return a sanitized body."""
    debug_id = str(uuid.uuid4())

    logger.error(
        "http_exception",
        status_code=exc.status_code,
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        detail=exc.detail,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "debug_id": debug_id},
        headers=exc.headers,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unhandled errors with traceback and return a generic 500."""
    debug_id = str(uuid.uuid4())

    logger.error(
        "unhandled_exception",
        debug_id=debug_id,
        correlation_id=get_correlation_id(),
        path=request.url.path,
        method=request.method,
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=True,
    )

    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "debug_id": debug_id},
    )


def create_app(
    executors: Mapping[JobKind, Executor] | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        executors: One async executor per JobKind. Fake executors when omitted.
        settings: Settings override (environment settings when omitted)
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Concurrent, rate-limited dispatcher for AI plan, chat and food-analysis jobs",
        version="0.1.0",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=build_lifespan(executors, settings),
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Correlation ID middleware (runs first on incoming requests)
    setup_correlation_middleware(app)

    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(Exception)(generic_exception_handler)

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "llm_dispatch.main:app",
        host="0.0.0.0",
        port=8000,
    )
