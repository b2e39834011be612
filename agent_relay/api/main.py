"""
FastAPI Application
==================

Main FastAPI application relaying agent replies to browsers over SSE.
Provides piped tutor streams, detached search streams and conversation
lookup.
"""

from contextlib import asynccontextmanager
import uuid
from typing import AsyncGenerator, Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from agent_relay.api.routes.chat import router as chat_router
from agent_relay.api.routes.health import router as health_router
from agent_relay.api.routes.stream import router as stream_router
from agent_relay.api.sse.agent_bridge import AgentBridge, SessionBusyError
from agent_relay.api.sse.registry import TopicRegistry
from agent_relay.config.database import close_databases, get_redis_client, initialize_databases
from agent_relay.config.logging import get_logger, setup_logging
from agent_relay.config.settings import Settings, get_settings
from agent_relay.core.agent.client import AgentAPIError, AgentClient
from agent_relay.core.storage.session_store import (
    InMemorySessionStore,
    PersistenceError,
    RedisSessionStore,
    SessionStore,
)
from agent_relay.models.schemas import ErrorResponse

logger = get_logger(__name__)


def _attach_store(app: FastAPI, store: SessionStore) -> None:
    app.state.session_store = store
    app.state.bridge = AgentBridge(app.state.agent_client, store, app.state.registry)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    settings: Settings = app.state.settings
    logger.info("Starting FastAPI application", environment=settings.environment)

    owns_redis = False
    if getattr(app.state, "bridge", None) is None:
        try:
            await initialize_databases()
            logger.info("Databases initialized")
        except Exception as e:
            logger.error("Failed to initialize databases", error=str(e))
            raise RuntimeError(f"Database initialization failed: {e}")
        owns_redis = True
        _attach_store(app, RedisSessionStore(get_redis_client(), settings.session_key_prefix))

    try:
        yield
    finally:
        # Shutdown
        logger.info("Shutting down FastAPI application")

        try:
            await app.state.bridge.close()
        except Exception as e:
            logger.error("Error closing agent bridge", error=str(e))

        try:
            await app.state.agent_client.close()
            logger.info("Agent client closed")
        except Exception as e:
            logger.error("Error closing agent client", error=str(e))

        # Close databases last
        if owns_redis:
            try:
                await close_databases()
                logger.info("Databases closed")
            except Exception as e:
                logger.error("Error closing databases", error=str(e))


def _error_response(
    request: Request,
    status_code: int,
    error: str,
    error_code: str,
    details: Optional[dict[str, Any]] = None,
) -> JSONResponse:
    error_response = ErrorResponse(
        error=error,
        error_code=error_code,
        details=details,
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(status_code=status_code, content=error_response.model_dump(mode="json"))


def _register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(StarletteHTTPException)
    async def custom_http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Custom HTTP exception handler with structured error response."""
        logger.error(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            request_id=getattr(request.state, "request_id", None),
        )
        response = _error_response(request, exc.status_code, str(exc.detail), str(exc.status_code))
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Reject malformed request bodies with 400."""
        errors = [
            {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
            for error in exc.errors()
        ]
        logger.warning("Request validation failed", errors=len(errors), path=request.url.path)
        return _error_response(
            request, 400, "Invalid request", "VALIDATION_ERROR", {"errors": errors}
        )

    @app.exception_handler(SessionBusyError)
    async def session_busy_exception_handler(
        request: Request, exc: SessionBusyError
    ) -> JSONResponse:
        logger.warning("Session busy", session_id=exc.session_id)
        return _error_response(
            request, 409, str(exc), "SESSION_BUSY", {"session_id": exc.session_id}
        )

    @app.exception_handler(AgentAPIError)
    async def agent_api_exception_handler(request: Request, exc: AgentAPIError) -> JSONResponse:
        """Map agent failures on non-streaming calls to 502."""
        logger.error("Agent API error", error=str(exc), upstream_status=exc.status)
        return _error_response(
            request,
            502,
            "Agent request failed",
            "AGENT_API_ERROR",
            {"message": str(exc), "upstream_status": exc.status} if settings.debug else None,
        )

    @app.exception_handler(PersistenceError)
    async def persistence_exception_handler(
        request: Request, exc: PersistenceError
    ) -> JSONResponse:
        logger.error("Persistence error", error=str(exc))
        return _error_response(
            request,
            500,
            "Conversation storage failed",
            "PERSISTENCE_ERROR",
            {"message": str(exc)} if settings.debug else None,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """General exception handler for unexpected errors."""
        logger.error(
            "Unhandled exception",
            exception=str(exc),
            request_id=getattr(request.state, "request_id", None),
            exc_info=True,
        )
        return _error_response(
            request,
            500,
            "Internal server error",
            "INTERNAL_ERROR",
            {"exception": str(exc)} if settings.debug else None,
        )


def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[TopicRegistry] = None,
    session_store: Optional[SessionStore] = None,
    agent_client: Optional[AgentClient] = None,
) -> FastAPI:
    """
    Application factory.

    Components not passed in are built from settings. A Redis-backed
    conversation store is connected during startup; the in-memory one is
    ready immediately.

    Returns:
        FastAPI application instance
    """
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Relay agent replies to browsers over Server-Sent Events",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    app.state.settings = settings
    app.state.registry = registry or TopicRegistry()
    app.state.agent_client = agent_client or AgentClient(settings)
    app.state.bridge = None

    if session_store is None and settings.session_store_backend == "memory":
        session_store = InMemorySessionStore()
    if session_store is not None:
        _attach_store(app, session_store)

    # No GZip: compression buffers event streams
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_hosts,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=["X-Session-Id", "X-Request-ID"],
    )

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next) -> Any:  # type: ignore
        """Add request ID to all requests."""
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        return response

    _register_exception_handlers(app, settings)

    app.include_router(health_router)
    app.include_router(chat_router)
    app.include_router(stream_router)

    @app.get("/", tags=["General"])
    async def root() -> dict[str, Any]:
        """
        Root endpoint with basic API information.
        """
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "docs_url": "/docs" if settings.debug else None,
            "health_check": "/health",
            "endpoints": {
                "chat_stream": "POST /chat/stream",
                "chat": "POST /chat",
                "start_search": "POST /chat/start-search",
                "conversation": "GET /chat/session/{session_id}",
                "conversations": "GET /chat/conversations?userId=...&organizationId=...",
                "stream": "GET /stream/{session_id}?token=...",
                "stream_stats": "GET /stream/stats",
            },
        }

    return app


app = create_app()


# Development server runner
def run_development_server() -> None:
    """Run development server with auto-reload."""
    settings = get_settings()
    uvicorn.run(
        "agent_relay.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    run_development_server()
