from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from memchat.application.api.route.chat import router as chat_router
from memchat.application.schema.chat import error_body
from memchat.domain.errors import MemchatError
from memchat.infrastructure.config.settings import Settings
from memchat.infrastructure.container import ServiceContainer, build_container
from memchat.infrastructure.observability.logging import metrics, setup_logging

logger = structlog.get_logger(__name__)


def create_app(settings: Optional[Settings] = None, container: Optional[ServiceContainer] = None) -> FastAPI:
    """Build the HTTP application around a service container"""

    settings = settings or (container.settings if container else Settings.from_env())
    setup_logging(settings.logging, environment=settings.environment)

    container = container or build_container(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await container.start()
        logger.info("memchat server started", environment=settings.environment)
        yield
        await container.close()
        logger.info("memchat server shutdown")

    app = FastAPI(title="memchat", lifespan=lifespan)
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request.headers.get("X-Request-ID") or str(uuid.uuid4())
        )
        return await call_next(request)

    @app.exception_handler(MemchatError)
    async def memchat_error_handler(request: Request, exc: MemchatError):
        if exc.status_code >= 500:
            logger.error("Request failed", path=request.url.path, error=exc.message)
        else:
            logger.info("Request rejected", path=request.url.path, status=exc.status_code, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=error_body(exc.message, exc.error_code))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        return JSONResponse(status_code=400, content=error_body(message))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail if exc.status_code != 404 else f"Route {request.url.path} not found"
        return JSONResponse(status_code=exc.status_code, content=error_body(str(message)))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error", path=request.url.path, error=str(exc), exc_info=exc)
        return JSONResponse(status_code=500, content=error_body("Internal server error"))

    @app.get("/health")
    async def health():
        return {
            "success": True,
            "message": "memchat is running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metrics": metrics.get_metrics_summary()
        }

    app.include_router(chat_router)
    return app
