"""
FastAPI application factory.

The host application supplies the enrolment directory and sink; everything
else (database, PxPay client, engine) is built from settings at startup:

    app = create_app(directory=MyDirectory(), sink=MyEnrolmentSink())
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse

from dps_enrol import __version__
from dps_enrol.config import Settings, get_settings
from dps_enrol.core import EnrolmentDirectory, EnrolmentEngine, EnrolmentSink, TransactionStore
from dps_enrol.database.connection import close_db, get_engine, get_session_factory, init_db
from dps_enrol.gateway import PxPayClient
from dps_enrol.monitoring.logging import setup_logging

from .routes import callback_router, enrolment_router, monitoring_router

logger = structlog.get_logger(__name__)


def create_app(
    directory: EnrolmentDirectory,
    sink: EnrolmentSink,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the enrolment payment API.

    Args:
        directory: Lookup of enrolment instances, courses and users
        sink: Grants course access after approved payments
        settings: Optional settings (cached settings are used if not provided)

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    setup_logging(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
        logger.info("application_startup", app_name=settings.app_name, env=settings.app_env)

        try:
            await init_db(get_engine(settings))
            logger.info("database_initialized")
        except Exception as e:
            logger.error("database_initialization_failed", error=str(e))
            raise

        session_factory = get_session_factory(settings)
        app.state.session_factory = session_factory
        app.state.enrolment_engine = EnrolmentEngine(
            store=TransactionStore(session_factory),
            directory=directory,
            sink=sink,
            gateway=PxPayClient(settings),
            settings=settings,
        )

        yield

        logger.info("application_shutdown")
        await close_db()
        logger.info("database_connections_closed")

    app = FastAPI(
        title="DPS PxPay Enrolment",
        description="Paid course enrolment through the DPS PxPay hosted payment page.",
        version=__version__,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """Add a request ID to logs and response headers."""
        request_id = str(uuid.uuid4())
        start_time = time.time()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )

    app.include_router(enrolment_router)
    app.include_router(callback_router)
    app.include_router(monitoring_router)

    return app
