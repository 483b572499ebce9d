"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from contraction_sync import __version__
from contraction_sync.api.v1.api import api_router
from contraction_sync.config import Settings, settings as default_settings
from contraction_sync.database import create_db_engine, create_session_factory, init_db
from contraction_sync.engine import DocumentClientFactory, SyncEngine
from contraction_sync.errors import (
    BackendRejectedError,
    BackendUnconfiguredError,
    BackendUnreachableError,
    ConflictExhaustionError,
    NotFoundError,
    ValidationError,
)
from contraction_sync.utils.timeutil import Clock, now_ms

log = logging.getLogger(__name__)


def configure_logging(level_name: str) -> None:
    """Configure the root logger once; HTTP client and scheduler chatter only at DEBUG."""
    level = getattr(logging, level_name.upper(), logging.INFO)
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=level,
            format='%(asctime)s - %(name)s - %(levelname)-8s - %(message)s'
        )

    root = logging.getLogger()
    root.setLevel(level)
    quiet_level = logging.DEBUG if level <= logging.DEBUG else logging.WARNING
    logging.getLogger("httpcore").setLevel(quiet_level)
    logging.getLogger("httpx").setLevel(quiet_level)
    logging.getLogger("apscheduler").setLevel(quiet_level)
    root.debug("Debug logging enabled at startup.")


def create_app(
    app_settings: Optional[Settings] = None,
    document_client_factory: Optional[DocumentClientFactory] = None,
    auto_drain: bool = True,
    clock: Clock = now_ms,
) -> FastAPI:
    app_settings = app_settings or default_settings
    configure_logging(app_settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db_engine = create_db_engine(app_settings.database_url)
        init_db(db_engine)
        engine = SyncEngine(
            app_settings,
            create_session_factory(db_engine),
            document_client_factory=document_client_factory,
            auto_drain=auto_drain,
            clock=clock,
        )
        app.state.engine = engine
        await engine.start()
        try:
            yield
        finally:
            await engine.stop()
            db_engine.dispose()

    app = FastAPI(
        title="Contraction Sync",
        description="Offline-first contraction tracking with optional remote sync",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__
        }

    @app.get("/")
    async def root():
        """Root endpoint - redirect to docs."""
        return {
            "message": "Contraction Sync API",
            "version": __version__,
            "docs": "/docs"
        }

    app.include_router(api_router, prefix=app_settings.api_v1_str)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": exc.errors},
        )

    @app.exception_handler(BackendUnconfiguredError)
    async def unconfigured_handler(request: Request, exc: BackendUnconfiguredError):
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})

    @app.exception_handler(BackendUnreachableError)
    async def unreachable_handler(request: Request, exc: BackendUnreachableError):
        log.warning(f"Backend unreachable: {exc}")
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})

    @app.exception_handler(BackendRejectedError)
    async def rejected_handler(request: Request, exc: BackendRejectedError):
        log.warning(f"Backend rejected request: {exc}")
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})

    @app.exception_handler(ConflictExhaustionError)
    async def conflict_handler(request: Request, exc: ConflictExhaustionError):
        log.error(f"Merge failed: {exc}")
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        log.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=default_settings.log_level.lower())
