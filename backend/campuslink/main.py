"""
FastAPI backend for Penn State account linking.

Provides the REST API used by the mobile client to link, poll, inspect
and unlink a Penn State account.
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.linking import router as linking_router
from .automation.driver import PlaywrightLoginDriver
from .config import LinkConfig
from .db import CredentialRepository, UserRepository, close_db, init_db
from .errors import LinkingError
from .linking import LinkingService, SessionRegistry
from .logging import get_logger, setup_logging
from .vault import CredentialVault

logger = get_logger("main")


def build_service(config: LinkConfig) -> LinkingService:
    """Wire the vault, registry and browser driver into a linking service."""
    registry = SessionRegistry(ttl_seconds=config.session_ttl_seconds)
    vault = CredentialVault(lambda: config.credential_secret, CredentialRepository())

    async def launch_driver():
        return await PlaywrightLoginDriver.launch(config)

    return LinkingService(
        vault=vault,
        users=UserRepository(),
        registry=registry,
        driver_factory=launch_driver,
        config=config,
    )


def create_app(
    config: Optional[LinkConfig] = None,
    service: Optional[LinkingService] = None,
) -> FastAPI:
    """Create the API app.

    When *service* is given it is used as is and the lifespan leaves the
    database and the sweeper alone.
    """
    config = config or LinkConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        if service is not None:
            yield
            return

        setup_logging(config.log_dir or None)
        config.validate()
        logger.info(f"Starting CampusLink ({config.environment})")

        await init_db()
        linking = build_service(config)
        linking.registry.start_sweeper(config.sweep_interval_seconds)
        app.state.linking = linking
        try:
            yield
        finally:
            logger.info("Shutting down CampusLink")
            await linking.shutdown()
            await close_db()

    app = FastAPI(
        title="CampusLink",
        description="Penn State account linking",
        version="0.1.0",
        lifespan=lifespan,
    )
    if service is not None:
        app.state.linking = service

    # CORS for local frontends
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"http://(localhost|127\.0\.0\.1):(30[0-9]{2}|8081)",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LinkingError)
    async def linking_error_handler(request: Request, exc: LinkingError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {type(exc).__name__}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "message": exc.public_message,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}

    app.include_router(linking_router)
    return app
