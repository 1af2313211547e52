"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from uplift_service import __version__
from uplift_service.api.v1.router import api_router
from uplift_service.config import get_settings
from uplift_service.exceptions import UpliftError
from uplift_service.infrastructure.commerce import close_commerce_client
from uplift_service.infrastructure.database.connection import dispose_engine
from uplift_service.infrastructure.redis import close_redis
from uplift_service.log_config import configure_logging
from uplift_service.middleware.request_context import RequestContextMiddleware

configure_logging(get_settings())

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown events."""
    settings = get_settings()
    logger.info(
        "Starting cart uplift engine",
        app_env=settings.app_env,
        debug=settings.debug,
    )

    yield

    await close_commerce_client()
    await close_redis()
    await dispose_engine()
    logger.info("Shutting down cart uplift engine")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Cart Uplift API",
        description="Cart and product-page recommendations and bundles for storefronts",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(UpliftError)
    async def uplift_error_handler(request: Request, exc: UpliftError) -> JSONResponse:
        logger.warning("Request failed", error=exc.message, status_code=exc.status_code)
        return JSONResponse(
            status_code=exc.status_code,
            content={"message": exc.message, "error": type(exc).__name__},
        )

    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()


def run() -> None:
    """Run the application using uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "uplift_service.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.api_workers,
    )


if __name__ == "__main__":
    run()
