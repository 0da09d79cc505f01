"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from social_link import __version__
from social_link.api.deps import http_error
from social_link.api.routes import accounts, connect, health
from social_link.config import settings
from social_link.domain.errors import SocialLinkError
from social_link.logging import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Check the database on startup and close adapter HTTP clients on shutdown."""
    logger.info(
        "application_starting",
        version=__version__,
        environment=settings.environment,
        oauth_provider=settings.oauth_provider,
    )

    try:
        from social_link.db.session import init_db

        init_db()
        logger.info("database_connected")
    except Exception as e:
        logger.error("database_connection_failed", error=str(e))
        # Readiness probe reports the failure

    yield

    from social_link.services.container import get_container

    if get_container.cache_info().currsize:
        adapters = get_container().adapters
        if hasattr(adapters, "close"):
            adapters.close()
    logger.info("application_shutting_down")


app = FastAPI(
    title="Social Link",
    description="Connect social accounts over OAuth and keep their tokens fresh",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(connect.router, prefix="/api/v1")
app.include_router(accounts.router, prefix="/api/v1")


@app.exception_handler(SocialLinkError)
async def social_link_error_handler(request: Request, exc: SocialLinkError) -> JSONResponse:
    """Render lifecycle errors a route did not translate itself."""
    error = http_error(exc)
    if error.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.code)
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": error.detail},
        headers=error.headers,
    )


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Service name, version and where the docs live."""
    return {
        "name": "Social Link",
        "version": __version__,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "social_link.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
    )
