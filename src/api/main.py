"""FastAPI application entry point."""
import logging
from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp, Receive, Scope, Send

from api.routers import auth, bookmarks, extension, health, metadata, tags
from core.config import get_settings
from core.logging import configure_logging
from db.session import create_engine, create_session_factory
from services.metadata_extractor import MetadataExtractor
from services.url_scraper import USER_AGENT

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Build the shared clients at startup and dispose of them at shutdown."""
    app_settings = get_settings()
    configure_logging(app_settings.log_level)

    engine = create_engine(app_settings)
    http_client = httpx.AsyncClient(
        http2=True,
        follow_redirects=True,
        timeout=app_settings.metadata_fetch_timeout,
        headers={"User-Agent": USER_AGENT},
    )
    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.http_client = http_client
    app.state.metadata_extractor = MetadataExtractor.from_settings(http_client, app_settings)
    logger.info("Started with %d metadata sources", len(app.state.metadata_extractor.sources))

    try:
        yield
    finally:
        await http_client.aclose()
        await engine.dispose()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint,
    ) -> Response:
        """Process request and add security headers to response."""
        response = await call_next(request)
        # HSTS: enforce HTTPS for 1 year, including subdomains
        response.headers["Strict-Transport-Security"] = (
            "max-age=31536000; includeSubDomains"
        )
        response.headers["X-Content-Type-Options"] = "nosniff"
        # API responses are never meant to be framed
        response.headers["X-Frame-Options"] = "DENY"
        return response


class PublicPathsCORSMiddleware(CORSMiddleware):
    """
    CORS policy for the app, except for paths that handle CORS themselves.

    Requests to `public_paths` skip the origin allow-list entirely so their
    handlers can answer any origin.
    """

    def __init__(self, app: ASGIApp, public_paths: Iterable[str] = (), **kwargs) -> None:
        super().__init__(app, **kwargs)
        self.public_paths = frozenset(public_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["path"] in self.public_paths:
            await self.app(scope, receive, send)
            return
        await super().__call__(scope, receive, send)


app_settings = get_settings()

app = FastAPI(
    title="Bookmarks API",
    description="A personal bookmark manager with tagging and metadata extraction.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(SQLAlchemyError)
async def database_exception_handler(
    _request: Request, exc: SQLAlchemyError,
) -> JSONResponse:
    """Report persistence failures as a 500 with the database message."""
    logger.error("Database error: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Database error", "error": str(exc)},
    )


# Security headers middleware (runs after CORS, adds headers to responses)
app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    PublicPathsCORSMiddleware,
    public_paths=["/extract-metadata"],
    allow_origins=app_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(auth.router, prefix="/api")
app.include_router(bookmarks.router, prefix="/api")
app.include_router(tags.router, prefix="/api")
app.include_router(metadata.router)
app.include_router(extension.router, prefix="/api")
