"""FastAPI application entry point.

This module creates the HTTP search surface with:
- Exception handlers mapping IndexerException onto JSON error bodies
- API routers (v1)
- Health check endpoints (/health, /ready)
- Startup/shutdown of the shared Qdrant client
"""

from contextlib import AsyncExitStack, asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from semantic_indexer.api.v1 import health
from semantic_indexer.api.v1.router import router as v1_router
from semantic_indexer.config import Settings, get_settings
from semantic_indexer.middleware import RequestIDMiddleware
from semantic_indexer.services.embedding_service import EmbeddingService
from semantic_indexer.services.qdrant_service import VectorStore
from semantic_indexer.services.search_service import SearchEngine
from semantic_indexer.utils.errors import IndexerException
from semantic_indexer.utils.logging import get_logger, log_error, setup_logging

logger = get_logger("main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Opens one Qdrant client for the whole process and builds the search engine
    on top of it, unless both were supplied to ``create_app``.
    """
    settings: Settings = app.state.settings
    logger.info("Starting semantic indexer API...")

    owns_store = app.state.vector_store is None
    if owns_store:
        app.state.vector_store = VectorStore(settings.qdrant)
    store: VectorStore = app.state.vector_store

    async with AsyncExitStack() as stack:
        if owns_store:
            await stack.enter_async_context(store)
            if not await store.ping():
                logger.warning(
                    f"Qdrant is not reachable at {settings.qdrant.url}; "
                    "search requests will fail until it is"
                )

        if app.state.search_engine is None:
            app.state.search_engine = SearchEngine(
                EmbeddingService(settings.embedding),
                store,
                settings.search,
            )

        logger.info("Semantic indexer API started")
        yield
        logger.info("Shutting down semantic indexer API...")
    logger.info("Semantic indexer API shut down")


def create_app(
    settings: Optional[Settings] = None,
    vector_store: Optional[VectorStore] = None,
    search_engine: Optional[SearchEngine] = None,
) -> FastAPI:
    """Build the FastAPI application."""
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title="Semantic Indexer",
        description="Semantic search over embedded document chunks",
        version="0.1.0",
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        openapi_url="/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.vector_store = vector_store
    app.state.search_engine = search_engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=3600,
    )
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(v1_router)
    # Root-level probes for container health checks
    app.include_router(health.router, include_in_schema=False)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": "semantic-indexer",
            "version": "0.1.0",
            "status": "running",
            "environment": settings.environment.value,
        }

    return app


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(IndexerException)
    async def indexer_exception_handler(request: Request, exc: IndexerException):
        """Handle IndexerException."""
        log_error(exc, context={"path": request.url.path, "method": request.method})
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        log_error(exc, context={"path": request.url.path, "method": request.method})
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "message": exc.detail,
                    "code": "HTTP_ERROR",
                    "status_code": exc.status_code,
                }
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle validation errors."""
        log_error(exc, context={"path": request.url.path, "method": request.method})
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": {
                    "message": "Validation error",
                    "code": "VALIDATION_ERROR",
                    "status_code": 422,
                    "details": jsonable_encoder(exc.errors()),
                }
            },
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle all other exceptions."""
        log_error(exc, context={"path": request.url.path, "method": request.method})
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "message": "Internal server error",
                    "code": "INTERNAL_ERROR",
                    "status_code": 500,
                }
            },
        )


app = create_app()


if __name__ == "__main__":
    import uvicorn

    _settings = app.state.settings
    uvicorn.run(
        "semantic_indexer.main:app",
        host=_settings.server.host,
        port=_settings.server.port,
        reload=_settings.server.reload and _settings.is_development,
        log_level=_settings.log_level.lower(),
    )
