"""Request-scoped access to objects built in the application lifespan."""

from fastapi import Request

from semantic_indexer.config import Settings
from semantic_indexer.services.search_service import SearchEngine
from semantic_indexer.utils.errors import IndexerException


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_search_engine(request: Request) -> SearchEngine:
    engine = getattr(request.app.state, "search_engine", None)
    if engine is None:
        raise IndexerException(
            "Search engine is not initialized",
            status_code=503,
            code="SERVICE_UNAVAILABLE",
        )
    return engine
