"""Health check endpoints."""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from semantic_indexer.api.v1.dependencies import get_app_settings
from semantic_indexer.config import Settings
from semantic_indexer.utils.logging import get_logger

logger = get_logger("health")

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(settings: Settings = Depends(get_app_settings)):
    """
    Health check endpoint.

    Does not check external dependencies; healthy whenever the process serves requests.
    """
    logger.debug("Health check requested")
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "environment": settings.environment.value,
    }


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(request: Request, settings: Settings = Depends(get_app_settings)):
    """
    Readiness check endpoint.

    Checks:
    - Qdrant is reachable
    - Embedding credentials are configured

    Returns 503 if either check fails.
    """
    logger.debug("Readiness check requested")

    checks = {
        "qdrant": False,
        "embeddings": settings.embedding.is_configured,
    }

    store = getattr(request.app.state, "vector_store", None)
    if store is not None:
        checks["qdrant"] = await store.ping()

    if not checks["embeddings"]:
        logger.warning("Embeddings configuration check failed: OPENAI_API_KEY is not set")

    ready = all(checks.values())
    body = {"status": "ready" if ready else "not_ready", "checks": checks}
    if not ready:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body
