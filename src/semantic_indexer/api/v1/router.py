"""API v1 router aggregation."""

from fastapi import APIRouter

from semantic_indexer.api.v1 import health, search

router = APIRouter(
    prefix="/api/v1",
    tags=["v1"],
    responses={
        404: {"description": "Not found"},
        422: {"description": "Validation error"},
        500: {"description": "Internal server error"},
    },
)

router.include_router(health.router)
router.include_router(search.router)


@router.get("/", summary="API Information", tags=["v1"])
async def api_info():
    """API version and endpoint map."""
    return {
        "version": "v1",
        "status": "active",
        "service": "semantic-indexer",
        "endpoints": {
            "health": "/api/v1/health",
            "ready": "/api/v1/ready",
            "search": "/api/v1/search",
            "stats": "/api/v1/stats",
            "documents": "/api/v1/documents/{chunk_id}",
        },
    }
