"""
Health check endpoints.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends

from config.settings import get_settings
from api.routes.search import get_engine
from catalog_search.engine import SearchEngine


router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check() -> Dict[str, Any]:
    """Basic liveness check; touches no store."""
    return {
        "status": "healthy",
        "service": "catalog-search",
    }


@router.get("/health/detailed")
def detailed_health_check(engine: SearchEngine = Depends(get_engine)) -> Dict[str, Any]:
    """
    Health with dependency status.

    Checks:
    - Catalog store answers a count
    - Key-value store answers a lookup
    """
    settings = get_settings()
    checks = engine.check_stores()
    healthy = all(status == "ok" for status in checks.values())

    return {
        "status": "healthy" if healthy else "degraded",
        "service": "catalog-search",
        "environment": settings.environment,
        "checks": {
            "config": "ok",
            "catalog_backend": settings.catalog_backend,
            **checks,
        },
    }
