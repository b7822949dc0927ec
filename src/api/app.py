"""
FastAPI Application Factory.

Usage:
    # Development
    uvicorn api.app:create_app --factory --reload

    # Production
    uvicorn api.app:create_app --factory --host 0.0.0.0 --port 8000

    # Tests: inject an engine over in-memory stores
    app = create_app(engine=SearchEngine(catalog, store, settings))
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config.settings import Settings, get_settings
from core.errors import SearchValidationError, StoreUnavailableError
from core.logging import configure_logging, get_logger
from core.middleware import RequestTracingMiddleware
from catalog_search.engine import SearchEngine, build_search_engine


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Startup: configure logging, build the search engine unless one was
    injected. Shutdown: stop the engine's worker pools.
    """
    settings: Settings = app.state.settings

    configure_logging(
        json_logs=settings.is_production,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    logger.info(
        "Starting catalog search API",
        environment=settings.environment,
        port=settings.port,
        catalog_backend=settings.catalog_backend,
        redis_enabled=settings.redis_enabled,
    )

    if app.state.search_engine is None:
        app.state.search_engine = build_search_engine(settings)

    yield  # Application is running

    logger.info("Shutting down catalog search API")
    app.state.search_engine.close()


# =============================================================================
# Error Mapping
# =============================================================================

async def _validation_error_handler(request: Request, exc: SearchValidationError) -> JSONResponse:
    logger.info("Rejected search request", detail=exc.to_dict())
    return JSONResponse(status_code=400, content={"error": "bad_request", "detail": exc.to_dict()})


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
        for err in exc.errors()
    ]
    detail = {"message": "Invalid request", "errors": errors}
    return JSONResponse(status_code=400, content={"error": "bad_request", "detail": detail})


async def _store_error_handler(request: Request, exc: StoreUnavailableError) -> JSONResponse:
    logger.error("Store unavailable", store=exc.store, error=exc.message)
    return JSONResponse(
        status_code=503,
        content={"error": "unavailable", "detail": {"message": exc.message, "store": exc.store}},
    )


def create_app(
    engine: Optional[SearchEngine] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        engine: Pre-built SearchEngine (tests); built at startup when None
        settings: Settings override; defaults to get_settings()

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Catalog Search API",
        description="""
        Product catalog search with facets, popularity ranking and autocomplete.

        ## Main Endpoints

        - `GET /api/search` - Filtered, faceted, paginated search
        - `GET /api/search/autocomplete` - Prefix suggestions
        - `GET /api/search/popular` - Most frequent queries
        - `POST /api/search/invalidate` - Drop cached results
        - `POST /api/search/ranking-index/rebuild` - Recompute ranking scores

        ## Health Checks

        - `/health` - Basic health check
        - `/health/detailed` - Catalog and cache connectivity
        """,
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.settings = settings
    app.state.search_engine = engine

    # =========================================================================
    # Middleware (order matters - first added = outermost)
    # =========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Request tracing (adds X-Request-ID, logs timing)
    app.add_middleware(RequestTracingMiddleware)

    app.add_exception_handler(SearchValidationError, _validation_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(StoreUnavailableError, _store_error_handler)

    # =========================================================================
    # Routes
    # =========================================================================

    from api.routes.health import router as health_router
    app.include_router(health_router, tags=["Health"])

    from api.routes.search import router as search_router
    app.include_router(search_router)

    return app
