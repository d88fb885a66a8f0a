"""
FastAPI application entry point.

Owns the process-wide pieces every request shares: the knowledge cache,
the per-user single-flight and the data store.
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coach_brain.core.cache import CacheManager
from coach_brain.core.config import settings
from coach_brain.core.database import DataStore, SqlDataStore, check_store_connection, create_store_engine
from coach_brain.core.exceptions import APIException
from coach_brain.core.logging import setup_logging
from coach_brain.core.singleflight import SingleFlight
from coach_brain.routers import knowledge

logger = logging.getLogger(__name__)


def create_app(store: Optional[DataStore] = None, cache: Optional[CacheManager] = None) -> FastAPI:
    """
    Build the application.

    Without an explicit store, a SQL store is created on startup from
    DATABASE_URL.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.store is None:
            engine = create_store_engine()
            app.state.engine = engine
            app.state.store = SqlDataStore(engine)
            logger.info(f"Data store ready ({settings.ENVIRONMENT})")
        yield
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            engine.dispose()

    app = FastAPI(
        title="Coach Brain API",
        description="User knowledge aggregation and context caching for the coaching assistant",
        version="1.0.0",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.engine = None
    app.state.cache = cache or CacheManager()
    app.state.single_flight = SingleFlight()

    if settings.DEBUG:
        allowed_origins = ["*"]
    elif settings.CORS_ORIGINS:
        allowed_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
    else:
        allowed_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing information."""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.info(
            f"Response: {request.method} {request.url.path} - {response.status_code}",
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "process_time_ms": round(process_time * 1000, 2),
                }
            }
        )
        response.headers["X-Process-Time"] = str(process_time)
        return response

    @app.exception_handler(APIException)
    async def api_exception_handler(request: Request, exc: APIException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail, "error_code": exc.error_code},
            headers=exc.headers,
        )

    @app.get("/health")
    async def health():
        """
        Health check for load balancers.

        Returns:
            - 200: cache healthy and data store reachable
            - 503: otherwise
        """
        cache_healthy = app.state.cache.is_healthy()
        engine = app.state.engine
        store_healthy = check_store_connection(engine) if engine is not None else app.state.store is not None

        if not (cache_healthy and store_healthy):
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={
                    "status": "unhealthy",
                    "cache": "healthy" if cache_healthy else "degraded",
                    "data_store": "healthy" if store_healthy else "unavailable",
                },
            )
        return {
            "status": "healthy",
            "cache": app.state.cache.get_stats().to_dict(),
            "timestamp": time.time(),
        }

    app.include_router(knowledge.router)
    return app


setup_logging()
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("coach_brain.main:app", host=settings.API_HOST, port=settings.API_PORT)
