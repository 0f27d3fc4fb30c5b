from fastapi import FastAPI, HTTPException

from workqueue.config.logging import setup_logging
from workqueue.config.settings import settings
from workqueue.core.exceptions import (
    RequestContextMiddleware,
    WorkQueueException,
    general_exception_handler,
    http_exception_handler,
    workqueue_exception_handler,
)
from workqueue.core.registries import payload_registry
from workqueue.healthz import router as health_router
from workqueue.jobs.routes import router as jobs_router


def create_app() -> FastAPI:
    """Create and configure the job inspection API."""

    setup_logging()

    app = FastAPI(
        title=settings.app_name,
        description="Database-backed job queue inspection API",
        version=settings.version,
        debug=settings.debug,
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(WorkQueueException, workqueue_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")

    # No payload classes may be registered at runtime outside development
    if settings.environment != "development":
        payload_registry.freeze()

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "workqueue.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
