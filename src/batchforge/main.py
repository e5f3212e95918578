"""FastAPI application factory."""
from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles
from batchforge.config import get_settings
from batchforge.api.v1 import executions, health, metrics
from batchforge.observability.metrics import init_system_info

settings = get_settings()


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        FastAPI: Configured FastAPI application
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        debug=settings.DEBUG,
    )

    # Initialize metrics
    init_system_info(settings.APP_VERSION)

    # Include routers
    app.include_router(executions.router, prefix=settings.API_V1_PREFIX, tags=["executions"])
    app.include_router(health.router, prefix=settings.API_V1_PREFIX, tags=["health"])
    app.include_router(metrics.router, prefix=settings.API_V1_PREFIX)

    # Generated artifacts, served from the directory the workers write to
    app.mount(
        "/artifacts",
        StaticFiles(directory=settings.ARTIFACT_DIR, check_dir=False),
        name="artifacts",
    )

    return app


# Create app instance
app = create_app()
