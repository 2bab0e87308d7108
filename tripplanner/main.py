"""FastAPI application."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tripplanner.api.errors import register_error_handlers
from tripplanner.api.routes.health import router as health_router
from tripplanner.api.routes.metrics import router as metrics_router
from tripplanner.api.routes.trips import router as trips_router
from tripplanner.config import Settings, get_settings
from tripplanner.services.container import Container, build_container


def create_app(settings: Settings | None = None, container: Container | None = None) -> FastAPI:
    """Build the app around a container (built from settings when not given)."""
    container = container or build_container(settings or get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await container.startup()
        yield
        await container.shutdown()

    app = FastAPI(title="Trip Planner API", version="0.1.0", lifespan=lifespan)
    app.state.container = container
    register_error_handlers(app)

    app.include_router(health_router, tags=["health"])
    app.include_router(metrics_router, tags=["metrics"])
    app.include_router(trips_router, tags=["trips"])

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"message": "Trip Planner API", "version": "0.1.0"}

    return app


app = create_app()
