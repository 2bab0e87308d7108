"""Health check endpoint."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tripplanner.api.deps import get_container
from tripplanner.services.container import Container

router = APIRouter()


async def check_store(container: Container) -> tuple[bool, str]:
    """Check trip store connectivity.

    Returns:
        (is_ok, status_message)
    """
    if container.engine is None:
        return (True, "memory")

    try:
        async with container.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return (True, "ok")
    except (SQLAlchemyError, OSError) as e:
        return (False, f"error: {type(e).__name__}")


@router.get("/health", response_model=None)
async def health(
    response: Response, container: Annotated[Container, Depends(get_container)]
) -> dict[str, Any]:
    """Health check.

    Returns:
        200 with component status if the store is reachable, 503 otherwise
    """
    store_ok, store_status = await check_store(container)
    if not store_ok:
        response.status_code = 503

    return {
        "status": "ok" if store_ok else "degraded",
        "components": {
            "store": store_status,
            "background_tasks": container.runner.pending,
        },
    }
