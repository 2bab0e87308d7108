"""FastAPI dependencies."""

from fastapi import Request

from tripplanner.services.container import Container
from tripplanner.services.trips import TripService


def get_container(request: Request) -> Container:
    container: Container = request.app.state.container
    return container


def get_trip_service(request: Request) -> TripService:
    return get_container(request).service
