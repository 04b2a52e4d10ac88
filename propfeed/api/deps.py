"""
FastAPI dependencies.

Handlers reach the services through the container stored on app.state by
the application lifespan.
"""
from fastapi import Request

from propfeed.core.container import ServiceContainer
from propfeed.core.scheduler_service import IngestionScheduler
from propfeed.services.property_lookup import PropertyLookupService


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_lookup(request: Request) -> PropertyLookupService:
    return get_container(request).lookup


def get_scheduler(request: Request) -> IngestionScheduler:
    return get_container(request).scheduler
