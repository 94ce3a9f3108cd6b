"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the instance repository and scheduling service and registers routers.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from pasu.controllers.schedule_controller import router as scheduling_router
from pasu.repository.instance_repository import InstanceRepository
from pasu.services.scheduling_service import PatientSchedulingService
from pasu.utils.config import get_settings
from pasu.utils.logger import configure_logging, get_logger


logger = get_logger(__name__)


def create_app() -> FastAPI:
    """
    Build and wire the FastAPI application.

    Services are attached to app.state so controllers resolve them through
    dependencies and tests can swap them per app instance.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    repository = InstanceRepository(settings)
    scheduling_service = PatientSchedulingService(repository=repository, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(scheduling_router)

    app.state.repository = repository
    app.state.scheduling_service = scheduling_service

    return app


def _startup(app: FastAPI) -> None:
    repository: InstanceRepository = app.state.repository
    instances = repository.list_instances()
    logger.info(
        "Startup complete | instance_directory=%s | instances=%s",
        repository.directory,
        len(instances),
    )


app = create_app()
