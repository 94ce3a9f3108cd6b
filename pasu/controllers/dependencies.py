"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from pasu.services.scheduling_service import PatientSchedulingService
from pasu.utils.config import get_settings


def get_scheduling_service(request: Request) -> PatientSchedulingService:
    service = getattr(request.app.state, "scheduling_service", None)
    if service is None:
        repository = getattr(request.app.state, "repository", None)
        if repository is not None:
            service = PatientSchedulingService(repository=repository, settings=get_settings())
            request.app.state.scheduling_service = service
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Scheduling service is not initialized",
        )
    return service
