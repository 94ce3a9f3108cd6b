"""HTTP controller layer for patient admission scheduling."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator

from pasu.controllers.dependencies import get_scheduling_service
from pasu.domain.models import Instance, ScheduleResult
from pasu.repository.instance_repository import (
    InstanceFormatError,
    InstanceNotFoundError,
    parse_instance,
)
from pasu.services.construction_service import ConstructionExhaustedError
from pasu.services.report_service import render_text
from pasu.services.scheduling_service import PatientSchedulingService
from pasu.utils.config import get_settings
from pasu.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["scheduling"])

_CONFIG_FIELDS = (
    "random_seed",
    "search_iteration_cap",
    "search_time_budget_seconds",
    "tabu_tenure",
    "construction_retry_budget",
    "neighborhood_sample_size",
    "swap_min_overlap_days",
    "search_stall_limit",
)


class PenaltyWeightsOverride(BaseModel):
    """Weights left unset keep their configured value."""

    preferred_property: Optional[int] = Field(default=None, ge=0)
    preference: Optional[int] = Field(default=None, ge=0)
    specialism: Optional[int] = Field(default=None, ge=0)
    gender: Optional[int] = Field(default=None, ge=0)
    transfer: Optional[int] = Field(default=None, ge=0)
    delay: Optional[int] = Field(default=None, ge=0)
    overcrowd_risk: Optional[int] = Field(default=None, ge=0)


class ScheduleOptions(BaseModel):
    """Per-request overrides of the configured search parameters."""

    random_seed: Optional[int] = Field(default=None, ge=0)
    search_iteration_cap: Optional[int] = Field(default=None, ge=0)
    search_time_budget_seconds: Optional[float] = Field(default=None, gt=0.0, le=600.0)
    tabu_tenure: Optional[int] = Field(default=None, gt=0)
    construction_retry_budget: Optional[int] = Field(default=None, gt=0)
    neighborhood_sample_size: Optional[int] = Field(default=None, gt=0)
    swap_min_overlap_days: Optional[int] = Field(default=None, gt=0)
    search_stall_limit: Optional[int] = Field(default=None, ge=0)
    penalty_weights: Optional[PenaltyWeightsOverride] = None
    restarts: Optional[int] = Field(default=None, gt=0, le=32)

    def config_overrides(self) -> dict[str, object]:
        overrides: dict[str, object] = {name: getattr(self, name) for name in _CONFIG_FIELDS}
        if self.penalty_weights is not None:
            overrides["penalty_weights"] = self.penalty_weights.model_dump(exclude_none=True)
        return overrides


class ScheduleRequest(ScheduleOptions):
    instance_text: str = Field(min_length=1)
    instance_name: str = Field(default="request", min_length=1, max_length=128)

    @field_validator("instance_name")
    @classmethod
    def validate_instance_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("instance_name must be non-empty")
        return value


class AssignmentResponse(BaseModel):
    patient_id: int = Field(ge=0)
    patient_name: str
    admission_day: Optional[int] = Field(default=None, ge=0)
    transfer_day: Optional[int] = Field(default=None, ge=0)
    discharge_day: Optional[int] = Field(default=None, ge=0)
    room_before: Optional[int] = Field(default=None, ge=0)
    room_after: Optional[int] = Field(default=None, ge=0)
    delay: int = Field(ge=0)
    cost: int = Field(ge=0)


class ScheduleResponse(BaseModel):
    instance_name: str
    total_cost: int = Field(ge=0)
    initial_cost: int = Field(ge=0)
    lower_bound: int = Field(ge=0)
    overcrowd_penalty: int = Field(ge=0)
    termination_reason: str
    iterations: int = Field(ge=0)
    construction_attempts: int = Field(ge=1)
    random_seed: int = Field(ge=0)
    elapsed_seconds: float = Field(ge=0.0)
    infeasible_patient_ids: list[int]
    schedule: list[list[Optional[int]]]
    assignments: list[AssignmentResponse]
    report: str


class InstanceListResponse(BaseModel):
    instances: list[str]


class HealthResponse(BaseModel):
    status: str
    version: str


def _to_response(instance: Instance, result: ScheduleResult) -> ScheduleResponse:
    return ScheduleResponse(
        instance_name=result.instance_name,
        total_cost=result.total_cost,
        initial_cost=result.initial_cost,
        lower_bound=result.lower_bound,
        overcrowd_penalty=result.overcrowd_penalty,
        termination_reason=result.termination_reason,
        iterations=result.iterations,
        construction_attempts=result.construction_attempts,
        random_seed=result.random_seed,
        elapsed_seconds=result.elapsed_seconds,
        infeasible_patient_ids=list(result.infeasible_patient_ids),
        schedule=[list(row) for row in result.schedule],
        assignments=[
            AssignmentResponse(
                patient_id=record.patient_id,
                patient_name=record.patient_name,
                admission_day=record.admission_day,
                transfer_day=record.transfer_day,
                discharge_day=record.discharge_day,
                room_before=record.room_before,
                room_after=record.room_after,
                delay=record.delay,
                cost=record.cost,
            )
            for record in result.assignments
        ],
        report=render_text(instance, result),
    )


def _run_schedule(
    service: PatientSchedulingService,
    instance: Instance,
    options: ScheduleOptions,
) -> ScheduleResponse:
    try:
        config = service.build_config(**options.config_overrides())
        result = service.schedule(instance, config=config, restarts=options.restarts)
    except ConstructionExhaustedError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    return _to_response(instance, result)


@router.get("/health", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health() -> HealthResponse:
    return HealthResponse(status="ok", version=get_settings().app_version)


@router.get("/instances", response_model=InstanceListResponse, status_code=status.HTTP_200_OK)
async def list_instances(
    service: PatientSchedulingService = Depends(get_scheduling_service),
) -> InstanceListResponse:
    return InstanceListResponse(instances=service.repository.list_instances())


@router.post("/schedule", response_model=ScheduleResponse, status_code=status.HTTP_200_OK)
def schedule_instance_text(
    payload: ScheduleRequest,
    service: PatientSchedulingService = Depends(get_scheduling_service),
) -> ScheduleResponse:
    """Parse an instance supplied inline, then construct and improve its schedule."""
    try:
        instance = parse_instance(payload.instance_text, name=payload.instance_name)
    except InstanceFormatError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    return _run_schedule(service, instance, payload)


@router.post(
    "/instances/{name}/schedule",
    response_model=ScheduleResponse,
    status_code=status.HTTP_200_OK,
)
def schedule_stored_instance(
    name: str,
    options: Optional[ScheduleOptions] = None,
    service: PatientSchedulingService = Depends(get_scheduling_service),
) -> ScheduleResponse:
    try:
        instance = service.repository.load(name)
    except InstanceNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except InstanceFormatError as exc:
        logger.warning("Stored instance rejected | name=%s | error=%s", name, exc)
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    return _run_schedule(service, instance, options or ScheduleOptions())
