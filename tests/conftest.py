from __future__ import annotations

from typing import Callable, Optional

import pytest

from pasu.domain.constraints import PenaltyWeights, SchedulingConfig
from pasu.domain.models import (
    Department,
    DoctoringLevel,
    FeatureRequirement,
    Gender,
    GenderPolicy,
    Instance,
    Patient,
    Room,
)
from pasu.repository.instance_repository import InstanceRepository
from pasu.utils.config import get_settings


def _make_room(
    room_id: int,
    capacity: int = 2,
    *,
    department_id: int = 0,
    policy: GenderPolicy = GenderPolicy.MIXED,
    features: frozenset[int] = frozenset(),
) -> Room:
    return Room(
        room_id=room_id,
        name=f"Room_{room_id}",
        capacity=capacity,
        department_id=department_id,
        policy=policy,
        features=frozenset(features),
    )


def _make_patient(
    patient_id: int,
    admission_day: int = 0,
    discharge_day: int = 3,
    *,
    registration_day: Optional[int] = None,
    max_admission_day: Optional[int] = None,
    age: int = 40,
    gender: Gender = Gender.MALE,
    specialism: int = 0,
    variability: int = 0,
    preferred_capacity: Optional[int] = None,
    requirements: Optional[dict[int, FeatureRequirement]] = None,
) -> Patient:
    return Patient(
        patient_id=patient_id,
        name=f"Pat_{patient_id}",
        age=age,
        gender=gender,
        registration_day=admission_day if registration_day is None else registration_day,
        admission_day=admission_day,
        discharge_day=discharge_day,
        max_admission_day=admission_day if max_admission_day is None else max_admission_day,
        specialism=specialism,
        variability=variability,
        preferred_capacity=preferred_capacity,
        feature_requirements=requirements or {},
    )


def _make_instance(
    rooms: list[Room],
    patients: list[Patient],
    *,
    horizon: int = 3,
    departments: Optional[list[Department]] = None,
    num_features: int = 3,
    num_specialisms: int = 2,
    name: str = "test",
) -> Instance:
    if departments is None:
        departments = [
            Department(
                department_id=0,
                name="Dep_0",
                specialism_levels={0: DoctoringLevel.COMPLETE, 1: DoctoringLevel.PARTIAL},
            )
        ]
    return Instance(
        name=name,
        horizon=horizon,
        num_features=num_features,
        num_specialisms=num_specialisms,
        departments=tuple(departments),
        rooms=tuple(rooms),
        patients=tuple(patients),
    )


@pytest.fixture
def room_factory() -> Callable[..., Room]:
    return _make_room


@pytest.fixture
def patient_factory() -> Callable[..., Patient]:
    return _make_patient


@pytest.fixture
def instance_factory() -> Callable[..., Instance]:
    return _make_instance


@pytest.fixture
def three_patients_two_rooms() -> Instance:
    """Two mixed rooms of two beds, three identical patients over days [0, 3)."""
    return _make_instance(
        rooms=[_make_room(0), _make_room(1)],
        patients=[_make_patient(p) for p in range(3)],
        horizon=3,
    )


@pytest.fixture
def sample_instance() -> Instance:
    return InstanceRepository(get_settings()).load("small_sample")


@pytest.fixture
def weights() -> PenaltyWeights:
    return PenaltyWeights()


@pytest.fixture
def scheduling_config() -> SchedulingConfig:
    return SchedulingConfig(
        penalty_weights=PenaltyWeights(),
        construction_retry_budget=200,
        search_iteration_cap=60,
        search_time_budget_seconds=20.0,
        tabu_tenure=5,
        random_seed=7,
        neighborhood_sample_size=30,
    )
