"""Domain-level validation rules for scheduling configuration and instances."""

from __future__ import annotations

from dataclasses import dataclass, fields

from pasu.domain.models import Instance


@dataclass(frozen=True)
class PenaltyWeights:
    preferred_property: int = 20
    preference: int = 10
    specialism: int = 20
    gender: int = 50
    transfer: int = 100
    delay: int = 2
    overcrowd_risk: int = 1


@dataclass(frozen=True)
class SchedulingConfig:
    penalty_weights: PenaltyWeights
    construction_retry_budget: int
    search_iteration_cap: int
    search_time_budget_seconds: float
    tabu_tenure: int
    random_seed: int
    neighborhood_sample_size: int
    swap_min_overlap_days: int = 1
    search_stall_limit: int = 0


def validate_penalty_weights(weights: PenaltyWeights) -> None:
    for item in fields(weights):
        if getattr(weights, item.name) < 0:
            raise ValueError(f"penalty weight {item.name} must be >= 0")


def validate_scheduling_config(config: SchedulingConfig) -> None:
    validate_penalty_weights(config.penalty_weights)
    if config.construction_retry_budget <= 0:
        raise ValueError("construction_retry_budget must be > 0")
    if config.search_iteration_cap < 0:
        raise ValueError("search_iteration_cap must be >= 0")
    if config.search_time_budget_seconds <= 0:
        raise ValueError("search_time_budget_seconds must be > 0")
    if config.tabu_tenure <= 0:
        raise ValueError("tabu_tenure must be > 0")
    if config.random_seed < 0:
        raise ValueError("random_seed must be >= 0")
    if config.neighborhood_sample_size <= 0:
        raise ValueError("neighborhood_sample_size must be > 0")
    if config.swap_min_overlap_days <= 0:
        raise ValueError("swap_min_overlap_days must be > 0")
    if config.search_stall_limit < 0:
        raise ValueError("search_stall_limit must be >= 0")


def validate_instance(instance: Instance) -> None:
    """Reject instances that break the static model invariants."""
    if instance.horizon <= 0:
        raise ValueError("horizon must be > 0")
    if not instance.rooms:
        raise ValueError("instance must define at least one room")

    for index, department in enumerate(instance.departments):
        if department.department_id != index:
            raise ValueError(f"department {department.name} has id out of order")
        if department.min_age and department.max_age and department.min_age > department.max_age:
            raise ValueError(f"department {department.name} has an empty age range")
        for specialism in department.specialism_levels:
            if not 0 <= specialism < instance.num_specialisms:
                raise ValueError(
                    f"department {department.name} references unknown specialism {specialism}"
                )

    for index, room in enumerate(instance.rooms):
        if room.room_id != index:
            raise ValueError(f"room {room.name} has id out of order")
        if room.capacity <= 0:
            raise ValueError(f"room {room.name} capacity must be > 0")
        if not 0 <= room.department_id < len(instance.departments):
            raise ValueError(f"room {room.name} references unknown department")
        if any(not 0 <= feature < instance.num_features for feature in room.features):
            raise ValueError(f"room {room.name} references unknown feature")

    for index, patient in enumerate(instance.patients):
        if patient.patient_id != index:
            raise ValueError(f"patient {patient.name} has id out of order")
        if not patient.registration_day <= patient.admission_day <= patient.max_admission_day:
            raise ValueError(
                f"patient {patient.name} must satisfy registration <= admission <= max admission"
            )
        if patient.admission_day >= patient.valid_discharge_day(instance.horizon):
            raise ValueError(f"patient {patient.name} has no stay inside the horizon")
        if patient.variability < 0:
            raise ValueError(f"patient {patient.name} variability must be >= 0")
        if patient.preferred_capacity is not None and patient.preferred_capacity <= 0:
            raise ValueError(f"patient {patient.name} preferred capacity must be > 0")
        if not 0 <= patient.specialism < instance.num_specialisms:
            raise ValueError(f"patient {patient.name} references unknown specialism")
        if any(
            not 0 <= feature < instance.num_features
            for feature in patient.feature_requirements
        ):
            raise ValueError(f"patient {patient.name} references unknown feature")
