"""Static patient/room feasibility, penalty tables and the cost lower bound."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from pasu.domain.constraints import PenaltyWeights
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
from pasu.utils.logger import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class CostTables:
    """Read-only tables derived once per instance.

    ``cost[p, r]`` is the per-day penalty of keeping patient ``p`` in room
    ``r``; ``feasible[p, r]`` is the hard-constraint flag; ``overlap[p, q]``
    counts the days the nominal stays of ``p`` and ``q`` intersect.
    """

    cost: np.ndarray
    feasible: np.ndarray
    overlap: np.ndarray

    def feasible_rooms(self, patient: int) -> np.ndarray:
        return np.flatnonzero(self.feasible[patient])

    def infeasible_patients(self) -> list[int]:
        return [int(p) for p in np.flatnonzero(~self.feasible.any(axis=1))]

    def min_cost(self, patient: int) -> int | None:
        rooms = self.feasible_rooms(patient)
        if rooms.size == 0:
            return None
        return int(self.cost[patient, rooms].min())


def is_feasible(patient: Patient, room: Room, department: Department) -> bool:
    """Static feasibility; capacity is the calendar's concern, not this one."""
    for feature, requirement in patient.feature_requirements.items():
        if requirement is FeatureRequirement.NEEDED and feature not in room.features:
            return False
    if department.level_for(patient.specialism) is DoctoringLevel.NONE:
        return False
    return department.admits_age(patient.age)


def assignment_cost(
    patient: Patient,
    room: Room,
    department: Department,
    weights: PenaltyWeights,
) -> int:
    cost = 0
    for feature, requirement in patient.feature_requirements.items():
        if requirement is FeatureRequirement.PREFERRED and feature not in room.features:
            cost += weights.preferred_property

    if patient.preferred_capacity is not None and room.capacity > patient.preferred_capacity:
        cost += weights.preference

    if department.level_for(patient.specialism) is DoctoringLevel.PARTIAL:
        cost += weights.specialism

    # Gender is soft: a mismatched single-gender room costs, it never forbids.
    if room.policy is GenderPolicy.MALE_ONLY and patient.gender is Gender.FEMALE:
        cost += weights.gender
    if room.policy is GenderPolicy.FEMALE_ONLY and patient.gender is Gender.MALE:
        cost += weights.gender
    return cost


def stay_matrix(instance: Instance) -> np.ndarray:
    """Boolean [patients x days] matrix of nominal in-horizon stays."""
    presence = np.zeros((instance.num_patients, instance.horizon), dtype=bool)
    for patient in instance.patients:
        presence[
            patient.patient_id,
            patient.admission_day:patient.valid_discharge_day(instance.horizon),
        ] = True
    return presence


def compute_overlap(instance: Instance) -> np.ndarray:
    presence = stay_matrix(instance).astype(np.int64)
    overlap = presence @ presence.T
    np.fill_diagonal(overlap, 0)
    return overlap


def build_cost_tables(instance: Instance, weights: PenaltyWeights) -> CostTables:
    cost = np.zeros((instance.num_patients, instance.num_rooms), dtype=np.int64)
    feasible = np.zeros((instance.num_patients, instance.num_rooms), dtype=bool)
    for patient in instance.patients:
        for room in instance.rooms:
            department = instance.department_of(room)
            feasible[patient.patient_id, room.room_id] = is_feasible(patient, room, department)
            cost[patient.patient_id, room.room_id] = assignment_cost(
                patient, room, department, weights
            )

    tables = CostTables(cost=cost, feasible=feasible, overlap=compute_overlap(instance))
    for patient_id in tables.infeasible_patients():
        logger.warning(
            "Static infeasibility | patient=%s | no room satisfies hard constraints",
            instance.patients[patient_id].name,
        )
    return tables


def compute_lower_bound(instance: Instance, tables: CostTables) -> int:
    """Sum of per-patient minimum daily cost times in-horizon stay length.

    Diagnostic only; statically infeasible patients contribute nothing.
    """
    bound = 0
    for patient in instance.patients:
        min_cost = tables.min_cost(patient.patient_id)
        if min_cost is None:
            continue
        stay = patient.valid_discharge_day(instance.horizon) - patient.admission_day
        bound += min_cost * stay
    return bound
