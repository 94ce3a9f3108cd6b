from __future__ import annotations

import numpy as np
import pytest

from pasu.domain.models import FeatureRequirement, Gender, GenderPolicy, StatusTag
from pasu.services.construction_service import ConstructionExhaustedError, ConstructiveBuilder
from pasu.services.cost_model import build_cost_tables
from pasu.services.solution import UNASSIGNED


class FixedStartRng:
    """Stands in for numpy's Generator: the random first room is always ``value``."""

    def __init__(self, value: int) -> None:
        self.value = value

    def integers(self, high: int) -> int:
        return self.value % high


def _builder(instance, weights, *, retry_budget: int = 50, rng=None) -> ConstructiveBuilder:
    tables = build_cost_tables(instance, weights)
    return ConstructiveBuilder(
        instance,
        tables,
        weights,
        retry_budget=retry_budget,
        rng=rng if rng is not None else np.random.default_rng(3),
    )


def test_three_patients_fit_two_rooms(three_patients_two_rooms, weights) -> None:
    result = _builder(three_patients_two_rooms, weights).build()
    solution = result.solution

    grid = solution.grid
    assert (grid != UNASSIGNED).all()
    for room in range(2):
        assert ((grid == room).sum(axis=0) <= 2).all()
    assert (solution.calendar.remaining >= 0).all()
    assert result.infeasible_patient_ids == ()


def test_total_cost_is_sum_of_daily_room_costs(instance_factory, room_factory, patient_factory, weights) -> None:
    instance = instance_factory(
        [room_factory(0, policy=GenderPolicy.MALE_ONLY), room_factory(1, policy=GenderPolicy.FEMALE_ONLY)],
        [patient_factory(p, gender=Gender.FEMALE if p % 2 else Gender.MALE) for p in range(3)],
        horizon=3,
    )
    builder = _builder(instance, weights)
    solution = builder.build().solution
    tables = solution.tables

    patients, days = np.nonzero(solution.grid != UNASSIGNED)
    expected = int(tables.cost[patients, solution.grid[patients, days]].sum())
    assert solution.total_cost() == expected
    assert sum(solution.patient_cost(p) for p in range(3)) == expected


def test_exhausted_budget_raises(instance_factory, room_factory, patient_factory, weights) -> None:
    # Patient 1 fits only room 1; a scan that always starts at room 1 hands it to patient 0.
    instance = instance_factory(
        [room_factory(0, capacity=1), room_factory(1, capacity=1, features=frozenset({0}))],
        [
            patient_factory(0),
            patient_factory(1, requirements={0: FeatureRequirement.NEEDED}),
        ],
        horizon=3,
    )

    with pytest.raises(ConstructionExhaustedError) as excinfo:
        _builder(instance, weights, retry_budget=3, rng=FixedStartRng(1)).build()
    assert excinfo.value.attempts == 3
    assert excinfo.value.failed_day == 0

    result = _builder(instance, weights, retry_budget=1, rng=FixedStartRng(0)).build()
    assert result.attempts == 1
    assert result.solution.row(1).tolist() == [1, 1, 1]


def test_waiting_patient_must_still_fit(instance_factory, room_factory, patient_factory, weights) -> None:
    instance = instance_factory(
        [room_factory(0, capacity=1)],
        [
            patient_factory(0, admission_day=0, discharge_day=3),
            patient_factory(1, registration_day=0, admission_day=1, discharge_day=3),
        ],
        horizon=3,
    )

    with pytest.raises(ConstructionExhaustedError):
        _builder(instance, weights, retry_budget=2).build()


def test_waiting_reservations_are_released(instance_factory, room_factory, patient_factory, weights) -> None:
    instance = instance_factory(
        [room_factory(0, capacity=2)],
        [
            patient_factory(0, admission_day=0, discharge_day=3),
            patient_factory(1, registration_day=0, admission_day=1, discharge_day=3),
        ],
        horizon=3,
    )

    solution = _builder(instance, weights).build().solution

    assert solution.calendar.remaining.tolist() == [[1, 0, 0]]
    assert solution.tags[1].tolist() == [
        int(StatusTag.REGISTERED),
        int(StatusTag.ADMITTED),
        int(StatusTag.ADMITTED),
    ]
    solution.verify()


def test_statically_infeasible_patient_is_skipped(instance_factory, room_factory, patient_factory, weights) -> None:
    instance = instance_factory(
        [room_factory(0)],
        [patient_factory(0), patient_factory(1, requirements={2: FeatureRequirement.NEEDED})],
        horizon=3,
    )

    result = _builder(instance, weights).build()

    assert result.infeasible_patient_ids == (1,)
    assert not result.solution.is_placed(1)
    assert result.solution.is_placed(0)


def test_same_seed_builds_same_schedule(sample_instance, weights) -> None:
    first = _builder(sample_instance, weights, rng=np.random.default_rng(11)).build()
    second = _builder(sample_instance, weights, rng=np.random.default_rng(11)).build()

    assert first.solution.schedule() == second.solution.schedule()
    assert first.attempts == second.attempts


def test_sample_instance_builds_consistent_solution(sample_instance, weights) -> None:
    result = _builder(sample_instance, weights, retry_budget=500).build()
    solution = result.solution

    solution.verify()
    for patient in sample_instance.patients:
        assert solution.stay(patient.patient_id) == solution.window(patient.patient_id)


def test_retry_budget_must_be_positive(three_patients_two_rooms, weights) -> None:
    with pytest.raises(ValueError):
        _builder(three_patients_two_rooms, weights, retry_budget=0)
