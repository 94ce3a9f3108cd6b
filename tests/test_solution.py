from __future__ import annotations

import numpy as np
import pytest

from pasu.services.capacity_calendar import CapacityInvariantError
from pasu.domain.models import Gender, GenderPolicy
from pasu.services.cost_model import build_cost_tables, compute_lower_bound
from pasu.services.solution import RowEdit, Solution


def _row(*rooms: int) -> np.ndarray:
    return np.asarray(rooms, dtype=np.int64)


@pytest.fixture
def overstay_instance(instance_factory, room_factory, patient_factory):
    return instance_factory(
        [room_factory(0, capacity=1), room_factory(1, capacity=1)],
        [
            patient_factory(0, admission_day=0, discharge_day=2, variability=2),
            patient_factory(1, admission_day=2, discharge_day=4),
        ],
        horizon=5,
    )


def test_overstay_risk_is_penalized_when_beds_run_out(overstay_instance, weights) -> None:
    solution = Solution(overstay_instance, build_cost_tables(overstay_instance, weights), weights)
    solution.assign(0, _row(0, 0, -1, -1, -1))

    assert solution.calendar.at_risk[0].tolist() == [0, 0, 1, 1, 0]
    assert solution.overcrowd_penalty() == 0

    edit = RowEdit(1, _row(-1, -1, 0, 0, -1))
    assert solution.evaluate([edit]) == 2
    solution.apply([edit])

    assert solution.overcrowd_penalty() == 2
    assert solution.total_cost() == 2
    solution.verify()

    # moving the follow-up patient next door removes the risk again
    assert solution.evaluate([RowEdit(1, _row(-1, -1, 1, 1, -1))]) == -2


def test_apply_is_all_or_nothing(overstay_instance, weights) -> None:
    solution = Solution(overstay_instance, build_cost_tables(overstay_instance, weights), weights)
    solution.assign(0, _row(0, 0, -1, -1, -1))
    before = solution.calendar.remaining.copy()

    assert solution.evaluate([RowEdit(1, _row(-1, 0, 0, -1, -1))]) is None
    with pytest.raises(CapacityInvariantError):
        solution.apply([RowEdit(1, _row(-1, 0, 0, -1, -1))])

    assert np.array_equal(solution.calendar.remaining, before)
    assert not solution.is_placed(1)
    solution.verify()


def test_clear_releases_beds_and_risk(overstay_instance, weights) -> None:
    solution = Solution(overstay_instance, build_cost_tables(overstay_instance, weights), weights)
    solution.assign(0, _row(0, 0, -1, -1, -1))
    solution.clear(0)

    assert solution.calendar.remaining.tolist() == [[1] * 5, [1] * 5]
    assert not solution.calendar.at_risk.any()
    assert solution.total_cost() == 0


def test_assignment_record_reports_transfer(instance_factory, room_factory, patient_factory, weights) -> None:
    instance = instance_factory(
        [room_factory(0), room_factory(1)],
        [patient_factory(0, admission_day=1, discharge_day=4, max_admission_day=2)],
        horizon=5,
    )
    solution = Solution(instance, build_cost_tables(instance, weights), weights)
    solution.assign(0, _row(-1, -1, 0, 1, 1), delay=1)

    record = solution.assignment_record(0)

    assert record.placed
    assert (record.admission_day, record.transfer_day, record.discharge_day) == (2, 3, 5)
    assert (record.room_before, record.room_after) == (0, 1)
    assert record.delay == 1
    assert record.cost == weights.transfer + weights.delay
    assert solution.schedule()[0] == (None, None, 0, 1, 1)


def test_verify_flags_stay_outside_admission_window(instance_factory, room_factory, patient_factory, weights) -> None:
    instance = instance_factory([room_factory(0)], [patient_factory(0, discharge_day=2)], horizon=3)
    solution = Solution(instance, build_cost_tables(instance, weights), weights)
    solution.assign(0, _row(0, 0, 0))

    with pytest.raises(CapacityInvariantError):
        solution.verify()


def test_copy_is_independent(overstay_instance, weights) -> None:
    solution = Solution(overstay_instance, build_cost_tables(overstay_instance, weights), weights)
    solution.assign(0, _row(0, 0, -1, -1, -1))
    clone = solution.copy()

    clone.assign(1, _row(-1, -1, 1, 1, -1))

    assert not solution.is_placed(1)
    assert solution.calendar.remaining[1].tolist() == [1] * 5
    assert clone.total_cost() == 0


def test_delay_past_horizon_still_costs_the_full_stay(instance_factory, room_factory, patient_factory, weights) -> None:
    instance = instance_factory(
        [room_factory(0, policy=GenderPolicy.MALE_ONLY)],
        [patient_factory(0, gender=Gender.FEMALE, max_admission_day=2)],
        horizon=3,
    )
    tables = build_cost_tables(instance, weights)
    solution = Solution(instance, tables, weights)
    solution.assign(0, _row(-1, -1, 0), delay=2)

    # two of the three days fall past the horizon but are charged in room 0
    assert solution.costed_days(0) == 3
    assert solution.patient_cost(0) == 3 * weights.gender + 2 * weights.delay
    assert solution.total_cost() >= compute_lower_bound(instance, tables)

    undo = RowEdit(0, _row(0, 0, 0), delay=0)
    assert solution.evaluate((undo,)) == -2 * weights.delay
