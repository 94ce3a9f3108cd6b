"""Mutable schedule state kept in lockstep with its capacity calendar."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

import numpy as np

from pasu.domain.constraints import PenaltyWeights
from pasu.domain.models import AssignmentRecord, Instance, Patient, StatusTag
from pasu.services.capacity_calendar import CapacityCalendar, CapacityInvariantError
from pasu.services.cost_model import CostTables


UNASSIGNED = -1


@dataclass(frozen=True)
class RowEdit:
    """Replacement of one patient's full day-by-day room row."""

    patient: int
    row: np.ndarray
    delay: int = 0


def status_on(patient: Patient, day: int, start: Optional[int], end: Optional[int]) -> StatusTag:
    if day < patient.registration_day:
        return StatusTag.UNREGISTERED
    if start is None or day < start:
        return StatusTag.REGISTERED
    if day < end:
        return StatusTag.ADMITTED
    return StatusTag.DISCHARGED


class Solution:
    """Room-or-unassigned per (patient, day), plus status tags and delays.

    Every change to the grid goes through :meth:`apply`, which releases and
    occupies calendar beds for exactly the cells that change hands.
    """

    def __init__(
        self,
        instance: Instance,
        tables: CostTables,
        weights: PenaltyWeights,
        calendar: Optional[CapacityCalendar] = None,
    ) -> None:
        self._instance = instance
        self._tables = tables
        self._weights = weights
        self.calendar = calendar or CapacityCalendar.for_instance(instance)
        shape = (instance.num_patients, instance.horizon)
        self._grid = np.full(shape, UNASSIGNED, dtype=np.int64)
        self._tags = np.full(shape, int(StatusTag.UNREGISTERED), dtype=np.int8)
        self._delays = np.zeros(instance.num_patients, dtype=np.int64)
        self._patient_costs = np.zeros(instance.num_patients, dtype=np.int64)

    @property
    def instance(self) -> Instance:
        return self._instance

    @property
    def tables(self) -> CostTables:
        return self._tables

    @property
    def weights(self) -> PenaltyWeights:
        return self._weights

    @property
    def grid(self) -> np.ndarray:
        view = self._grid.view()
        view.flags.writeable = False
        return view

    @property
    def tags(self) -> np.ndarray:
        view = self._tags.view()
        view.flags.writeable = False
        return view

    def row(self, patient: int) -> np.ndarray:
        return self.grid[patient]

    def delay(self, patient: int) -> int:
        return int(self._delays[patient])

    def blank_row(self) -> np.ndarray:
        return np.full(self._instance.horizon, UNASSIGNED, dtype=np.int64)

    def is_placed(self, patient: int) -> bool:
        return bool((self._grid[patient] != UNASSIGNED).any())

    def stay(self, patient: int) -> Optional[tuple[int, int]]:
        days = np.flatnonzero(self._grid[patient] != UNASSIGNED)
        if days.size == 0:
            return None
        return int(days[0]), int(days[-1]) + 1

    def costed_days(self, patient: int) -> int:
        """In-horizon length of the undelayed stay; a delay never shortens it."""
        info = self._instance.patients[patient]
        return info.valid_discharge_day(self._instance.horizon) - info.admission_day

    def window(self, patient: int, delay: int = 0) -> tuple[int, int]:
        """Admission and discharge day for a given delay, clipped to the horizon."""
        info = self._instance.patients[patient]
        start = info.admission_day + delay
        end = min(info.discharge_day + delay, self._instance.horizon)
        return start, end

    # ---- cost ---------------------------------------------------------------

    def row_cost(self, patient: int, row: np.ndarray, delay: int) -> int:
        days = np.flatnonzero(row != UNASSIGNED)
        if days.size == 0:
            return 0
        rooms = row[days]
        cost = int(self._tables.cost[patient, rooms].sum())
        # days pushed past the horizon are still spent in the last room
        truncated = self.costed_days(patient) - days.size
        if truncated > 0:
            cost += truncated * int(self._tables.cost[patient, rooms[-1]])
        cost += self._weights.transfer * int(np.count_nonzero(rooms[1:] != rooms[:-1]))
        cost += self._weights.delay * delay
        return cost

    def extension_cells(
        self,
        patient: int,
        row: np.ndarray,
        delay: int,
    ) -> Optional[tuple[int, int, int]]:
        """(room, start, end) days the patient may overstay, if any fall in the horizon."""
        info = self._instance.patients[patient]
        if info.variability <= 0:
            return None
        days = np.flatnonzero(row != UNASSIGNED)
        if days.size == 0:
            return None
        nominal_end = info.discharge_day + delay
        if nominal_end >= self._instance.horizon:
            return None
        end = min(nominal_end + info.variability, self._instance.horizon)
        return int(row[days[-1]]), nominal_end, end

    def patient_cost(self, patient: int) -> int:
        return int(self._patient_costs[patient])

    def overcrowd_penalty(self) -> int:
        return self._weights.overcrowd_risk * self.calendar.total_overcrowd_excess()

    def total_cost(self) -> int:
        """Recompute the full objective from the grid, ignoring cached values."""
        patient_total = sum(
            self.row_cost(patient, self._grid[patient], int(self._delays[patient]))
            for patient in range(self._instance.num_patients)
        )
        return patient_total + self.overcrowd_penalty()

    def evaluate(self, edits: Sequence[RowEdit]) -> Optional[int]:
        """Cost delta of applying ``edits``, or None if they break a constraint."""
        occupancy: Counter = Counter()
        risk: Counter = Counter()
        delta = 0
        for edit in edits:
            patient = edit.patient
            new_days = np.flatnonzero(edit.row != UNASSIGNED)
            new_rooms = edit.row[new_days]
            if not self._tables.feasible[patient, new_rooms].all():
                return None
            old_row = self._grid[patient]
            old_days = np.flatnonzero(old_row != UNASSIGNED)
            for day, room in zip(old_days.tolist(), old_row[old_days].tolist()):
                occupancy[(room, day)] -= 1
            for day, room in zip(new_days.tolist(), new_rooms.tolist()):
                occupancy[(room, day)] += 1
            self._count_extension(risk, patient, old_row, int(self._delays[patient]), -1)
            self._count_extension(risk, patient, edit.row, edit.delay, 1)
            delta += self.row_cost(patient, edit.row, edit.delay) - int(self._patient_costs[patient])

        remaining = self.calendar.remaining
        for cell, change in occupancy.items():
            if change > 0 and remaining[cell] < change:
                return None

        weight = self._weights.overcrowd_risk
        if weight:
            at_risk = self.calendar.at_risk
            for cell in set(occupancy) | set(risk):
                before = max(0, int(at_risk[cell] - remaining[cell]))
                after = max(
                    0,
                    int(at_risk[cell] + risk[cell] - (remaining[cell] - occupancy[cell])),
                )
                delta += weight * (after - before)
        return int(delta)

    def _count_extension(
        self,
        risk: Counter,
        patient: int,
        row: np.ndarray,
        delay: int,
        amount: int,
    ) -> None:
        cells = self.extension_cells(patient, row, delay)
        if cells is None:
            return
        room, start, end = cells
        for day in range(start, end):
            risk[(room, day)] += amount

    # ---- mutation -----------------------------------------------------------

    def apply(self, edits: Sequence[RowEdit]) -> None:
        """Swap in new rows, keeping the calendar consistent; all or nothing."""
        previous = [
            (edit.patient, self._grid[edit.patient].copy(), int(self._delays[edit.patient]))
            for edit in edits
        ]
        for patient, row, delay in previous:
            self._release_row(patient, row, delay)

        occupied: list[RowEdit] = []
        try:
            for edit in edits:
                self._occupy_row(edit.patient, edit.row, edit.delay)
                occupied.append(edit)
        except CapacityInvariantError:
            for edit in occupied:
                self._release_row(edit.patient, edit.row, edit.delay)
            for patient, row, delay in previous:
                self._occupy_row(patient, row, delay)
            raise

        for edit in edits:
            self._grid[edit.patient] = edit.row
            self._delays[edit.patient] = edit.delay
            self._patient_costs[edit.patient] = self.row_cost(edit.patient, edit.row, edit.delay)
            self.refresh_tags(edit.patient)

    def assign(self, patient: int, row: np.ndarray, delay: int = 0) -> None:
        self.apply((RowEdit(patient=patient, row=row, delay=delay),))

    def clear(self, patient: int) -> None:
        self.assign(patient, self.blank_row(), 0)

    def drop_rows(self, patients: Iterable[int]) -> None:
        """Forget rows without touching beds; the caller restores the calendar."""
        for patient in patients:
            self._grid[patient] = UNASSIGNED
            self._delays[patient] = 0
            self._patient_costs[patient] = 0
            self.refresh_tags(patient)

    def _occupy_row(self, patient: int, row: np.ndarray, delay: int) -> None:
        days = np.flatnonzero(row != UNASSIGNED).tolist()
        taken: list[tuple[int, int]] = []
        for day in days:
            room = int(row[day])
            if not self.calendar.occupy(room, day):
                for held_room, held_day in taken:
                    self.calendar.release(held_room, held_day)
                raise CapacityInvariantError(
                    f"patient {patient} cannot occupy room {room} on day {day}: no bed left"
                )
            taken.append((room, day))
        cells = self.extension_cells(patient, row, delay)
        if cells is not None:
            self.calendar.flag_extension(*cells, amount=1)

    def _release_row(self, patient: int, row: np.ndarray, delay: int) -> None:
        for day in np.flatnonzero(row != UNASSIGNED).tolist():
            self.calendar.release(int(row[day]), day)
        cells = self.extension_cells(patient, row, delay)
        if cells is not None:
            self.calendar.flag_extension(*cells, amount=-1)

    # ---- status tags --------------------------------------------------------

    def mark_day(self, patient: int, day: int, tag: StatusTag) -> None:
        self._tags[patient, day] = int(tag)

    def refresh_tags(self, patient: int) -> None:
        info = self._instance.patients[patient]
        stay = self.stay(patient)
        start, end = stay if stay is not None else (None, None)
        for day in range(self._instance.horizon):
            self._tags[patient, day] = int(status_on(info, day, start, end))

    # ---- views --------------------------------------------------------------

    def assignment_record(self, patient: int) -> AssignmentRecord:
        info = self._instance.patients[patient]
        stay = self.stay(patient)
        if stay is None:
            return AssignmentRecord(
                patient_id=patient,
                patient_name=info.name,
                admission_day=None,
                transfer_day=None,
                discharge_day=None,
                room_before=None,
                room_after=None,
                delay=0,
                cost=0,
            )
        start, end = stay
        rooms = self._grid[patient, start:end]
        changes = np.flatnonzero(rooms[1:] != rooms[:-1])
        transfer_day = start + int(changes[0]) + 1 if changes.size else None
        return AssignmentRecord(
            patient_id=patient,
            patient_name=info.name,
            admission_day=start,
            transfer_day=transfer_day,
            discharge_day=end,
            room_before=int(rooms[0]),
            room_after=int(rooms[-1]),
            delay=int(self._delays[patient]),
            cost=int(self._patient_costs[patient]),
        )

    def assignment_records(self) -> tuple[AssignmentRecord, ...]:
        return tuple(self.assignment_record(p) for p in range(self._instance.num_patients))

    def schedule(self) -> tuple[tuple[Optional[int], ...], ...]:
        return tuple(
            tuple(None if room == UNASSIGNED else int(room) for room in row.tolist())
            for row in self._grid
        )

    def copy(self) -> Solution:
        clone = Solution(self._instance, self._tables, self._weights, self.calendar.copy())
        clone._grid[...] = self._grid
        clone._tags[...] = self._tags
        clone._delays[...] = self._delays
        clone._patient_costs[...] = self._patient_costs
        return clone

    def verify(self) -> None:
        """Fail fast if the grid, the calendar and the hard constraints disagree."""
        self.calendar.check_invariants()
        num_rooms = self._instance.num_rooms
        horizon = self._instance.horizon
        patients, days = np.nonzero(self._grid != UNASSIGNED)
        rooms = self._grid[patients, days]

        counts = np.zeros((num_rooms, horizon), dtype=np.int64)
        np.add.at(counts, (rooms, days), 1)
        occupied = self.calendar.capacity[:, None] - self.calendar.remaining
        if not np.array_equal(counts, occupied):
            raise CapacityInvariantError("calendar occupancy does not match the schedule grid")

        if not self._tables.feasible[patients, rooms].all():
            raise CapacityInvariantError("a patient occupies a statically infeasible room")

        at_risk = np.zeros_like(counts)
        for patient in range(self._instance.num_patients):
            stay = self.stay(patient)
            if stay is None:
                continue
            delay = int(self._delays[patient])
            if stay != self.window(patient, delay):
                raise CapacityInvariantError(
                    f"patient {patient} stay {stay} does not match its admission window"
                )
            cells = self.extension_cells(patient, self._grid[patient], delay)
            if cells is not None:
                room, start, end = cells
                at_risk[room, start:end] += 1
        if not np.array_equal(at_risk, self.calendar.at_risk):
            raise CapacityInvariantError("overstay counts do not match the schedule grid")
