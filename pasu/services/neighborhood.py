"""Lazy generation of feasible, pre-evaluated local-search moves."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional

import numpy as np

from pasu.domain.models import MoveType
from pasu.services.cost_model import CostTables
from pasu.services.solution import UNASSIGNED, RowEdit, Solution


Attribute = tuple
EditProposal = tuple[MoveType, tuple[RowEdit, ...]]


@dataclass(frozen=True)
class Move:
    """A candidate rescheduling of one or two patients.

    ``attributes`` are what the move would establish (a patient entering a
    room, a new admission delay, a new transfer day); ``reverse_attributes``
    are what it undoes, and become tabu once the move is applied.
    """

    move_type: MoveType
    edits: tuple[RowEdit, ...]
    delta: int
    attributes: frozenset[Attribute]
    reverse_attributes: frozenset[Attribute]
    first_day: int
    end_day: int

    @property
    def patients(self) -> tuple[int, ...]:
        return tuple(edit.patient for edit in self.edits)

    @property
    def target_rooms(self) -> tuple[int, ...]:
        rooms: set[int] = set()
        for edit in self.edits:
            rooms.update(edit.row[edit.row != UNASSIGNED].tolist())
        return tuple(sorted(rooms))


def _roundrobin(*iterables: Iterable) -> Iterator:
    iterators = deque(iter(iterable) for iterable in iterables)
    while iterators:
        iterator = iterators.popleft()
        try:
            item = next(iterator)
        except StopIteration:
            continue
        iterators.append(iterator)
        yield item


def _assigned_rooms(row: np.ndarray) -> np.ndarray:
    return row[row != UNASSIGNED]


def count_transfers(row: np.ndarray) -> int:
    rooms = _assigned_rooms(row)
    return int(np.count_nonzero(rooms[1:] != rooms[:-1]))


def transfer_day(row: np.ndarray) -> Optional[int]:
    days = np.flatnonzero(row != UNASSIGNED)
    if days.size < 2:
        return None
    changes = np.flatnonzero(row[days][1:] != row[days][:-1])
    if changes.size == 0:
        return None
    return int(days[changes[0] + 1])


def tabu_attributes(
    solution: Solution,
    edits: Iterable[RowEdit],
) -> tuple[frozenset[Attribute], frozenset[Attribute]]:
    added: set[Attribute] = set()
    removed: set[Attribute] = set()
    for edit in edits:
        patient = edit.patient
        old_row = solution.row(patient)
        old_rooms = set(_assigned_rooms(old_row).tolist())
        new_rooms = set(_assigned_rooms(edit.row).tolist())
        added.update(("room", patient, room) for room in new_rooms - old_rooms)
        removed.update(("room", patient, room) for room in old_rooms - new_rooms)

        old_delay = solution.delay(patient)
        if edit.delay != old_delay:
            added.add(("delay", patient, edit.delay))
            removed.add(("delay", patient, old_delay))

        old_transfer = transfer_day(old_row)
        new_transfer = transfer_day(edit.row)
        if old_transfer != new_transfer:
            added.add(("transfer", patient, new_transfer))
            removed.add(("transfer", patient, old_transfer))
    return frozenset(added), frozenset(removed)


class NeighborhoodGenerator:
    """Yields capacity- and feasibility-checked moves in a seeded random order.

    Patients are visited round-robin so that a bounded prefix of the
    sequence already spans many patients and move types.
    """

    def __init__(
        self,
        tables: CostTables,
        *,
        swap_min_overlap_days: int = 1,
        move_types: Optional[Iterable[MoveType]] = None,
    ) -> None:
        if swap_min_overlap_days <= 0:
            raise ValueError("swap_min_overlap_days must be > 0")
        self._tables = tables
        self._swap_min_overlap_days = swap_min_overlap_days
        self._move_types = tuple(move_types) if move_types is not None else tuple(MoveType)
        self._proposers: dict[
            MoveType, Callable[[Solution, int, np.random.Generator], Iterator[EditProposal]]
        ] = {
            MoveType.CHANGE: self._change,
            MoveType.SWAP: self._swap,
            MoveType.DELAY: self._delay,
            MoveType.PARTIAL_CHANGE: self._partial_change,
            MoveType.PARTIAL_SWAP: self._partial_swap,
        }

    @property
    def move_types(self) -> tuple[MoveType, ...]:
        return self._move_types

    def moves(self, solution: Solution, rng: np.random.Generator) -> Iterator[Move]:
        """Lazily enumerate the full neighborhood of ``solution``.

        The sequence is only valid while ``solution`` is left untouched.
        """
        order = rng.permutation(solution.instance.num_patients).tolist()
        streams = [
            self._patient_moves(solution, patient, rng)
            for patient in order
            if solution.is_placed(patient)
        ]
        yield from _roundrobin(*streams)

    def _patient_moves(
        self,
        solution: Solution,
        patient: int,
        rng: np.random.Generator,
    ) -> Iterator[Move]:
        kinds = [self._move_types[i] for i in rng.permutation(len(self._move_types)).tolist()]
        proposals = _roundrobin(*(self._proposers[kind](solution, patient, rng) for kind in kinds))
        for move_type, edits in proposals:
            delta = solution.evaluate(edits)
            if delta is None:
                continue
            added, removed = tabu_attributes(solution, edits)
            first_day, end_day = self._day_range(solution, edits)
            yield Move(
                move_type=move_type,
                edits=edits,
                delta=delta,
                attributes=added,
                reverse_attributes=removed,
                first_day=first_day,
                end_day=end_day,
            )

    @staticmethod
    def _day_range(solution: Solution, edits: tuple[RowEdit, ...]) -> tuple[int, int]:
        days: list[int] = []
        for edit in edits:
            for row in (solution.row(edit.patient), edit.row):
                assigned = np.flatnonzero(row != UNASSIGNED)
                if assigned.size:
                    days.extend((int(assigned[0]), int(assigned[-1]) + 1))
        return min(days), max(days)

    def _single_room(self, solution: Solution, patient: int) -> Optional[int]:
        rooms = _assigned_rooms(solution.row(patient))
        if rooms.size == 0 or (rooms != rooms[0]).any():
            return None
        return int(rooms[0])

    def _swap_partners(self, solution: Solution, patient: int, rng: np.random.Generator) -> list[int]:
        partners = np.flatnonzero(self._tables.overlap[patient] >= self._swap_min_overlap_days)
        return [
            partner
            for partner in rng.permutation(partners).tolist()
            if partner > patient and solution.is_placed(partner)
        ]

    def _change(self, solution: Solution, patient: int, rng: np.random.Generator) -> Iterator[EditProposal]:
        start, end = solution.stay(patient)
        current = solution.row(patient)
        delay = solution.delay(patient)
        for room in rng.permutation(self._tables.feasible_rooms(patient)).tolist():
            row = solution.blank_row()
            row[start:end] = room
            if np.array_equal(row, current):
                continue
            yield MoveType.CHANGE, (RowEdit(patient, row, delay),)

    def _swap(self, solution: Solution, patient: int, rng: np.random.Generator) -> Iterator[EditProposal]:
        room = self._single_room(solution, patient)
        if room is None:
            return
        start, end = solution.stay(patient)
        for partner in self._swap_partners(solution, patient, rng):
            partner_room = self._single_room(solution, partner)
            if partner_room is None or partner_room == room:
                continue
            if not (
                self._tables.feasible[patient, partner_room]
                and self._tables.feasible[partner, room]
            ):
                continue
            partner_start, partner_end = solution.stay(partner)
            row = solution.blank_row()
            row[start:end] = partner_room
            partner_row = solution.blank_row()
            partner_row[partner_start:partner_end] = room
            yield MoveType.SWAP, (
                RowEdit(patient, row, solution.delay(patient)),
                RowEdit(partner, partner_row, solution.delay(partner)),
            )

    def _delay(self, solution: Solution, patient: int, rng: np.random.Generator) -> Iterator[EditProposal]:
        # Patients with a transfer keep their admission day.
        room = self._single_room(solution, patient)
        if room is None:
            return
        info = solution.instance.patients[patient]
        current = solution.delay(patient)
        options = [
            delay
            for delay in range(info.max_admission_day - info.admission_day + 1)
            if delay != current
        ]
        if not options:
            return
        for delay in rng.permutation(options).tolist():
            start, end = solution.window(patient, delay)
            if start >= end:
                continue
            row = solution.blank_row()
            row[start:end] = room
            yield MoveType.DELAY, (RowEdit(patient, row, delay),)

    def _partial_change(
        self,
        solution: Solution,
        patient: int,
        rng: np.random.Generator,
    ) -> Iterator[EditProposal]:
        start, end = solution.stay(patient)
        if end - start < 2:
            return
        current = solution.row(patient)
        delay = solution.delay(patient)
        rooms = self._tables.feasible_rooms(patient)
        for pivot in rng.permutation(np.arange(start + 1, end)).tolist():
            for room in rng.permutation(rooms).tolist():
                row = current.copy()
                row[pivot:end] = room
                if count_transfers(row) > 1 or np.array_equal(row, current):
                    continue
                yield MoveType.PARTIAL_CHANGE, (RowEdit(patient, row, delay),)

    def _partial_swap(
        self,
        solution: Solution,
        patient: int,
        rng: np.random.Generator,
    ) -> Iterator[EditProposal]:
        start, end = solution.stay(patient)
        current = solution.row(patient)
        for partner in self._swap_partners(solution, patient, rng):
            partner_start, partner_end = solution.stay(partner)
            first_pivot = max(start, partner_start) + 1
            last_pivot = min(end, partner_end)
            if first_pivot >= last_pivot:
                continue
            partner_current = solution.row(partner)
            for pivot in rng.permutation(np.arange(first_pivot, last_pivot)).tolist():
                room = int(current[pivot])
                partner_room = int(partner_current[pivot])
                if room == partner_room:
                    continue
                if not (
                    self._tables.feasible[patient, partner_room]
                    and self._tables.feasible[partner, room]
                ):
                    continue
                row = current.copy()
                row[pivot:end] = partner_room
                partner_row = partner_current.copy()
                partner_row[pivot:partner_end] = room
                if count_transfers(row) > 1 or count_transfers(partner_row) > 1:
                    continue
                yield MoveType.PARTIAL_SWAP, (
                    RowEdit(patient, row, solution.delay(patient)),
                    RowEdit(partner, partner_row, solution.delay(partner)),
                )
