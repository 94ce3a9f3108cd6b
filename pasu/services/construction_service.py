"""Randomized day-by-day construction of a feasible initial schedule."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from pasu.domain.constraints import PenaltyWeights
from pasu.domain.models import Instance, StatusTag
from pasu.services.cost_model import CostTables
from pasu.services.solution import Solution, status_on
from pasu.utils.logger import get_logger


logger = get_logger(__name__)


class ConstructionExhaustedError(Exception):
    """Raised when no complete initial schedule was found within the retry budget."""

    def __init__(self, attempts: int, failed_day: Optional[int] = None) -> None:
        message = f"no initial solution found after {attempts} construction attempts"
        if failed_day is not None:
            message += f" (last attempt failed on day {failed_day})"
        super().__init__(message)
        self.attempts = attempts
        self.failed_day = failed_day


@dataclass(frozen=True)
class ConstructionResult:
    solution: Solution
    attempts: int
    infeasible_patient_ids: tuple[int, ...]


class ConstructiveBuilder:
    """Greedy placement with random room order and whole-attempt restarts.

    A day commits only when every patient admitted that day has a room for
    the whole stay and every registered-but-waiting patient could still be
    given one. Any failure rolls the day back and restarts from day 0 with a
    fresh solution and calendar.
    """

    def __init__(
        self,
        instance: Instance,
        tables: CostTables,
        weights: PenaltyWeights,
        *,
        retry_budget: int,
        rng: np.random.Generator,
    ) -> None:
        if retry_budget <= 0:
            raise ValueError("retry_budget must be > 0")
        self._instance = instance
        self._tables = tables
        self._weights = weights
        self._retry_budget = retry_budget
        self._rng = rng
        self._skipped = frozenset(tables.infeasible_patients())

    def build(self) -> ConstructionResult:
        failed_day: Optional[int] = None
        for attempt in range(1, self._retry_budget + 1):
            solution = Solution(self._instance, self._tables, self._weights)
            failed_day = self._attempt(solution)
            if failed_day is None:
                solution.verify()
                logger.info(
                    "Initial solution constructed | instance=%s | attempts=%s | cost=%s",
                    self._instance.name,
                    attempt,
                    solution.total_cost(),
                )
                return ConstructionResult(
                    solution=solution,
                    attempts=attempt,
                    infeasible_patient_ids=tuple(sorted(self._skipped)),
                )
            logger.debug(
                "Construction attempt failed | attempt=%s | day=%s", attempt, failed_day
            )

        logger.warning(
            "Construction exhausted | instance=%s | attempts=%s | last_failed_day=%s",
            self._instance.name,
            self._retry_budget,
            failed_day,
        )
        raise ConstructionExhaustedError(self._retry_budget, failed_day)

    def _attempt(self, solution: Solution) -> Optional[int]:
        """Run one attempt; return the failing day, or None once every day commits."""
        for day in range(self._instance.horizon):
            if not self._arrange_day(solution, day):
                return day
        return None

    def _arrange_day(self, solution: Solution, day: int) -> bool:
        calendar = solution.calendar
        snapshot = calendar.snapshot()
        admitted_today: list[int] = []
        reservations: list[tuple[int, int, int]] = []

        for patient in self._instance.patients:
            pid = patient.patient_id
            start, end = solution.window(pid)
            tag = status_on(patient, day, start, end)
            solution.mark_day(pid, day, tag)
            if pid in self._skipped:
                continue

            admitting = day == start
            waiting = tag is StatusTag.REGISTERED and patient.registration_day != start
            if not admitting and not waiting:
                continue

            room = self._find_room(solution, pid, start, end)
            if room is None:
                calendar.restore(snapshot)
                solution.drop_rows(admitted_today)
                return False

            if admitting:
                row = solution.blank_row()
                row[start:end] = room
                solution.assign(pid, row)
                admitted_today.append(pid)
            else:
                calendar.occupy_window(room, start, end)
                reservations.append((room, start, end))

        # Waiting patients only had to fit; their beds are not held overnight.
        for room, start, end in reservations:
            calendar.release_window(room, start, end)
        return True

    def _room_scan_order(self) -> list[int]:
        num_rooms = self._instance.num_rooms
        first = int(self._rng.integers(num_rooms))
        return [first] + [room for room in range(num_rooms - 1, -1, -1) if room != first]

    def _find_room(self, solution: Solution, patient: int, start: int, end: int) -> Optional[int]:
        for room in self._room_scan_order():
            if not self._tables.feasible[patient, room]:
                continue
            if solution.calendar.has_window(room, start, end):
                return room
        return None
