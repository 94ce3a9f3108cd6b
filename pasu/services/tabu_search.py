"""Tabu search over the rescheduling neighborhood."""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Hashable, Iterable, Optional

import numpy as np

from pasu.domain.models import MoveType
from pasu.services.capacity_calendar import CapacityInvariantError
from pasu.services.neighborhood import Move, NeighborhoodGenerator
from pasu.services.solution import Solution
from pasu.utils.logger import get_logger


logger = get_logger(__name__)


class TerminationReason(str, Enum):
    ITERATION_CAP = "iteration_cap"
    TIME_BUDGET = "time_budget"
    LOCAL_OPTIMUM = "local_optimum"
    SEARCH_EXHAUSTED = "search_exhausted"
    STALLED = "stalled"
    CANCELLED = "cancelled"


class TabuListCorruptionError(RuntimeError):
    """Raised when the tabu memory is asked to hold an impossible entry."""


class TabuList:
    """Attribute -> expiry iteration; an attribute is tabu until it expires."""

    def __init__(self, tenure: int) -> None:
        if tenure <= 0:
            raise TabuListCorruptionError("tabu tenure must be > 0")
        self._tenure = tenure
        self._expiry: dict[Hashable, int] = {}

    @property
    def tenure(self) -> int:
        return self._tenure

    def add(self, attribute: Hashable, iteration: int) -> int:
        expiry = iteration + self._tenure
        if expiry <= iteration:
            raise TabuListCorruptionError(f"expiry {expiry} is not after iteration {iteration}")
        self._expiry[attribute] = expiry
        return expiry

    def add_all(self, attributes: Iterable[Hashable], iteration: int) -> None:
        for attribute in attributes:
            self.add(attribute, iteration)

    def is_tabu(self, attribute: Hashable, iteration: int) -> bool:
        return self._expiry.get(attribute, iteration) > iteration

    def any_tabu(self, attributes: Iterable[Hashable], iteration: int) -> bool:
        return any(self.is_tabu(attribute, iteration) for attribute in attributes)

    def expire(self, iteration: int) -> None:
        self._expiry = {
            attribute: expiry for attribute, expiry in self._expiry.items() if expiry > iteration
        }

    def __len__(self) -> int:
        return len(self._expiry)

    def __contains__(self, attribute: object) -> bool:
        return attribute in self._expiry


@dataclass(frozen=True)
class AcceptedMove:
    iteration: int
    move_type: MoveType
    patients: tuple[int, ...]
    delta: int
    cost: int
    aspiration: bool


@dataclass(frozen=True)
class SearchOutcome:
    best: Solution
    best_cost: int
    initial_cost: int
    current_cost: int
    iterations: int
    termination_reason: TerminationReason
    elapsed_seconds: float
    history: tuple[AcceptedMove, ...]
    best_cost_trace: tuple[int, ...]


@dataclass(frozen=True)
class _Selection:
    move: Optional[Move]
    candidates_seen: int
    aspiration: bool


class TabuSearchController:
    """Best-admissible-move tabu search with aspiration by new best cost.

    One iteration samples ``sample_size`` candidates (scanning further only
    while none of them is admissible), applies the lowest-delta admissible
    move, and forbids its reverse attributes for ``tenure`` iterations.
    The iteration boundary is the only point where the solution and its
    calendar are consistent, so ``should_stop`` is polled there.
    """

    def __init__(
        self,
        generator: NeighborhoodGenerator,
        *,
        rng: np.random.Generator,
        iteration_cap: int,
        time_budget_seconds: float,
        tabu_tenure: int,
        sample_size: int,
        stall_limit: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if sample_size <= 0:
            raise ValueError("sample_size must be > 0")
        if iteration_cap < 0:
            raise ValueError("iteration_cap must be >= 0")
        self._generator = generator
        self._rng = rng
        self._iteration_cap = iteration_cap
        self._time_budget_seconds = time_budget_seconds
        self._tabu_tenure = tabu_tenure
        self._sample_size = sample_size
        self._stall_limit = stall_limit
        self._clock = clock

    def run(
        self,
        solution: Solution,
        should_stop: Optional[Callable[[int, int], bool]] = None,
    ) -> SearchOutcome:
        started = self._clock()
        tabu = TabuList(self._tabu_tenure)
        initial_cost = solution.total_cost()
        current_cost = initial_cost
        best = solution.copy()
        best_cost = current_cost
        history: list[AcceptedMove] = []
        trace: list[int] = [best_cost]
        iteration = 0
        since_improvement = 0

        while True:
            if iteration >= self._iteration_cap:
                reason = TerminationReason.ITERATION_CAP
                break
            if self._clock() - started >= self._time_budget_seconds:
                reason = TerminationReason.TIME_BUDGET
                break
            if self._stall_limit and since_improvement >= self._stall_limit:
                reason = TerminationReason.STALLED
                break

            selection = self._select(solution, tabu, iteration, current_cost, best_cost)
            if selection.candidates_seen == 0:
                reason = TerminationReason.SEARCH_EXHAUSTED
                break
            if selection.move is None:
                reason = TerminationReason.LOCAL_OPTIMUM
                break

            move = selection.move
            solution.apply(move.edits)
            current_cost += move.delta
            iteration += 1
            tabu.expire(iteration)
            tabu.add_all(move.reverse_attributes, iteration)
            history.append(
                AcceptedMove(
                    iteration=iteration,
                    move_type=move.move_type,
                    patients=move.patients,
                    delta=move.delta,
                    cost=current_cost,
                    aspiration=selection.aspiration,
                )
            )
            logger.debug(
                "Search iteration | iteration=%s | move=%s | patients=%s | delta=%s | cost=%s",
                iteration,
                move.move_type.value,
                move.patients,
                move.delta,
                current_cost,
            )

            if current_cost < best_cost:
                best = solution.copy()
                best_cost = current_cost
                since_improvement = 0
                logger.debug("New best solution | iteration=%s | cost=%s", iteration, best_cost)
            else:
                since_improvement += 1
            trace.append(best_cost)

            if should_stop is not None and should_stop(iteration, current_cost):
                reason = TerminationReason.CANCELLED
                break

        recomputed = solution.total_cost()
        if recomputed != current_cost:
            raise CapacityInvariantError(
                f"running cost {current_cost} drifted from recomputed cost {recomputed}"
            )
        solution.verify()

        elapsed = self._clock() - started
        logger.info(
            (
                "Tabu search finished | reason=%s | iterations=%s | initial_cost=%s | "
                "best_cost=%s | elapsed=%.3fs"
            ),
            reason.value,
            iteration,
            initial_cost,
            best_cost,
            elapsed,
        )
        return SearchOutcome(
            best=best,
            best_cost=best_cost,
            initial_cost=initial_cost,
            current_cost=current_cost,
            iterations=iteration,
            termination_reason=reason,
            elapsed_seconds=elapsed,
            history=tuple(history),
            best_cost_trace=tuple(trace),
        )

    def _select(
        self,
        solution: Solution,
        tabu: TabuList,
        iteration: int,
        current_cost: int,
        best_cost: int,
    ) -> _Selection:
        chosen: Optional[Move] = None
        chosen_aspiration = False
        seen = 0
        for move in self._generator.moves(solution, self._rng):
            if seen >= self._sample_size and chosen is not None:
                break
            seen += 1
            aspiration = False
            if tabu.any_tabu(move.attributes, iteration):
                if current_cost + move.delta >= best_cost:
                    continue
                aspiration = True
            if chosen is None or move.delta < chosen.delta:
                chosen = move
                chosen_aspiration = aspiration
        return _Selection(move=chosen, candidates_seen=seen, aspiration=chosen_aspiration)
