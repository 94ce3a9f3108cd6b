"""Per-room, per-day bed bookkeeping shared by construction and search."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from pasu.domain.models import Instance


class CapacityInvariantError(RuntimeError):
    """Raised when bed bookkeeping is driven into an impossible state."""


@dataclass(frozen=True)
class CalendarSnapshot:
    remaining: np.ndarray
    at_risk: np.ndarray


class CapacityCalendar:
    """Remaining beds per (room, day), mutated only through occupy/release.

    The calendar also counts, per (room, day), how many patients might still
    be in the room because their variability lets them overstay a nominal
    discharge. Those counts drive the overcrowd-risk penalty.
    """

    def __init__(self, capacities: Sequence[int], horizon: int) -> None:
        self._capacity = np.asarray(capacities, dtype=np.int64)
        if self._capacity.ndim != 1 or (self._capacity <= 0).any():
            raise ValueError("room capacities must be a flat sequence of positive integers")
        if horizon <= 0:
            raise ValueError("horizon must be > 0")
        self._horizon = horizon
        self._remaining = np.repeat(self._capacity[:, None], horizon, axis=1)
        self._at_risk = np.zeros_like(self._remaining)

    @classmethod
    def for_instance(cls, instance: Instance) -> CapacityCalendar:
        return cls([room.capacity for room in instance.rooms], instance.horizon)

    @property
    def horizon(self) -> int:
        return self._horizon

    @property
    def capacity(self) -> np.ndarray:
        view = self._capacity.view()
        view.flags.writeable = False
        return view

    @property
    def remaining(self) -> np.ndarray:
        view = self._remaining.view()
        view.flags.writeable = False
        return view

    @property
    def at_risk(self) -> np.ndarray:
        view = self._at_risk.view()
        view.flags.writeable = False
        return view

    def available(self, room: int, day: int) -> int:
        return int(self._remaining[room, day])

    def occupied(self, room: int, day: int) -> int:
        return int(self._capacity[room] - self._remaining[room, day])

    def occupy(self, room: int, day: int) -> bool:
        if self._remaining[room, day] <= 0:
            return False
        self._remaining[room, day] -= 1
        return True

    def release(self, room: int, day: int) -> None:
        if self._remaining[room, day] >= self._capacity[room]:
            raise CapacityInvariantError(
                f"release of room {room} on day {day} exceeds its capacity"
            )
        self._remaining[room, day] += 1

    def has_window(self, room: int, start: int, end: int) -> bool:
        return bool((self._remaining[room, start:end] >= 1).all())

    def occupy_window(self, room: int, start: int, end: int) -> bool:
        """Take one bed on every day of [start, end); all or nothing."""
        if not self.has_window(room, start, end):
            return False
        self._remaining[room, start:end] -= 1
        return True

    def release_window(self, room: int, start: int, end: int) -> None:
        if (self._remaining[room, start:end] >= self._capacity[room]).any():
            raise CapacityInvariantError(
                f"release of room {room} over days [{start}, {end}) exceeds its capacity"
            )
        self._remaining[room, start:end] += 1

    def flag_extension(self, room: int, start: int, end: int, amount: int) -> None:
        self._at_risk[room, start:end] += amount
        if (self._at_risk[room, start:end] < 0).any():
            raise CapacityInvariantError(
                f"overstay count for room {room} over days [{start}, {end}) went negative"
            )

    def overcrowd_excess(self, room: int, day: int) -> int:
        return max(0, int(self._at_risk[room, day] - self._remaining[room, day]))

    def total_overcrowd_excess(self) -> int:
        return int(np.maximum(self._at_risk - self._remaining, 0).sum())

    def snapshot(self) -> CalendarSnapshot:
        return CalendarSnapshot(remaining=self._remaining.copy(), at_risk=self._at_risk.copy())

    def restore(self, snapshot: CalendarSnapshot) -> None:
        if snapshot.remaining.shape != self._remaining.shape:
            raise CapacityInvariantError("snapshot shape does not match this calendar")
        self._remaining[...] = snapshot.remaining
        self._at_risk[...] = snapshot.at_risk

    def copy(self) -> CapacityCalendar:
        clone = CapacityCalendar(self._capacity, self._horizon)
        clone.restore(self.snapshot())
        return clone

    def check_invariants(self) -> None:
        if (self._remaining < 0).any():
            raise CapacityInvariantError("remaining beds went negative")
        if (self._remaining > self._capacity[:, None]).any():
            raise CapacityInvariantError("remaining beds exceed room capacity")
        if (self._at_risk < 0).any():
            raise CapacityInvariantError("overstay counts went negative")
