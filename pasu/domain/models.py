"""Domain models for patient admission scheduling."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Mapping, Optional


class Gender(str, Enum):
    MALE = "Ma"
    FEMALE = "Fe"


class GenderPolicy(str, Enum):
    SAME_GENDER = "SG"
    MALE_ONLY = "Ma"
    FEMALE_ONLY = "Fe"
    MIXED = "Mix"


class FeatureRequirement(str, Enum):
    NEEDED = "n"
    PREFERRED = "p"
    DONT_CARE = "-"


class DoctoringLevel(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    NONE = "none"


class StatusTag(IntEnum):
    UNREGISTERED = 0
    REGISTERED = 1
    ADMITTED = 2
    DISCHARGED = 3


class MoveType(str, Enum):
    CHANGE = "change"
    SWAP = "swap"
    DELAY = "delay"
    PARTIAL_CHANGE = "partial_change"
    PARTIAL_SWAP = "partial_swap"


@dataclass(frozen=True)
class Department:
    department_id: int
    name: str
    min_age: int = 0
    max_age: int = 0
    specialism_levels: Mapping[int, DoctoringLevel] = field(default_factory=dict)

    def level_for(self, specialism: int) -> DoctoringLevel:
        return self.specialism_levels.get(specialism, DoctoringLevel.NONE)

    def admits_age(self, age: int) -> bool:
        """Age bounds of 0 mean the department is unbounded on that side."""
        if self.min_age and age < self.min_age:
            return False
        if self.max_age and age > self.max_age:
            return False
        return True


@dataclass(frozen=True)
class Room:
    room_id: int
    name: str
    capacity: int
    department_id: int
    policy: GenderPolicy = GenderPolicy.MIXED
    features: frozenset[int] = frozenset()


@dataclass(frozen=True)
class Patient:
    patient_id: int
    name: str
    age: int
    gender: Gender
    registration_day: int
    admission_day: int
    discharge_day: int
    max_admission_day: int
    specialism: int
    variability: int = 0
    preferred_capacity: Optional[int] = None
    feature_requirements: Mapping[int, FeatureRequirement] = field(default_factory=dict)

    @property
    def length_of_stay(self) -> int:
        return self.discharge_day - self.admission_day

    def valid_discharge_day(self, horizon: int) -> int:
        return min(self.discharge_day, horizon)

    def requirement_for(self, feature: int) -> FeatureRequirement:
        return self.feature_requirements.get(feature, FeatureRequirement.DONT_CARE)


@dataclass(frozen=True)
class Instance:
    """Static problem data, referenced everywhere by integer index."""

    name: str
    horizon: int
    num_features: int
    num_specialisms: int
    departments: tuple[Department, ...]
    rooms: tuple[Room, ...]
    patients: tuple[Patient, ...]

    @property
    def num_rooms(self) -> int:
        return len(self.rooms)

    @property
    def num_patients(self) -> int:
        return len(self.patients)

    @property
    def total_beds(self) -> int:
        return sum(room.capacity for room in self.rooms)

    def department_of(self, room: Room) -> Department:
        return self.departments[room.department_id]


@dataclass(frozen=True)
class AssignmentRecord:
    """Per-patient summary derived from a solution; not a source of truth."""

    patient_id: int
    patient_name: str
    admission_day: Optional[int]
    transfer_day: Optional[int]
    discharge_day: Optional[int]
    room_before: Optional[int]
    room_after: Optional[int]
    delay: int
    cost: int

    @property
    def placed(self) -> bool:
        return self.room_before is not None


@dataclass(frozen=True)
class ScheduleResult:
    instance_name: str
    schedule: tuple[tuple[Optional[int], ...], ...]
    assignments: tuple[AssignmentRecord, ...]
    total_cost: int
    overcrowd_penalty: int
    initial_cost: int
    lower_bound: int
    infeasible_patient_ids: tuple[int, ...]
    construction_attempts: int
    termination_reason: str
    iterations: int
    random_seed: int
    elapsed_seconds: float
