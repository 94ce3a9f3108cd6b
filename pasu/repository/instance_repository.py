"""Loading PASU problem instances from their text format."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from pasu.domain.constraints import validate_instance
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
from pasu.utils.config import Settings, get_settings
from pasu.utils.logger import get_logger


logger = get_logger(__name__)

INSTANCE_SUFFIX = ".pasu"

_COUNT_PATTERN = re.compile(
    r"^\s*(Departments|Rooms|Features|Patients|Specialisms|Horizon)\s*:\s*(\d+)", re.MULTILINE
)
_SECTION_PATTERN = re.compile(r"^\s*(DEPARTMENTS|ROOMS|PATIENTS|END\.)[^\n]*$", re.MULTILINE)
_TOKEN_PATTERN = re.compile(r"<=|>=|[(),*]|[^\s(),*]+")

_POLICIES = {
    "SG": GenderPolicy.SAME_GENDER,
    "Ma": GenderPolicy.MALE_ONLY,
    "Fe": GenderPolicy.FEMALE_ONLY,
}
_LEVELS = {"n": FeatureRequirement.NEEDED, "p": FeatureRequirement.PREFERRED}


class InstanceFormatError(Exception):
    """Raised when instance text cannot be parsed into a valid instance."""


class InstanceNotFoundError(LookupError):
    """Raised when a named instance file does not exist."""


class _Tokens:
    def __init__(self, text: str, section: str) -> None:
        self._tokens = _TOKEN_PATTERN.findall(text)
        self._position = 0
        self._section = section

    def peek(self) -> Optional[str]:
        if self._position >= len(self._tokens):
            return None
        return self._tokens[self._position]

    def next(self) -> str:
        token = self.peek()
        if token is None:
            raise InstanceFormatError(f"unexpected end of {self._section} section")
        self._position += 1
        return token

    def expect(self, expected: str) -> None:
        token = self.next()
        if token != expected:
            raise InstanceFormatError(
                f"expected {expected!r} in {self._section} section, found {token!r}"
            )

    def integer(self) -> int:
        token = self.next()
        if not token.isdigit():
            raise InstanceFormatError(
                f"expected a non-negative integer in {self._section} section, found {token!r}"
            )
        return int(token)

    def bound(self) -> Optional[int]:
        """``*`` for no bound, otherwise ``<= n`` or a bare ``n``."""
        if self.peek() == "*":
            self.next()
            return None
        if self.peek() == "<=":
            self.next()
        return self.integer()

    def integer_list(self) -> list[int]:
        """``(a, b, ...)`` or ``-`` for an empty list."""
        if self.peek() == "-":
            self.next()
            return []
        self.expect("(")
        values = [self.integer()]
        while self.peek() == ",":
            self.next()
            values.append(self.integer())
        self.expect(")")
        return values

    def at_end(self) -> bool:
        return self.peek() is None


def _split_sections(text: str) -> dict[str, str]:
    matches = list(_SECTION_PATTERN.finditer(text))
    sections: dict[str, str] = {}
    for index, match in enumerate(matches):
        name = match.group(1)
        if name == "END.":
            break
        end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
        sections[name] = text[match.end():end]
    for required in ("DEPARTMENTS", "ROOMS", "PATIENTS"):
        if required not in sections:
            raise InstanceFormatError(f"missing {required} section")
    return sections


def _parse_departments(tokens: _Tokens, count: int) -> list[Department]:
    departments: list[Department] = []
    for department_id in range(count):
        name = tokens.next()
        min_age = max_age = 0
        while tokens.peek() in (">=", "<="):
            if tokens.next() == ">=":
                min_age = tokens.integer()
            else:
                max_age = tokens.integer()
        if tokens.peek() == "-":
            tokens.next()
        levels = {specialism: DoctoringLevel.COMPLETE for specialism in tokens.integer_list()}
        for specialism in tokens.integer_list():
            levels.setdefault(specialism, DoctoringLevel.PARTIAL)
        departments.append(
            Department(
                department_id=department_id,
                name=name,
                min_age=min_age,
                max_age=max_age,
                specialism_levels=levels,
            )
        )
    return departments


def _parse_rooms(tokens: _Tokens, count: int) -> list[Room]:
    rooms: list[Room] = []
    for room_id in range(count):
        name = tokens.next()
        capacity = tokens.integer()
        department_id = tokens.integer()
        policy = _POLICIES.get(tokens.next(), GenderPolicy.MIXED)
        features = frozenset(tokens.integer_list())
        rooms.append(
            Room(
                room_id=room_id,
                name=name,
                capacity=capacity,
                department_id=department_id,
                policy=policy,
                features=features,
            )
        )
    return rooms


def _parse_feature_requirements(tokens: _Tokens) -> dict[int, FeatureRequirement]:
    if tokens.peek() == "-":
        tokens.next()
        return {}
    tokens.expect("(")
    requirements: dict[int, FeatureRequirement] = {}
    while True:
        feature = tokens.integer()
        level = tokens.next()
        if level not in _LEVELS:
            raise InstanceFormatError(f"unknown feature level {level!r}")
        requirements[feature] = _LEVELS[level]
        if tokens.peek() != ",":
            break
        tokens.next()
    tokens.expect(")")
    return requirements


def _parse_patients(tokens: _Tokens, count: int, horizon: int) -> list[Patient]:
    patients: list[Patient] = []
    for patient_id in range(count):
        name = tokens.next()
        age = tokens.integer()
        gender_code = tokens.next()
        if gender_code not in (Gender.MALE.value, Gender.FEMALE.value):
            raise InstanceFormatError(f"patient {name} has unknown gender {gender_code!r}")

        tokens.expect("(")
        registration = tokens.integer()
        tokens.expect(",")
        admission = tokens.integer()
        tokens.expect(",")
        discharge = tokens.integer()
        tokens.expect(",")
        variability = tokens.integer()
        tokens.expect(",")
        max_admission = tokens.bound()
        tokens.expect(")")
        if max_admission is None:
            max_admission = max(admission, horizon - (discharge - admission))

        specialism = tokens.integer()
        preferred_capacity = tokens.bound()
        requirements = _parse_feature_requirements(tokens)
        patients.append(
            Patient(
                patient_id=patient_id,
                name=name,
                age=age,
                gender=Gender(gender_code),
                registration_day=registration,
                admission_day=admission,
                discharge_day=discharge,
                max_admission_day=max_admission,
                specialism=specialism,
                variability=variability,
                preferred_capacity=preferred_capacity,
                feature_requirements=requirements,
            )
        )
    return patients


def parse_instance(text: str, name: str = "instance") -> Instance:
    counts = {key.lower(): int(value) for key, value in _COUNT_PATTERN.findall(text)}
    missing = {"departments", "rooms", "features", "patients", "specialisms", "horizon"} - set(counts)
    if missing:
        raise InstanceFormatError(f"missing header counts: {', '.join(sorted(missing))}")

    sections = _split_sections(text)
    department_tokens = _Tokens(sections["DEPARTMENTS"], "DEPARTMENTS")
    room_tokens = _Tokens(sections["ROOMS"], "ROOMS")
    patient_tokens = _Tokens(sections["PATIENTS"], "PATIENTS")

    departments = _parse_departments(department_tokens, counts["departments"])
    rooms = _parse_rooms(room_tokens, counts["rooms"])
    patients = _parse_patients(patient_tokens, counts["patients"], counts["horizon"])
    for tokens in (department_tokens, room_tokens, patient_tokens):
        if not tokens.at_end():
            raise InstanceFormatError(f"unexpected trailing token {tokens.peek()!r}")

    instance = Instance(
        name=name,
        horizon=counts["horizon"],
        num_features=counts["features"],
        num_specialisms=counts["specialisms"],
        departments=tuple(departments),
        rooms=tuple(rooms),
        patients=tuple(patients),
    )
    try:
        validate_instance(instance)
    except ValueError as exc:
        raise InstanceFormatError(str(exc)) from exc
    return instance


class InstanceRepository:
    """Reads ``*.pasu`` instance files from the configured directory."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._directory = Path(self._settings.instance_directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def list_instances(self) -> list[str]:
        if not self._directory.is_dir():
            return []
        return sorted(path.stem for path in self._directory.glob(f"*{INSTANCE_SUFFIX}"))

    def load(self, name: str) -> Instance:
        if not name or Path(name).name != name:
            raise InstanceNotFoundError(f"invalid instance name {name!r}")
        path = self._directory / f"{name}{INSTANCE_SUFFIX}"
        if not path.is_file():
            raise InstanceNotFoundError(f"instance {name!r} not found in {self._directory}")
        return self.load_path(path)

    def load_path(self, path: Path | str) -> Instance:
        source = Path(path)
        instance = parse_instance(source.read_text(encoding="utf-8"), name=source.stem)
        logger.info(
            "Instance loaded | name=%s | rooms=%s | patients=%s | horizon=%s",
            instance.name,
            instance.num_rooms,
            instance.num_patients,
            instance.horizon,
        )
        return instance
