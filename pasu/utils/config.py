"""Runtime settings resolved from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    instance_directory: Path

    weight_preferred_property: int
    weight_preference: int
    weight_specialism: int
    weight_gender: int
    weight_transfer: int
    weight_delay: int
    weight_overcrowd_risk: int

    construction_retry_budget: int
    search_iteration_cap: int
    search_time_budget_seconds: float
    tabu_tenure: int
    random_seed: int
    neighborhood_sample_size: int
    swap_min_overlap_days: int
    search_stall_limit: int
    multistart_runs: int


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process; tests derive variants with replace()."""
    return Settings(
        app_name=_env_str("PASU_APP_NAME", "PASU Scheduling Engine"),
        app_version=_env_str("PASU_APP_VERSION", "1.0.0"),
        log_level=_env_str("PASU_LOG_LEVEL", "INFO"),
        instance_directory=Path(
            _env_str("PASU_INSTANCE_DIRECTORY", str(PROJECT_ROOT / "data" / "instances"))
        ),
        weight_preferred_property=_env_int("PASU_WEIGHT_PREFERRED_PROPERTY", 20),
        weight_preference=_env_int("PASU_WEIGHT_PREFERENCE", 10),
        weight_specialism=_env_int("PASU_WEIGHT_SPECIALISM", 20),
        weight_gender=_env_int("PASU_WEIGHT_GENDER", 50),
        weight_transfer=_env_int("PASU_WEIGHT_TRANSFER", 100),
        weight_delay=_env_int("PASU_WEIGHT_DELAY", 2),
        weight_overcrowd_risk=_env_int("PASU_WEIGHT_OVERCROWD_RISK", 1),
        construction_retry_budget=_env_int("PASU_CONSTRUCTION_RETRY_BUDGET", 10_000),
        search_iteration_cap=_env_int("PASU_SEARCH_ITERATION_CAP", 2_000),
        search_time_budget_seconds=_env_float("PASU_SEARCH_TIME_BUDGET_SECONDS", 30.0),
        tabu_tenure=_env_int("PASU_TABU_TENURE", 10),
        random_seed=_env_int("PASU_RANDOM_SEED", 42),
        neighborhood_sample_size=_env_int("PASU_NEIGHBORHOOD_SAMPLE_SIZE", 60),
        swap_min_overlap_days=_env_int("PASU_SWAP_MIN_OVERLAP_DAYS", 1),
        search_stall_limit=_env_int("PASU_SEARCH_STALL_LIMIT", 0),
        multistart_runs=_env_int("PASU_MULTISTART_RUNS", 1),
    )
