from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from pasu.controllers.schedule_controller import router
from pasu.domain.constraints import validate_instance
from pasu.domain.models import Gender, GenderPolicy
from pasu.repository.instance_repository import (
    InstanceNotFoundError,
    InstanceRepository,
    parse_instance,
)
from pasu.services.construction_service import ConstructionExhaustedError
from pasu.services.scheduling_service import (
    PatientSchedulingService,
    config_from_settings,
    solve_instance,
)
from pasu.utils.config import get_settings


SAMPLE_PATH = Path(__file__).resolve().parents[1] / "data" / "instances" / "small_sample.pasu"

OVERFULL_INSTANCE = """\
Departments: 1
Rooms: 1
Features: 1
Patients: 2
Specialisms: 1
Horizon: 3
DEPARTMENTS
Dep_0 - (0) -
ROOMS
Room_0 1 0 Mix -
PATIENTS
Pat_0 40 Ma (0, 0, 3, 0, <= 0) 0 * -
Pat_1 41 Fe (0, 0, 3, 0, <= 0) 0 * -
END.
"""


def _build_test_settings(**overrides):
    base = get_settings()
    defaults = {
        "search_iteration_cap": 40,
        "search_time_budget_seconds": 20.0,
        "construction_retry_budget": 200,
        "neighborhood_sample_size": 20,
        "random_seed": 3,
    }
    defaults.update(overrides)
    return replace(base, **defaults)


def _build_test_app(settings) -> FastAPI:
    repository = InstanceRepository(settings)
    app = FastAPI()
    app.include_router(router)
    app.state.repository = repository
    app.state.scheduling_service = PatientSchedulingService(repository=repository, settings=settings)
    return app


def test_config_from_settings_carries_weights_and_budgets() -> None:
    settings = _build_test_settings(weight_transfer=7, tabu_tenure=4)
    config = config_from_settings(settings)

    assert config.penalty_weights.transfer == 7
    assert config.tabu_tenure == 4
    assert config.construction_retry_budget == 200


def test_solve_instance_returns_consistent_result(sample_instance, scheduling_config) -> None:
    result = solve_instance(sample_instance, scheduling_config)

    assert result.instance_name == "small_sample"
    assert result.total_cost <= result.initial_cost
    assert result.lower_bound >= 0
    assert len(result.schedule) == sample_instance.num_patients
    assert all(len(row) == sample_instance.horizon for row in result.schedule)
    assert sum(record.cost for record in result.assignments) + result.overcrowd_penalty == result.total_cost
    assert result.random_seed == scheduling_config.random_seed


def test_same_seed_same_result(sample_instance, scheduling_config) -> None:
    first = solve_instance(sample_instance, scheduling_config)
    second = solve_instance(sample_instance, scheduling_config)

    assert first.schedule == second.schedule
    assert first.total_cost == second.total_cost


def test_delaying_to_the_horizon_never_beats_the_lower_bound(
    instance_factory, room_factory, patient_factory, scheduling_config
) -> None:
    instance = instance_factory(
        [room_factory(0, policy=GenderPolicy.MALE_ONLY)],
        [patient_factory(0, gender=Gender.FEMALE, max_admission_day=2)],
        horizon=3,
    )

    result = solve_instance(instance, scheduling_config)

    assert result.lower_bound == 150
    assert result.total_cost >= result.lower_bound
    assert result.total_cost == result.assignments[0].cost


def test_build_config_applies_only_given_overrides() -> None:
    service = PatientSchedulingService(settings=_build_test_settings())

    config = service.build_config(random_seed=99, tabu_tenure=None)

    assert config.random_seed == 99
    assert config.tabu_tenure == get_settings().tabu_tenure
    with pytest.raises(ValueError):
        service.build_config(search_time_budget_seconds=0.0)


def test_build_config_merges_partial_penalty_weights() -> None:
    service = PatientSchedulingService(settings=_build_test_settings())

    config = service.build_config(penalty_weights={"gender": 5}, search_stall_limit=4)

    assert config.penalty_weights.gender == 5
    assert config.penalty_weights.transfer == get_settings().weight_transfer
    assert config.search_stall_limit == 4


def test_multistart_keeps_cheapest_run(sample_instance, scheduling_config) -> None:
    service = PatientSchedulingService(settings=_build_test_settings())
    seeds = [1, 2, 3]

    best = service.solve_multistart(sample_instance, scheduling_config, seeds)
    costs = [
        solve_instance(sample_instance, replace(scheduling_config, random_seed=seed)).total_cost
        for seed in seeds
    ]

    assert best.total_cost == min(costs)
    assert best.random_seed in seeds


def test_schedule_named_loads_from_repository() -> None:
    service = PatientSchedulingService(settings=_build_test_settings())

    result = service.schedule_named("small_sample", restarts=2, search_iteration_cap=10)

    assert result.instance_name == "small_sample"
    assert result.iterations <= 10
    with pytest.raises(InstanceNotFoundError):
        service.schedule_named("missing")


def test_overfull_instance_exhausts_construction() -> None:
    instance = parse_instance(OVERFULL_INSTANCE, name="overfull")
    validate_instance(instance)
    service = PatientSchedulingService(settings=_build_test_settings(construction_retry_budget=5))

    with pytest.raises(ConstructionExhaustedError):
        service.schedule(instance)


# --- HTTP surface ---

def test_health_and_instance_listing() -> None:
    client = TestClient(_build_test_app(_build_test_settings()))

    health = client.get("/health")
    assert health.status_code == 200
    assert health.json()["status"] == "ok"

    listing = client.get("/instances")
    assert listing.status_code == 200
    assert "small_sample" in listing.json()["instances"]


def test_schedule_endpoint_with_inline_instance() -> None:
    client = TestClient(_build_test_app(_build_test_settings()))

    response = client.post(
        "/schedule",
        json={
            "instance_text": SAMPLE_PATH.read_text(encoding="utf-8"),
            "instance_name": "inline",
            "random_seed": 5,
            "search_iteration_cap": 20,
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["instance_name"] == "inline"
    assert body["random_seed"] == 5
    assert len(body["assignments"]) == 12
    assert body["report"].endswith(f"Total Cost = {body['total_cost']}\n")


def test_schedule_stored_instance_without_body() -> None:
    client = TestClient(_build_test_app(_build_test_settings()))

    response = client.post("/instances/small_sample/schedule")

    assert response.status_code == 200
    assert response.json()["instance_name"] == "small_sample"


def test_schedule_endpoint_error_mapping() -> None:
    client = TestClient(_build_test_app(_build_test_settings(construction_retry_budget=3)))

    malformed = client.post("/schedule", json={"instance_text": "Departments: 1\n"})
    assert malformed.status_code == 422

    overfull = client.post("/schedule", json={"instance_text": OVERFULL_INSTANCE})
    assert overfull.status_code == 409

    missing = client.post("/instances/absent/schedule")
    assert missing.status_code == 404

    invalid_override = client.post(
        "/schedule",
        json={"instance_text": OVERFULL_INSTANCE, "tabu_tenure": 0},
    )
    assert invalid_override.status_code == 422


def test_schedule_endpoint_accepts_weight_and_search_overrides() -> None:
    client = TestClient(_build_test_app(_build_test_settings()))
    zero_weights = {
        "preferred_property": 0,
        "preference": 0,
        "specialism": 0,
        "gender": 0,
        "transfer": 0,
        "delay": 0,
        "overcrowd_risk": 0,
    }

    response = client.post(
        "/instances/small_sample/schedule",
        json={
            "penalty_weights": zero_weights,
            "swap_min_overlap_days": 2,
            "search_stall_limit": 5,
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["total_cost"] == 0
    assert body["lower_bound"] == 0

    negative = client.post(
        "/instances/small_sample/schedule",
        json={"penalty_weights": {"transfer": -1}},
    )
    assert negative.status_code == 422
