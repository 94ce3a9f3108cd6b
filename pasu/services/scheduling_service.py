"""Orchestration of construction and tabu search into a schedule result."""

from __future__ import annotations

import time
from dataclasses import replace
from typing import Callable, Iterable, Mapping, Optional

import numpy as np

from pasu.domain.constraints import (
    PenaltyWeights,
    SchedulingConfig,
    validate_scheduling_config,
)
from pasu.domain.models import Instance, ScheduleResult
from pasu.repository.instance_repository import InstanceRepository
from pasu.services.construction_service import ConstructiveBuilder
from pasu.services.cost_model import build_cost_tables, compute_lower_bound
from pasu.services.neighborhood import NeighborhoodGenerator
from pasu.services.tabu_search import TabuSearchController
from pasu.utils.config import Settings, get_settings
from pasu.utils.logger import get_logger


logger = get_logger(__name__)


def config_from_settings(settings: Settings) -> SchedulingConfig:
    return SchedulingConfig(
        penalty_weights=PenaltyWeights(
            preferred_property=settings.weight_preferred_property,
            preference=settings.weight_preference,
            specialism=settings.weight_specialism,
            gender=settings.weight_gender,
            transfer=settings.weight_transfer,
            delay=settings.weight_delay,
            overcrowd_risk=settings.weight_overcrowd_risk,
        ),
        construction_retry_budget=settings.construction_retry_budget,
        search_iteration_cap=settings.search_iteration_cap,
        search_time_budget_seconds=settings.search_time_budget_seconds,
        tabu_tenure=settings.tabu_tenure,
        random_seed=settings.random_seed,
        neighborhood_sample_size=settings.neighborhood_sample_size,
        swap_min_overlap_days=settings.swap_min_overlap_days,
        search_stall_limit=settings.search_stall_limit,
    )


def solve_instance(
    instance: Instance,
    config: SchedulingConfig,
    should_stop: Optional[Callable[[int, int], bool]] = None,
) -> ScheduleResult:
    """Run one isolated construction + search pass for ``config.random_seed``."""
    validate_scheduling_config(config)
    started = time.monotonic()
    weights = config.penalty_weights
    tables = build_cost_tables(instance, weights)
    lower_bound = compute_lower_bound(instance, tables)
    rng = np.random.default_rng(config.random_seed)

    builder = ConstructiveBuilder(
        instance,
        tables,
        weights,
        retry_budget=config.construction_retry_budget,
        rng=rng,
    )
    construction = builder.build()

    controller = TabuSearchController(
        NeighborhoodGenerator(tables, swap_min_overlap_days=config.swap_min_overlap_days),
        rng=rng,
        iteration_cap=config.search_iteration_cap,
        time_budget_seconds=config.search_time_budget_seconds,
        tabu_tenure=config.tabu_tenure,
        sample_size=config.neighborhood_sample_size,
        stall_limit=config.search_stall_limit,
    )
    outcome = controller.run(construction.solution, should_stop=should_stop)
    best = outcome.best

    return ScheduleResult(
        instance_name=instance.name,
        schedule=best.schedule(),
        assignments=best.assignment_records(),
        total_cost=outcome.best_cost,
        overcrowd_penalty=best.overcrowd_penalty(),
        initial_cost=outcome.initial_cost,
        lower_bound=lower_bound,
        infeasible_patient_ids=construction.infeasible_patient_ids,
        construction_attempts=construction.attempts,
        termination_reason=outcome.termination_reason.value,
        iterations=outcome.iterations,
        random_seed=config.random_seed,
        elapsed_seconds=time.monotonic() - started,
    )


class PatientSchedulingService:
    """Entry point used by controllers and scripts to schedule an instance."""

    def __init__(
        self,
        repository: Optional[InstanceRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or InstanceRepository(self._settings)

    @property
    def repository(self) -> InstanceRepository:
        return self._repository

    def build_config(self, **overrides: object) -> SchedulingConfig:
        """Settings-derived config with any non-None keyword overrides applied.

        ``penalty_weights`` may be a mapping of just the weights to change.
        """
        config = config_from_settings(self._settings)
        chosen = {key: value for key, value in overrides.items() if value is not None}
        weights = chosen.get("penalty_weights")
        if isinstance(weights, Mapping):
            chosen["penalty_weights"] = replace(config.penalty_weights, **weights)
        if chosen:
            config = replace(config, **chosen)
        validate_scheduling_config(config)
        return config

    def schedule(
        self,
        instance: Instance,
        *,
        config: Optional[SchedulingConfig] = None,
        restarts: Optional[int] = None,
    ) -> ScheduleResult:
        resolved = config or self.build_config()
        runs = restarts if restarts is not None else self._settings.multistart_runs
        if runs <= 0:
            raise ValueError("restarts must be > 0")
        if runs == 1:
            result = solve_instance(instance, resolved)
        else:
            seeds = [resolved.random_seed + offset for offset in range(runs)]
            result = self.solve_multistart(instance, resolved, seeds)

        logger.info(
            (
                "Scheduling completed | instance=%s | total_cost=%s | lower_bound=%s | "
                "initial_cost=%s | reason=%s | infeasible_patients=%s"
            ),
            result.instance_name,
            result.total_cost,
            result.lower_bound,
            result.initial_cost,
            result.termination_reason,
            len(result.infeasible_patient_ids),
        )
        return result

    def schedule_named(self, name: str, **overrides: object) -> ScheduleResult:
        restarts = overrides.pop("restarts", None)
        instance = self._repository.load(name)
        return self.schedule(instance, config=self.build_config(**overrides), restarts=restarts)

    def solve_multistart(
        self,
        instance: Instance,
        config: SchedulingConfig,
        seeds: Iterable[int],
    ) -> ScheduleResult:
        """Independent runs share no solution, calendar or tabu memory; cheapest wins."""
        best: Optional[ScheduleResult] = None
        for seed in seeds:
            result = solve_instance(instance, replace(config, random_seed=seed))
            logger.info("Multistart run finished | seed=%s | cost=%s", seed, result.total_cost)
            if best is None or result.total_cost < best.total_cost:
                best = result
        if best is None:
            raise ValueError("at least one seed is required")
        return best
