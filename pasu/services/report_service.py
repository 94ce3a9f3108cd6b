"""Tabular and plain-text views of a finished schedule."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pandas as pd

from pasu.domain.models import Instance, ScheduleResult
from pasu.services.solution import status_on
from pasu.utils.logger import get_logger


logger = get_logger(__name__)

_ASSIGNMENT_COLUMNS = [
    "patient_id",
    "patient_name",
    "admission_day",
    "transfer_day",
    "discharge_day",
    "room_before",
    "room_after",
    "delay",
    "cost",
]


def schedule_frame(instance: Instance, result: ScheduleResult) -> pd.DataFrame:
    """Patient x day grid of room indices; unassigned cells are <NA>."""
    frame = pd.DataFrame(
        list(result.schedule),
        index=[patient.name for patient in instance.patients],
        columns=[f"day_{day}" for day in range(instance.horizon)],
    )
    return frame.astype("Int64")


def assignment_frame(result: ScheduleResult) -> pd.DataFrame:
    frame = pd.DataFrame(
        [
            {
                "patient_id": record.patient_id,
                "patient_name": record.patient_name,
                "admission_day": record.admission_day,
                "transfer_day": record.transfer_day,
                "discharge_day": record.discharge_day,
                "room_before": record.room_before,
                "room_after": record.room_after,
                "delay": record.delay,
                "cost": record.cost,
            }
            for record in result.assignments
        ],
        columns=_ASSIGNMENT_COLUMNS,
    )
    if frame.empty:
        return frame
    for column in ("admission_day", "transfer_day", "discharge_day", "room_before", "room_after"):
        frame[column] = frame[column].astype("Int64")
    return frame


def occupancy_frame(instance: Instance, result: ScheduleResult) -> pd.DataFrame:
    """Room x day count of occupied beds, with each room's capacity alongside."""
    grid = schedule_frame(instance, result)
    counts = {
        column: grid[column].value_counts().reindex(range(instance.num_rooms), fill_value=0)
        for column in grid.columns
    }
    frame = pd.DataFrame(counts).fillna(0).astype(int)
    frame.index = [room.name for room in instance.rooms]
    frame.insert(0, "capacity", [room.capacity for room in instance.rooms])
    return frame


def summarize(result: ScheduleResult) -> dict[str, Any]:
    placed = sum(1 for record in result.assignments if record.placed)
    transfers = sum(1 for record in result.assignments if record.transfer_day is not None)
    delayed = sum(1 for record in result.assignments if record.delay > 0)
    gap = result.total_cost - result.lower_bound
    return {
        "instance": result.instance_name,
        "total_cost": result.total_cost,
        "initial_cost": result.initial_cost,
        "lower_bound": result.lower_bound,
        "gap": gap,
        "overcrowd_penalty": result.overcrowd_penalty,
        "patients_placed": placed,
        "patients_infeasible": len(result.infeasible_patient_ids),
        "transfers": transfers,
        "delayed_patients": delayed,
        "construction_attempts": result.construction_attempts,
        "iterations": result.iterations,
        "termination_reason": result.termination_reason,
        "random_seed": result.random_seed,
        "elapsed_seconds": round(result.elapsed_seconds, 3),
    }


def render_text(instance: Instance, result: ScheduleResult) -> str:
    """One ``Pat_<id> [<final status>]  r r - ...`` line per patient, then the total."""
    last_day = instance.horizon - 1
    lines: list[str] = []
    for patient, row, record in zip(instance.patients, result.schedule, result.assignments):
        tag = status_on(patient, last_day, record.admission_day, record.discharge_day)
        cells = " ".join("-" if room is None else str(room) for room in row)
        lines.append(f"Pat_{patient.patient_id} [{int(tag)}]  {cells} ")
    lines.append(f"Total Cost = {result.total_cost}")
    return "\n".join(lines) + "\n"


def write_report(instance: Instance, result: ScheduleResult, path: Path | str) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(render_text(instance, result), encoding="utf-8")
    logger.info("Schedule report written | instance=%s | path=%s", result.instance_name, target)
    return target
