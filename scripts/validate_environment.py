#!/usr/bin/env python3
"""Validate local PASU environment readiness."""

from __future__ import annotations

import importlib
import sys
from dataclasses import replace
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from pasu.repository.instance_repository import InstanceRepository
from pasu.services.report_service import render_text, summarize
from pasu.services.scheduling_service import PatientSchedulingService
from pasu.utils.config import get_settings

SEPARATOR_LINE = "=" * 44
SAMPLE_INSTANCE = "small_sample"


def _result_line(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _result_line("Python " + sys.version.split()[0], True)
    else:
        ok, line = _result_line("Python version >= 3.10", False, f"found {sys.version.split()[0]}")
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("pandas", "pandas"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _result_line(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _result_line("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    settings = replace(
        get_settings(),
        search_iteration_cap=200,
        search_time_budget_seconds=10.0,
    )
    repository = InstanceRepository(settings)

    # CHECK 3: Sample instance parses
    instance = None
    try:
        instance = repository.load(SAMPLE_INSTANCE)
        ok, line = _result_line(
            "Sample instance",
            True,
            f": {instance.num_patients} patients, {instance.num_rooms} rooms",
        )
    except Exception as exc:
        ok, line = _result_line("Sample instance", False, str(exc))
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 4: Construction + tabu search end to end
    if instance is not None:
        service = PatientSchedulingService(repository=repository, settings=settings)
        try:
            result = service.schedule(instance)
            summary = summarize(result)
            if result.total_cost > result.initial_cost:
                raise RuntimeError("best cost is worse than the initial cost")
            if not render_text(instance, result).endswith(f"Total Cost = {result.total_cost}\n"):
                raise RuntimeError("report does not end with the total cost line")
            ok, line = _result_line(
                "Scheduling run",
                True,
                f": cost={summary['total_cost']} lower_bound={summary['lower_bound']} "
                f"reason={summary['termination_reason']}",
            )
        except Exception as exc:
            ok, line = _result_line("Scheduling run", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    print(SEPARATOR_LINE)
    print(" PASU Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
