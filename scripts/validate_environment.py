#!/usr/bin/env python3
"""Validate local telemetry core environment readiness."""

from __future__ import annotations

import asyncio
import importlib
import sys
from dataclasses import replace
from datetime import date
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import numpy as np

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from enrollment_telemetry.domain.models import DEFAULT_CENTER_SEEDS, DataMode
from enrollment_telemetry.services.arbitrator import DataSourceArbitrator
from enrollment_telemetry.services.forecast_service import forecast_demand
from enrollment_telemetry.services.telemetry_simulator import CenterTelemetrySimulator
from enrollment_telemetry.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


async def _bootstrap_simulated() -> int:
    settings = replace(get_settings(), data_mode="simulated", simulation_tick_seconds=3600.0)
    arbitrator = DataSourceArbitrator(settings)
    try:
        await arbitrator.initialize(DataMode.SIMULATED)
        arbitrator.tick()
        return len(arbitrator.state.live_updates)
    finally:
        await arbitrator.shutdown()


def main() -> int:
    results: list[str] = []
    all_passed = True

    # CHECK 1: Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
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
        ("websockets", "websockets"),
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
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 3: Synthetic history and forecast
    simulator = CenterTelemetrySimulator(rng=np.random.default_rng(7))
    try:
        history = simulator.generate_history(start=date(2025, 1, 1), days=90)
        predictions = forecast_demand(history, 7, rng=np.random.default_rng(7))
        if len(predictions) != 7:
            raise RuntimeError(f"expected 7 predictions, got {len(predictions)}")
        ok, line = _print_result(
            "Forecast",
            True,
            f": {len(history)} days -> {len(predictions)} predictions",
        )
    except Exception as exc:
        ok, line = _print_result("Forecast", False, str(exc))
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 4: Center seeding
    try:
        centers = simulator.seed(DEFAULT_CENTER_SEEDS)
        ok, line = _print_result("Center seeding", True, f": {len(centers)} centers")
    except Exception as exc:
        ok, line = _print_result("Center seeding", False, str(exc))
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 5: Simulated bootstrap and one tick
    try:
        recorded = asyncio.run(_bootstrap_simulated())
        ok, line = _print_result("Simulated bootstrap", True, f": {recorded} live update(s)")
    except Exception as exc:
        ok, line = _print_result("Simulated bootstrap", False, str(exc))
    results.append(line)
    all_passed = all_passed and ok

    print(SEPARATOR_LINE)
    print(" Telemetry Core Environment Validation")
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
