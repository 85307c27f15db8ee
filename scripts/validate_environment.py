#!/usr/bin/env python3
"""Validate local pricing engine environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sys
import tempfile
from dataclasses import replace
from importlib.metadata import version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.domain.models import NegotiationParty, NegotiationStatus
from backend.repository.data_repository import DataRepository
from backend.repository.market_data_gateway import SimulatedMarketDataGateway
from backend.repository.observation_store import ObservationStore
from backend.services.demand_service import DemandPredictionService
from backend.services.negotiation_service import NegotiationCoordinator
from backend.services.pricing_service import DynamicPricingService
from backend.utils.config import get_settings
from backend.utils.randomness import build_random_source

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="pricing-env-")

    # CHECK 1 — Python version >= 3.11
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

    # CHECK 2 — Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("pandas", "pandas"),
        ("requests", "requests"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except Exception as exc:  # pragma: no cover - runtime guard
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

    try:
        validation_settings = replace(
            get_settings(),
            database_path=Path(temp_dir) / "pricing_validation.db",
            random_seed=7,
        )
        repository = DataRepository(validation_settings)
        rng = build_random_source(validation_settings.random_seed)
        gateway = SimulatedMarketDataGateway(rng=rng, settings=validation_settings)

        # CHECK 3 — Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4 — Synthetic observation history
        store = ObservationStore(settings=validation_settings)
        try:
            created = store.seed_synthetic_history()
            if len(store) != min(created, store.capacity):
                raise RuntimeError(f"expected {min(created, store.capacity)} retained, got {len(store)}")
            ok, line = _print_result("Synthetic history", True, f": {len(store)} observations")
        except Exception as exc:
            ok, line = _print_result("Synthetic history", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5 — Demand prediction
        try:
            demand_service = DemandPredictionService(
                store=store,
                gateway=gateway,
                settings=validation_settings,
                rng=rng,
            )
            prediction = demand_service.predict_demand("Dubai")
            if not 0.0 <= prediction.predicted_demand <= 100.0:
                raise RuntimeError("predicted demand out of [0,100] bounds")
            ok, line = _print_result(
                "Demand prediction",
                True,
                f": demand={prediction.predicted_demand:.2f} confidence={prediction.confidence:.0f}",
            )
        except Exception as exc:
            ok, line = _print_result("Demand prediction", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6 — Price optimization
        pricing_service = DynamicPricingService(
            gateway=gateway,
            repository=repository,
            settings=validation_settings,
            rng=rng,
        )
        try:
            recommendation = pricing_service.calculate_optimal_price("validation-trip", 100.0)
            if not 70.0 <= recommendation.recommended_price <= 300.0:
                raise RuntimeError("recommended price outside surge bounds")
            ok, line = _print_result(
                "Price optimization",
                True,
                f": price={recommendation.recommended_price:.2f}",
            )
        except Exception as exc:
            ok, line = _print_result("Price optimization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 7 — Negotiation round trip
        try:
            coordinator = NegotiationCoordinator(
                pricing_service=pricing_service,
                repository=repository,
                settings=validation_settings,
                rng=rng,
            )
            session = coordinator.create_session(
                "validation-trip",
                100.0,
                NegotiationParty.COUNTERPARTY,
                start_timer=False,
            )
            session.make_offer(session.min_acceptable, NegotiationParty.COUNTERPARTY)
            if session.status is NegotiationStatus.ACTIVE:
                session.accept_current_offer()
            if repository.get_negotiation_outcome(session.session_id) is None:
                raise RuntimeError("negotiation outcome was not persisted")
            ok, line = _print_result(
                "Negotiation round trip",
                True,
                f": {session.status.value} at {session.current_offer:.2f}",
            )
        except Exception as exc:
            ok, line = _print_result("Negotiation round trip", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Pricing Engine Environment Validation")
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
