"""
app.py — FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.controllers.demand_controller import router as demand_router
from backend.controllers.negotiation_controller import router as negotiation_router
from backend.controllers.pricing_controller import router as pricing_router
from backend.domain.models import NegotiationStatus
from backend.repository.data_repository import DataRepository
from backend.repository.market_data_gateway import build_market_data_gateway
from backend.repository.observation_store import ObservationStore
from backend.services.demand_service import DemandPredictionService
from backend.services.negotiation_service import NegotiationCoordinator
from backend.services.pattern_service import DemandPatternService
from backend.services.pricing_service import DynamicPricingService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import configure_logging, get_logger
from backend.utils.randomness import build_random_source


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    Every dependency is traceable from this function.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    # One seeded source shared by the simulated feeds and the services.
    rng = build_random_source(settings.random_seed)

    # --- Repository layer ---
    repository = DataRepository(settings)
    observation_store = ObservationStore(settings=settings)
    gateway = build_market_data_gateway(settings=settings, rng=rng)

    # --- Services ---
    pattern_service = DemandPatternService(store=observation_store, settings=settings)
    demand_service = DemandPredictionService(
        store=observation_store,
        gateway=gateway,
        settings=settings,
        rng=rng,
        pattern_service=pattern_service,
    )
    pricing_service = DynamicPricingService(
        gateway=gateway,
        repository=repository,
        settings=settings,
        rng=rng,
    )
    negotiation_coordinator = NegotiationCoordinator(
        pricing_service=pricing_service,
        repository=repository,
        settings=settings,
        rng=rng,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield
        app.state.negotiation_coordinator.shutdown()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(pricing_router)
    app.include_router(demand_router)
    app.include_router(negotiation_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, object]:
        return {
            "status": "ok",
            "version": settings.app_version,
            "gateway_mode": settings.gateway_mode,
            "observations": len(observation_store),
            "active_negotiations": len(negotiation_coordinator.list_sessions(NegotiationStatus.ACTIVE)),
        }

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.observation_store = observation_store
    app.state.gateway = gateway
    app.state.demand_service = demand_service
    app.state.pattern_service = pattern_service
    app.state.pricing_service = pricing_service
    app.state.negotiation_coordinator = negotiation_coordinator

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Order matters:
      1. Schema must exist before any recommendation is cached.
      2. Observation history is seeded only when empty, so predictions have
         matching hours from the first request on.
    """
    repository: DataRepository = app.state.repository
    observation_store: ObservationStore = app.state.observation_store

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    logger.info("Startup: seeding synthetic demand history (skipped if store not empty)")
    observation_store.seed_synthetic_history()

    logger.info("Startup complete | gateway_mode=%s", app.state.settings.gateway_mode)


# Module-level app object for uvicorn
app = create_app()
