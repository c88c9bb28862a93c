import logging
from time import perf_counter
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import Engine, text
from sqlalchemy.exc import SQLAlchemyError

from .config import Settings, get_settings
from .db.base import Base
from .db.monitoring import get_pool_snapshot, instrument_engine
from .db.session import build_engine, get_engine, make_session_factory
from .developer_routes import router as developer_router
from .logging_config import configure_logging
from .performance_tracker import PerformanceTracker
from .profile_routes import router as profile_router
from .profile_service import LearningProfileService
from .profile_store import ProfileStore, build_profile_store
from .telemetry import EventBus, default_bus


logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    store: Optional[ProfileStore] = None,
    tracker: Optional[PerformanceTracker] = None,
    bus: Optional[EventBus] = None,
) -> FastAPI:
    configure_logging()
    settings = settings or get_settings()
    tracker = tracker or PerformanceTracker.from_settings(settings)
    bus = bus or default_bus

    app = FastAPI(title="LevelUp Learning Profile Backend", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    engine: Optional[Engine] = None
    if store is None:
        session_factory = None
        if settings.persistence_mode == "database" and settings.database_url:
            engine = build_engine(settings.database_url, settings)
            instrument_engine(engine, tracker)
            if settings.database_auto_create:
                Base.metadata.create_all(engine)
            session_factory = make_session_factory(engine)
        store = build_profile_store(settings, session_factory=session_factory)

    app.state.settings = settings
    app.state.engine = engine
    app.state.performance_tracker = tracker
    app.state.event_bus = bus
    app.state.profile_service = LearningProfileService.from_settings(settings, store, bus=bus, tracker=tracker)

    @app.middleware("http")
    async def time_requests(request: Request, call_next):  # type: ignore[no-untyped-def]
        if not tracker.enabled:
            return await call_next(request)
        started_at = perf_counter()
        try:
            return await call_next(request)
        finally:
            route = request.scope.get("route")
            path = getattr(route, "path", request.url.path)
            tracker.record(f"{request.method} {path}", (perf_counter() - started_at) * 1000.0, category="request")

    @app.get("/healthz")
    def health() -> Dict[str, str]:
        return {"status": "ok", "persistence_mode": settings.persistence_mode}

    @app.get("/healthz/database")
    def database_health(request: Request) -> Dict[str, Any]:
        try:
            db_engine = request.app.state.engine or get_engine()
            with db_engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except (RuntimeError, SQLAlchemyError) as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
        return {
            "status": "ok",
            "pool": get_pool_snapshot(db_engine),
            "persistence_mode": settings.persistence_mode,
        }

    app.include_router(profile_router)
    if settings.debug_surface_enabled:
        app.include_router(developer_router)
        logger.info("Developer endpoints mounted at %s", developer_router.prefix)

    logger.info("Backend starting with persistence mode: %s", settings.persistence_mode)
    return app


def get_app() -> FastAPI:
    """Factory entrypoint for ``uvicorn --factory levelup.main:get_app``."""
    return create_app()
