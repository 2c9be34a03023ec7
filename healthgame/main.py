# healthgame/main.py
import logging
from typing import Any, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI

from healthgame import __version__
from healthgame.db import get_supabase
from healthgame.jobs.event_job import register_event_job
from healthgame.repositories.engine_repository import SupabaseEngineRepository
from healthgame.repositories.memory_repository import InMemoryEngineRepository
from healthgame.routes.cron import router as cron_router
from healthgame.routes.events import router as events_router
from healthgame.routes.feeding import router as feeding_router
from healthgame.routes.health import router as health_router
from healthgame.routes.status import router as status_router
from healthgame.routes.validator import router as validator_router
from healthgame.services.game_engine import GameEngine
from healthgame.settings import EngineSettings
from healthgame.utils.error_handlers import install_error_handlers
from healthgame.utils.timeutil import Clock, utcnow

log = logging.getLogger("healthgame.main")


def build_repository(settings: EngineSettings) -> Any:
    sb = get_supabase(settings)
    if sb is None:
        log.warning("Supabase not configured, using in-memory storage")
        return InMemoryEngineRepository()
    return SupabaseEngineRepository(sb)


def create_app(
    settings: Optional[EngineSettings] = None,
    repo: Any = None,
    clock: Clock = utcnow,
) -> FastAPI:
    settings = settings or EngineSettings.from_env()
    logging.basicConfig(level=settings.log_level)

    app = FastAPI(
        title="Health Game Engine",
        version=__version__,
        description="Health triggers to scheduled game events, rewards and character progression",
    )
    app.state.settings = settings
    app.state.engine = GameEngine(repo if repo is not None else build_repository(settings), settings, clock=clock)
    app.state.scheduler = None

    # -------------------------------------------------------------------
    # Error handling (stable envelopes, no stack leaks)
    # -------------------------------------------------------------------
    install_error_handlers(app)

    # -------------------------------------------------------------------
    # Routers
    # -------------------------------------------------------------------
    app.include_router(health_router)
    app.include_router(events_router)
    app.include_router(feeding_router)
    app.include_router(cron_router)
    app.include_router(validator_router)
    app.include_router(status_router)

    # -------------------------------------------------------------------
    # Root
    # -------------------------------------------------------------------
    @app.get("/")
    async def root():
        return {
            "status": "Health Game Engine Online",
            "version": __version__,
            "routes": [
                "/health",
                "/events",
                "/feeding",
                "/cron",
                "/validator",
                "/status",
            ],
        }

    # -------------------------------------------------------------------
    # Startup / shutdown (background batch only when enabled)
    # -------------------------------------------------------------------
    @app.on_event("startup")
    async def startup_event():
        if not settings.scheduler_enabled:
            log.info("Health game engine starting, background scheduler disabled")
            return
        scheduler = AsyncIOScheduler(timezone=settings.timezone)
        register_event_job(scheduler, app.state.engine, settings.scheduler_interval_minutes)
        scheduler.start()
        app.state.scheduler = scheduler
        log.info("Health game engine starting, batch every %s minutes", settings.scheduler_interval_minutes)

    @app.on_event("shutdown")
    async def shutdown_event():
        if app.state.scheduler is not None:
            app.state.scheduler.shutdown(wait=False)

    return app


app = create_app()
