import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from healthgame.services.game_engine import GameEngine

log = logging.getLogger("healthgame.jobs")

JOB_ID = "schedule_game_events"


# --------------------------------------------------------
# Periodic event scheduling
#   - one batch run per interval, never overlapping
# --------------------------------------------------------

def register_event_job(scheduler: AsyncIOScheduler, engine: GameEngine, interval_minutes: int = 30):
    """
    Runs GameEngine.schedule_all_users every `interval_minutes`.
    A failing run is logged; the next tick starts a fresh batch.
    """

    async def run_batch():
        try:
            result = await engine.schedule_all_users()
        except Exception:
            log.exception("Scheduled batch failed")
            return
        log.info("Scheduled batch done %s", result.to_dict())

    scheduler.add_job(
        run_batch,
        "interval",
        minutes=interval_minutes,
        id=JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    log.info("Event job registered, interval = %s minutes.", interval_minutes)
    return run_batch
