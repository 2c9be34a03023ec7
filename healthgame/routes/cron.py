from fastapi import APIRouter, Depends, Header, HTTPException

from healthgame.routes.deps import get_engine
from healthgame.services.game_engine import GameEngine
from healthgame.utils.envelope import ok

router = APIRouter(prefix="/cron", tags=["cron"])


@router.post("/schedule-events")
async def cron_schedule_events(
    x_cron_token: str | None = Header(default=None),
    engine: GameEngine = Depends(get_engine),
):
    expected = engine.settings.cron_token
    if not expected:
        raise HTTPException(status_code=501, detail="CRON_TOKEN not configured on server.")
    if not x_cron_token or x_cron_token.strip() != expected:
        raise HTTPException(status_code=401, detail="Unauthorized (missing/invalid X-Cron-Token).")

    result = await engine.schedule_all_users()
    return ok(result.to_dict())
