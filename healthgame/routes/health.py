from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from healthgame.health_checks.engine_healthcheck import engine_healthcheck
from healthgame.routes.deps import get_engine
from healthgame.services.game_engine import GameEngine


router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health_root():
    return {"ok": True}


@router.get("/engine")
async def health_engine(engine: GameEngine = Depends(get_engine)):
    res = await engine_healthcheck(engine.repo)
    return JSONResponse(content=res, status_code=200 if res.get("ok") else 503)
