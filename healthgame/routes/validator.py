from typing import Optional

from fastapi import APIRouter, Depends

from healthgame.routes.deps import get_engine, parse_member
from healthgame.services.game_engine import GameEngine
from healthgame.utils.envelope import ok

router = APIRouter(prefix="/validator", tags=["validator"])


@router.get("/{user_id}")
async def validate_user(user_id: str, member_id: Optional[str] = None, engine: GameEngine = Depends(get_engine)):
    report = await engine.validate_user(user_id, parse_member(member_id))
    return ok(report.to_dict())
