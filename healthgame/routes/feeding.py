from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from healthgame.errors import EventNotFoundError
from healthgame.routes.deps import get_engine, parse_member
from healthgame.services.game_engine import GameEngine
from healthgame.utils.envelope import ok

router = APIRouter(prefix="/feeding", tags=["feeding"])


# ===== Pydantic models =====
class FeedingScheduleIn(BaseModel):
    user_id: str
    member_id: Optional[str] = None
    feeding_interval_hours: float = Field(gt=0)
    reminder_enabled: bool = True
    reminder_minutes_before: int = Field(default=10, ge=0)
    notes: Optional[str] = None


class FeedingDoneIn(BaseModel):
    user_id: str
    member_id: Optional[str] = None


# ===== Endpoints =====

@router.put("/schedule")
async def upsert_schedule(payload: FeedingScheduleIn, engine: GameEngine = Depends(get_engine)):
    schedule = await engine.upsert_feeding_schedule(
        user_id=payload.user_id,
        member_id=parse_member(payload.member_id),
        interval_hours=payload.feeding_interval_hours,
        reminder_enabled=payload.reminder_enabled,
        reminder_minutes_before=payload.reminder_minutes_before,
        notes=payload.notes,
    )
    return ok(schedule.to_row())


@router.get("/schedule")
async def get_schedule(user_id: str, member_id: Optional[str] = None, engine: GameEngine = Depends(get_engine)):
    schedule = await engine.get_feeding_schedule(user_id, parse_member(member_id))
    if schedule is None:
        raise EventNotFoundError("Feeding schedule not found")
    return ok(schedule.to_row())


@router.delete("/schedule")
async def deactivate_schedule(user_id: str, member_id: Optional[str] = None, engine: GameEngine = Depends(get_engine)):
    schedule = await engine.deactivate_feeding_schedule(user_id, parse_member(member_id))
    return ok(schedule.to_row())


@router.post("/complete")
async def feeding_done(payload: FeedingDoneIn, engine: GameEngine = Depends(get_engine)):
    schedule = await engine.record_feeding(payload.user_id, parse_member(payload.member_id))
    return ok(schedule.to_row())
