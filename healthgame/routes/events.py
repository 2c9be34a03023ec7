from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from healthgame.errors import EventNotFoundError, InvalidInputError
from healthgame.routes.deps import get_engine, parse_member
from healthgame.services.events.event_types import ALL_MEMBERS
from healthgame.services.game_engine import GameEngine
from healthgame.utils.envelope import error, ok

router = APIRouter(prefix="/events", tags=["events"])

_FAILURE_STATUS = {
    EventNotFoundError.code: 404,
    InvalidInputError.code: 400,
    "conflict": 409,
}


# ===== Pydantic models =====
class UserRef(BaseModel):
    user_id: str


class CompleteEventIn(BaseModel):
    user_id: str
    points: Optional[int] = None
    experience: Optional[int] = None


# ===== Endpoints =====

@router.post("/schedule")
async def schedule_for_user(payload: UserRef, engine: GameEngine = Depends(get_engine)):
    counts = await engine.schedule_events_for_user(payload.user_id)
    return ok(counts.to_dict())


@router.get("/active")
async def active_events(
    user_id: str,
    member_id: Optional[str] = None,
    engine: GameEngine = Depends(get_engine),
):
    member = ALL_MEMBERS if member_id is None else parse_member(member_id)
    events = await engine.list_active_events(user_id, member)
    return ok([e.to_dict() for e in events], meta={"count": len(events)})


@router.post("/{event_id}/activate")
async def activate_event(event_id: str, payload: UserRef, engine: GameEngine = Depends(get_engine)):
    event = await engine.activate_event(event_id, payload.user_id)
    return ok(event.to_dict())


@router.post("/{event_id}/complete")
async def complete_event(event_id: str, payload: CompleteEventIn, engine: GameEngine = Depends(get_engine)):
    result = await engine.complete_event(
        event_id,
        payload.user_id,
        points=payload.points,
        experience=payload.experience,
    )
    if not result.success:
        code = result.error_code or "error"
        return error(result.error or "Event could not be completed", code=code, status=_FAILURE_STATUS.get(code, 400))
    return ok(result.to_dict())
