from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from healthgame.routes.deps import get_engine
from healthgame.services.game_engine import GameEngine
from healthgame.services.status.emotion_deriver import HealthSignals
from healthgame.utils.envelope import ok

router = APIRouter(prefix="/status", tags=["status"])


class HealthSignalsIn(BaseModel):
    health_score: float = Field(default=0, ge=0, le=100)
    health_status: str = "good"  # excellent | good | fair | needs_attention
    has_disease: bool = False
    meals: Dict[str, Optional[float]] = {}
    daily_calorie_goal: Optional[float] = None
    current_calories: Optional[float] = None
    sleep_minutes: Optional[float] = None
    steps: Optional[int] = None
    missed_medications: int = 0
    urgent_reminders: int = 0
    health_score_delta: Optional[float] = None
    has_positive_notifications: bool = False


@router.post("/derive")
async def derive(payload: HealthSignalsIn, engine: GameEngine = Depends(get_engine)):
    status = engine.derive_status(HealthSignals.from_dict(payload.model_dump()))
    return ok(status.to_dict())
