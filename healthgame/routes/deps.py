from typing import Optional

from fastapi import Request

from healthgame.services.events.event_types import SELF_MEMBER_KEY
from healthgame.services.game_engine import GameEngine


def get_engine(request: Request) -> GameEngine:
    return request.app.state.engine


def parse_member(member_id: Optional[str]) -> Optional[str]:
    """Query/body member id: empty or "self" means the user themselves."""
    if member_id is None or member_id == "" or member_id == SELF_MEMBER_KEY:
        return None
    return member_id
