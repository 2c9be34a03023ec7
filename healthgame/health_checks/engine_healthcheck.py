from __future__ import annotations
from typing import Any, Dict

HEALTH_USER = "__health__"


async def engine_healthcheck(repo: Any) -> Dict[str, Any]:
    checks: Dict[str, Any] = {"events": False, "ledger": False, "levels": False, "feeding": False}

    try:
        events = await repo.list_events(HEALTH_USER, statuses=("pending",))
        if isinstance(events, list):
            checks["events"] = True
    except Exception as e:
        checks["events_error"] = str(e)

    try:
        await repo.get_ledger(HEALTH_USER)
        checks["ledger"] = True
    except Exception as e:
        checks["ledger_error"] = str(e)

    try:
        await repo.get_level(HEALTH_USER, None)
        checks["levels"] = True
    except Exception as e:
        checks["levels_error"] = str(e)

    try:
        schedules = await repo.list_active_feeding_schedules(HEALTH_USER)
        if isinstance(schedules, list):
            checks["feeding"] = True
    except Exception as e:
        checks["feeding_error"] = str(e)

    ok = all(v for k, v in checks.items() if not k.endswith("_error"))
    return {"ok": ok, "checks": checks}
