"""
Engine Settings
===============

Environment-driven configuration, read once at startup.

Every tunable of the engine lives here so that services receive explicit
values instead of reading the environment themselves.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


log = logging.getLogger("healthgame.settings")


def _bool_env(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes")


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        log.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
        return default


def _json_env(name: str) -> Optional[Dict[str, Any]]:
    raw = os.getenv(name)
    if not raw or not raw.strip():
        return None
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"{name} must be a JSON object")
    return data


@dataclass(frozen=True)
class EngineSettings:
    supabase_url: str = ""
    supabase_service_role_key: str = ""

    timezone: str = "UTC"

    # batch paging
    batch_size: int = 1000
    active_user_days: int = 30

    # trigger windows
    medication_horizon_days: int = 7
    # notifications more than this many days overdue are dropped, not back-filled
    lifecycle_lookback_days: int = 3
    lifecycle_notification_limit: int = 20

    ledger_max_attempts: int = 5
    level_experience_step: int = 1000

    scheduler_enabled: bool = False
    scheduler_interval_minutes: int = 30
    cron_token: str = ""

    reward_policy: Optional[Dict[str, Any]] = field(default=None)

    log_level: str = "INFO"

    @staticmethod
    def from_env() -> "EngineSettings":
        return EngineSettings(
            supabase_url=os.getenv("SUPABASE_URL", "").strip(),
            supabase_service_role_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip(),
            timezone=os.getenv("ENGINE_TIMEZONE", "UTC").strip() or "UTC",
            batch_size=_int_env("ENGINE_BATCH_SIZE", 1000),
            active_user_days=_int_env("ENGINE_ACTIVE_USER_DAYS", 30),
            medication_horizon_days=_int_env("MEDICATION_HORIZON_DAYS", 7),
            lifecycle_lookback_days=_int_env("LIFECYCLE_LOOKBACK_DAYS", 3),
            lifecycle_notification_limit=_int_env("LIFECYCLE_NOTIFICATION_LIMIT", 20),
            ledger_max_attempts=_int_env("LEDGER_MAX_ATTEMPTS", 5),
            level_experience_step=_int_env("LEVEL_EXPERIENCE_STEP", 1000),
            scheduler_enabled=_bool_env("SCHEDULER_ENABLED"),
            scheduler_interval_minutes=_int_env("SCHEDULER_INTERVAL_MINUTES", 30),
            cron_token=os.getenv("CRON_TOKEN", "").strip(),
            reward_policy=_json_env("REWARD_POLICY_JSON"),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        )
