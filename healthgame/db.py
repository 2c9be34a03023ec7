from typing import Optional

from supabase import Client, create_client

from healthgame.settings import EngineSettings


def get_supabase(settings: EngineSettings) -> Optional[Client]:
    if not (settings.supabase_url and settings.supabase_service_role_key):
        return None
    return create_client(settings.supabase_url, settings.supabase_service_role_key)
