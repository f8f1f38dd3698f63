from __future__ import annotations

from supabase import create_client, Client

from src.config import RankingSettings, load_settings, require_supabase_credentials


def get_supabase_client(settings: RankingSettings | None = None) -> Client:
    url, key = require_supabase_credentials(settings or load_settings())
    return create_client(url, key)
