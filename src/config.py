# src/config.py
"""
Runtime settings for the ranking engine.

Values come from the environment; `.env` and `.env.local` are loaded first
(never overriding variables already exported in the shell).

Supabase credentials are NOT required at import time: tests and the pure
ranking modules never need them. `require_supabase_credentials()` fails fast
with an explicit list of what is missing when a client is actually built.
"""
from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_RANKINGS_TABLE = "course_rankings"
DEFAULT_REVIEWS_TABLE = "reviews"
DEFAULT_WRITE_MAX_ATTEMPTS = 3
DEFAULT_WRITE_BASE_SLEEP = 0.5


@dataclass(frozen=True)
class RankingSettings:
    supabase_url: str | None = None
    supabase_key: str | None = None
    rankings_table: str = DEFAULT_RANKINGS_TABLE
    reviews_table: str = DEFAULT_REVIEWS_TABLE
    write_max_attempts: int = DEFAULT_WRITE_MAX_ATTEMPTS
    write_base_sleep: float = DEFAULT_WRITE_BASE_SLEEP


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def load_settings() -> RankingSettings:
    load_dotenv(".env")
    load_dotenv(".env.local")

    url = os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL")
    key = (
        os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        or os.getenv("SUPABASE_SERVICE_KEY")
        or os.getenv("SUPABASE_ANON_KEY")
        or os.getenv("NEXT_PUBLIC_SUPABASE_ANON_KEY")
    )

    attempts = _env_int("RANKING_WRITE_MAX_ATTEMPTS", DEFAULT_WRITE_MAX_ATTEMPTS)
    if attempts < 1:
        raise ValueError("RANKING_WRITE_MAX_ATTEMPTS must be >= 1")

    return RankingSettings(
        supabase_url=url,
        supabase_key=key,
        rankings_table=os.getenv("RANKINGS_TABLE") or DEFAULT_RANKINGS_TABLE,
        reviews_table=os.getenv("REVIEWS_TABLE") or DEFAULT_REVIEWS_TABLE,
        write_max_attempts=attempts,
        write_base_sleep=_env_float("RANKING_WRITE_BASE_SLEEP", DEFAULT_WRITE_BASE_SLEEP),
    )


def require_supabase_credentials(settings: RankingSettings) -> tuple[str, str]:
    """Return (url, key) or raise with every missing variable named."""
    missing: list[str] = []
    if not settings.supabase_url:
        missing.append("SUPABASE_URL (or NEXT_PUBLIC_SUPABASE_URL)")
    if not settings.supabase_key:
        missing.append(
            "SUPABASE_SERVICE_ROLE_KEY (preferred) or SUPABASE_ANON_KEY / NEXT_PUBLIC_SUPABASE_ANON_KEY"
        )
    if missing:
        raise RuntimeError(
            "Missing Supabase env vars: "
            + ", ".join(missing)
            + ".\n"
            + "Fix: ensure .env or .env.local contains these keys, or export them in your shell."
        )
    return settings.supabase_url, settings.supabase_key  # type: ignore[return-value]
