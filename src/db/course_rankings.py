# src/db/course_rankings.py
"""
Ranking Store Adapter: read/write boundary to public.course_rankings.

Row shape (unique on user_id, course_id):
  user_id, course_id, sentiment_category, rank_position (1-based),
  relative_score DECIMAL(4,1), comparison_count

Writes go through the DB RPC:
  public.apply_course_rankings_v1(p_user_id, p_rankings jsonb,
                                  p_delete_course_ids uuid[], p_compared_course_ids uuid[])

Why RPC:
  - one call = one transaction: deletes, upserts and comparison_count bumps
    for a user land together or not at all
  - rows are parked at negative positions before the upsert, so the
    (user_id, sentiment_category, rank_position) unique constraint holds
    while positions shift
  - a failed call leaves previously committed scores untouched

Every failure is surfaced as RankingPersistenceError; `retryable` is True
only for transport drops and Postgres serialization/deadlock aborts.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Protocol, Sequence

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from src.config import DEFAULT_RANKINGS_TABLE
from src.models import CourseRanking
from src.ranking.errors import RankingPersistenceError

logger = logging.getLogger(__name__)

APPLY_RANKINGS_RPC = "apply_course_rankings_v1"

RANKING_COLUMNS = "user_id,course_id,sentiment_category,rank_position,relative_score,comparison_count"

TRANSIENT_HTTP_ERRORS: tuple[type[Exception], ...] = (
    httpx.RemoteProtocolError,
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
)

# serialization_failure, deadlock_detected
RETRYABLE_PG_CODES: frozenset[str] = frozenset({"40001", "40P01"})


class RankingStore(Protocol):
    def read_score(self, user_id: str, course_id: str) -> float | None: ...

    def read_user_rankings(self, user_id: str) -> list[CourseRanking]: ...

    def write_scores(
        self,
        user_id: str,
        rankings: Sequence[CourseRanking],
        *,
        delete_course_ids: Iterable[str] = (),
        compared_course_ids: Iterable[str] = (),
    ) -> None: ...


def _extract_postgrest_error(e: APIError) -> dict[str, Any]:
    """
    Normalize PostgREST APIError across versions.
    Older releases keep the raw dict in args[0]; newer ones expose
    .code / .message attributes (checked first by the caller).
    """
    if getattr(e, "args", None) and len(e.args) >= 1 and isinstance(e.args[0], dict):
        return e.args[0]
    return {"message": str(e)}


def to_persistence_error(e: Exception, *, action: str) -> RankingPersistenceError:
    if isinstance(e, TRANSIENT_HTTP_ERRORS):
        return RankingPersistenceError(
            f"{action} failed: transient {type(e).__name__}: {e}", retryable=True,
        )
    if isinstance(e, APIError):
        err = _extract_postgrest_error(e)
        code = str(getattr(e, "code", None) or err.get("code") or "")
        message = getattr(e, "message", None) or err.get("message")
        return RankingPersistenceError(
            f"{action} failed: code={code or '?'} message={message!r}",
            retryable=code in RETRYABLE_PG_CODES,
        )
    return RankingPersistenceError(f"{action} failed: {type(e).__name__}: {e}")


class SupabaseRankingStore:

    def __init__(self, supabase: Client, *, table: str = DEFAULT_RANKINGS_TABLE) -> None:
        self.supabase = supabase
        self.table = table

    def read_score(self, user_id: str, course_id: str) -> float | None:
        try:
            resp = (
                self.supabase.table(self.table)
                .select("relative_score")
                .eq("user_id", user_id)
                .eq("course_id", course_id)
                .limit(1)
                .execute()
            )
        except (APIError, *TRANSIENT_HTTP_ERRORS) as e:
            raise to_persistence_error(e, action="read_score") from e

        rows = resp.data or []
        if not rows or rows[0].get("relative_score") is None:
            return None
        return float(rows[0]["relative_score"])

    def read_user_rankings(self, user_id: str) -> list[CourseRanking]:
        try:
            resp = (
                self.supabase.table(self.table)
                .select(RANKING_COLUMNS)
                .eq("user_id", user_id)
                .order("rank_position")
                .execute()
            )
        except (APIError, *TRANSIENT_HTTP_ERRORS) as e:
            raise to_persistence_error(e, action="read_user_rankings") from e

        return [CourseRanking.from_row(row) for row in (resp.data or [])]

    def write_scores(
        self,
        user_id: str,
        rankings: Sequence[CourseRanking],
        *,
        delete_course_ids: Iterable[str] = (),
        compared_course_ids: Iterable[str] = (),
    ) -> None:
        """All-or-nothing write of one user's batch (upserts, deletes, comparison counts)."""
        foreign = sorted({r.user_id for r in rankings if r.user_id != user_id})
        if foreign:
            raise ValueError(f"batch for user {user_id} contains rows for {foreign}")

        deletes = sorted(set(delete_course_ids))
        compared = sorted(set(compared_course_ids))
        params = {
            "p_user_id": user_id,
            "p_rankings": [r.to_row() for r in rankings],
            "p_delete_course_ids": deletes,
            "p_compared_course_ids": compared,
        }

        try:
            self.supabase.rpc(APPLY_RANKINGS_RPC, params).execute()
        except (APIError, *TRANSIENT_HTTP_ERRORS) as e:
            raise to_persistence_error(e, action="write_scores") from e

        logger.debug(
            "[course_rankings] wrote user=%s upserts=%d deletes=%d compared=%d",
            user_id, len(rankings), len(deletes), len(compared),
        )
