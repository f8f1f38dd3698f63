# src/db/reviews.py
"""
Review source for full rebuilds.

Reads one user's rows from public.reviews and collapses them to the distinct
set of reviewed courses. A user may review the same course on several
occasions; the MOST RECENT review decides tier membership:

  order by date_played, then created_at (missing values sort oldest)

Notes / free text are never read here.
"""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Iterable

from postgrest.exceptions import APIError
from supabase import Client

from src.config import DEFAULT_REVIEWS_TABLE
from src.db.course_rankings import TRANSIENT_HTTP_ERRORS, to_persistence_error
from src.models import Review

REVIEW_COLUMNS = "user_id,course_id,sentiment,date_played,created_at"

_OLDEST_DATETIME = datetime.min.replace(tzinfo=timezone.utc)


def _as_aware(dt: datetime | None) -> datetime:
    if dt is None:
        return _OLDEST_DATETIME
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def review_recency_key(review: Review) -> tuple[date, datetime]:
    return (review.date_played or date.min, _as_aware(review.created_at))


def latest_review_by_course(reviews: Iterable[Review]) -> dict[str, Review]:
    """course_id -> the review that wins for ranking purposes."""
    latest: dict[str, Review] = {}
    for review in reviews:
        current = latest.get(review.course_id)
        if current is None or review_recency_key(review) >= review_recency_key(current):
            latest[review.course_id] = review
    return latest


def fetch_user_reviews(
    supabase: Client,
    user_id: str,
    *,
    table: str = DEFAULT_REVIEWS_TABLE,
) -> list[Review]:
    try:
        resp = (
            supabase.table(table)
            .select(REVIEW_COLUMNS)
            .eq("user_id", user_id)
            .execute()
        )
    except (APIError, *TRANSIENT_HTTP_ERRORS) as e:
        raise to_persistence_error(e, action="fetch_user_reviews") from e

    reviews: list[Review] = []
    for row in resp.data or []:
        if not row.get("course_id"):
            continue
        reviews.append(Review(
            user_id=str(row.get("user_id") or user_id),
            course_id=str(row["course_id"]),
            sentiment=str(row.get("sentiment") or ""),
            date_played=row.get("date_played"),
            created_at=row.get("created_at"),
        ))
    return reviews


class SupabaseReviewSource:
    """Callable review source the engine uses for full rebuilds."""

    def __init__(self, supabase: Client, *, table: str = DEFAULT_REVIEWS_TABLE) -> None:
        self.supabase = supabase
        self.table = table

    def __call__(self, user_id: str) -> list[Review]:
        return fetch_user_reviews(self.supabase, user_id, table=self.table)
