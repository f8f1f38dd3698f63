"""Shared fakes for ranking engine tests (no DB, no network)."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from src.config import RankingSettings
from src.models import CourseRanking, Review
from src.ranking.orchestrator import RankingEngine
from src.ranking.tiers import TIER_ORDER


class FakeRankingStore:
    """In-memory course_rankings table honoring the all-or-nothing write contract."""

    def __init__(self, records: list[CourseRanking] | None = None) -> None:
        self.rows: dict[tuple[str, str], CourseRanking] = {
            (r.user_id, r.course_id): r for r in (records or [])
        }
        self.failures: list[BaseException] = []
        self.write_calls = 0
        self.writes: list[tuple[str, list[CourseRanking], list[str]]] = []
        self.compared: list[list[str]] = []

    def read_score(self, user_id: str, course_id: str) -> float | None:
        r = self.rows.get((user_id, course_id))
        return r.relative_score if r else None

    def read_user_rankings(self, user_id: str) -> list[CourseRanking]:
        rows = [r for (u, _), r in self.rows.items() if u == user_id]
        return sorted(rows, key=lambda r: (TIER_ORDER.index(r.tier), r.rank_position, r.course_id))

    def write_scores(self, user_id, rankings, *, delete_course_ids=(), compared_course_ids=()) -> None:
        self.write_calls += 1
        if self.failures:
            raise self.failures.pop(0)
        deletes = list(delete_course_ids)
        for course_id in deletes:
            self.rows.pop((user_id, course_id), None)
        for r in rankings:
            # like the RPC: upserts never overwrite comparison_count
            old = self.rows.get((user_id, r.course_id))
            count = old.comparison_count if old else 0
            self.rows[(user_id, r.course_id)] = r.model_copy(update={"comparison_count": count})
        compared = list(compared_course_ids)
        for course_id in compared:
            old = self.rows.get((user_id, course_id))
            if old is not None:
                self.rows[(user_id, course_id)] = old.model_copy(
                    update={"comparison_count": old.comparison_count + 1}
                )
        self.writes.append((user_id, list(rankings), deletes))
        self.compared.append(compared)

    def scores(self, user_id: str) -> dict[str, float]:
        return {c: r.relative_score for (u, c), r in self.rows.items() if u == user_id}


class FakeReviewSource:
    def __init__(self, reviews: list[Review] | None = None) -> None:
        self.reviews: list[Review] = list(reviews or [])

    def __call__(self, user_id: str) -> list[Review]:
        return [r for r in self.reviews if r.user_id == user_id]


@pytest.fixture
def store() -> FakeRankingStore:
    return FakeRankingStore()


@pytest.fixture
def review_source() -> FakeReviewSource:
    return FakeReviewSource()


@pytest.fixture
def sleep() -> MagicMock:
    return MagicMock()


@pytest.fixture
def engine(store: FakeRankingStore, review_source: FakeReviewSource, sleep: MagicMock) -> RankingEngine:
    return RankingEngine(
        store,
        review_source=review_source,
        settings=RankingSettings(write_max_attempts=3, write_base_sleep=0.0),
        sleep=sleep,
    )


@pytest.fixture
def supabase_chain() -> tuple[MagicMock, MagicMock]:
    """MagicMock Supabase client where all chain methods return the builder."""
    sb = MagicMock()
    builder = MagicMock()
    for method in [
        "select", "like", "in_", "order", "limit",
        "lte", "gte", "eq", "neq", "update", "insert", "upsert", "delete",
    ]:
        getattr(builder, method).return_value = builder
    result = MagicMock()
    result.data = []
    builder.execute.return_value = result
    sb.table.return_value = builder
    sb.rpc.return_value = builder
    return sb, builder
