# src/ranking/orchestrator.py
"""
Ranking recomputation orchestrator.

Modes:

  apply_review(user, course, sentiment, comparison_position=None)
      Incremental. New course / tier change / re-order inside a tier.
      Only the affected tier(s) are rescored, but always in full: every
      member's score shifts when a sequence's length or order changes.

  record_comparison(user, preferred, other)
      Pairwise outcome between two courses already ranked in one tier. The
      preferred course takes the other's slot if it sat below it; both
      comparison counters go up in the same write.

  refresh_all_rankings(user, order=None)
      Full rebuild from the user's reviews. Self-healing: fixes duplicate
      positions, gaps, stale tiers and orphaned records. O(reviewed courses).

Guarantees:
  - per-user serialization: one lock per user around the whole
    hydrate -> mutate -> score -> persist cycle; users never share a lock
  - every call re-reads the user's records inside the lock, so writes made
    by another process (a rebuild, a second engine) are never overwritten
    with a stale in-memory order
  - the new sequences and the full score set are computed in memory first,
    the store write is the LAST step
  - a failed or interrupted call restores the in-memory sequences, so
    nothing uncommitted ever becomes visible
  - store writes are retried as whole batches (transient errors only);
    exhaustion raises RankingPersistenceError
"""
from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Mapping, Sequence

from src.config import RankingSettings
from src.db.course_rankings import RankingStore
from src.db.reviews import latest_review_by_course, review_recency_key
from src.models import CourseRanking, Review
from src.ranking.errors import (
    CourseNotRankedError,
    InvalidPositionError,
    RankingError,
    RankingPersistenceError,
    TierMismatchError,
)
from src.ranking.integrity import IntegrityReport, check_tier_integrity, check_user_integrity
from src.ranking.interpolator import score_sequence
from src.ranking.sequencer import TierSequencer
from src.ranking.tiers import TIER_ORDER, Tier, classify_sentiment

logger = logging.getLogger(__name__)

ReviewSource = Callable[[str], Sequence[Review]]

CHANGE_NEW = "new"
CHANGE_TIER = "tier_change"
CHANGE_REORDER = "reorder"
CHANGE_NONE = "unchanged"


@dataclass(frozen=True)
class RebuildPlan:
    sequences: dict[Tier, list[str]]
    rankings: list[CourseRanking]
    stale: list[str]
    previous: list[CourseRanking]
    review_count: int

    def changed(self) -> list[tuple[CourseRanking | None, CourseRanking]]:
        """(old, new) pairs whose tier, position or score differ."""
        before = {r.course_id: r for r in self.previous}
        out: list[tuple[CourseRanking | None, CourseRanking]] = []
        for new in self.rankings:
            old = before.get(new.course_id)
            if old is None or (old.tier, old.rank_position, old.relative_score) != (
                new.tier, new.rank_position, new.relative_score,
            ):
                out.append((old, new))
        return out


class RankingEngine:

    def __init__(
        self,
        store: RankingStore,
        *,
        review_source: ReviewSource | None = None,
        sequencer: TierSequencer | None = None,
        settings: RankingSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.review_source = review_source
        self.sequencer = sequencer or TierSequencer()
        self.settings = settings or RankingSettings()
        self._sleep = sleep
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Per-user serialization
    # ------------------------------------------------------------------

    def user_lock(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    # ------------------------------------------------------------------
    # Hydration / scoring / persistence
    # ------------------------------------------------------------------

    def _hydrate(self, user_id: str) -> dict[str, int]:
        """
        Reload the user's sequences from course_rankings (called under the
        user lock at the start of every operation). Returns course_id ->
        comparison_count.
        """
        records = self.store.read_user_rankings(user_id)
        self.sequencer.forget(user_id)
        placed: set[str] = set()
        for tier in TIER_ORDER:
            rows = sorted(
                (r for r in records if r.tier is tier),
                key=lambda r: (r.rank_position, r.course_id),
            )
            courses: list[str] = []
            for r in rows:
                if r.course_id in placed:
                    logger.warning(
                        "[ranking] user=%s course=%s persisted in more than one tier, keeping the better tier",
                        user_id, r.course_id,
                    )
                    continue
                placed.add(r.course_id)
                courses.append(r.course_id)
            self.sequencer.replace(user_id, tier, courses)
        logger.debug("[ranking] hydrated user=%s records=%d", user_id, len(records))
        return {r.course_id: r.comparison_count for r in records}

    def _score_tiers(
        self,
        user_id: str,
        tiers: Iterable[Tier],
        counts: Mapping[str, int],
    ) -> list[CourseRanking]:
        wanted = set(tiers)
        return self._rankings_from_sequences(user_id, {
            tier: self.sequencer.sequence_for(user_id, tier)
            for tier in TIER_ORDER
            if tier in wanted
        }, counts)

    def _rankings_from_sequences(
        self,
        user_id: str,
        sequences: Mapping[Tier, Sequence[str]],
        counts: Mapping[str, int],
    ) -> list[CourseRanking]:
        rankings: list[CourseRanking] = []
        for tier in TIER_ORDER:
            if tier not in sequences:
                continue
            courses = sequences[tier]
            tier_rankings = [
                CourseRanking(
                    user_id=user_id,
                    course_id=course_id,
                    tier=tier,
                    rank_position=pos,
                    relative_score=value,
                    comparison_count=counts.get(course_id, 0),
                )
                for pos, (course_id, value) in enumerate(score_sequence(tier, courses))
            ]
            report = check_tier_integrity(tier, tier_rankings)
            if not report.ok:
                raise RankingError(
                    f"computed {tier.value} rankings for user {user_id} violate invariants: {report.reasons}"
                )
            rankings.extend(tier_rankings)
        return rankings

    def _persist(
        self,
        user_id: str,
        rankings: Sequence[CourseRanking],
        *,
        delete_course_ids: Iterable[str] = (),
        compared_course_ids: Iterable[str] = (),
    ) -> None:
        deletes = sorted(set(delete_course_ids))
        compared = sorted(set(compared_course_ids))
        max_attempts = max(1, self.settings.write_max_attempts)
        last: RankingPersistenceError | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                self.store.write_scores(
                    user_id, rankings,
                    delete_course_ids=deletes,
                    compared_course_ids=compared,
                )
                return
            except RankingPersistenceError as e:
                last = e
                if not e.retryable or attempt == max_attempts:
                    logger.error(
                        "[ranking] giving up on write user=%s after %d attempt(s): %s",
                        user_id, attempt, e,
                    )
                    raise RankingPersistenceError(
                        f"failed to persist {len(rankings)} ranking(s) for user {user_id} "
                        f"after {attempt} attempt(s): {e}",
                        retryable=e.retryable,
                        attempts=attempt,
                    ) from e
                sleep = self.settings.write_base_sleep * (2 ** (attempt - 1)) + random.random() * 0.25
                logger.warning(
                    "[ranking] write failed user=%s attempt=%d/%d sleep=%.2fs: %s",
                    user_id, attempt, max_attempts, sleep, e,
                )
                self._sleep(sleep)

        raise last  # type: ignore[misc]

    # ------------------------------------------------------------------
    # Incremental mode
    # ------------------------------------------------------------------

    def apply_review(
        self,
        user_id: str,
        course_id: str,
        sentiment: Any,
        comparison_position: int | None = None,
    ) -> list[CourseRanking]:
        """
        Place (or re-place) one reviewed course and persist the affected tiers.

        comparison_position is the 0-based slot resolved by the pairwise
        comparison flow; None appends at the worst end for new / moved
        courses and keeps the current order for an unchanged tier.

        Returns the persisted records of every affected tier.
        """
        if comparison_position is not None and comparison_position < 0:
            raise InvalidPositionError(comparison_position)

        tier = classify_sentiment(sentiment)

        with self.user_lock(user_id):
            counts = self._hydrate(user_id)
            seq = self.sequencer

            with seq.transaction(user_id):
                current = seq.tier_of(user_id, course_id)

                if current is None:
                    change = CHANGE_NEW
                    affected = {tier}
                    if comparison_position is None:
                        seq.append(user_id, tier, course_id)
                    else:
                        seq.insert(user_id, tier, course_id, comparison_position)
                elif current is not tier:
                    change = CHANGE_TIER
                    affected = {current, tier}
                    position = comparison_position
                    if position is None:
                        position = len(seq.sequence_for(user_id, tier))
                    seq.move_tier(user_id, course_id, current, tier, position)
                else:
                    affected = {tier}
                    if comparison_position is None:
                        change = CHANGE_NONE
                    else:
                        change = CHANGE_REORDER
                        seq.insert(user_id, tier, course_id, comparison_position)

                rankings = self._score_tiers(user_id, affected, counts)
                self._persist(user_id, rankings)

        logger.info(
            "[ranking] apply_review user=%s course=%s tier=%s change=%s rescored=%d",
            user_id, course_id, tier.value, change, len(rankings),
        )
        return rankings

    def record_comparison(
        self,
        user_id: str,
        preferred_course_id: str,
        other_course_id: str,
    ) -> list[CourseRanking]:
        """
        Apply one "preferred is better than other" answer between two
        courses of the same tier.

        If preferred currently sits below other it moves into other's slot
        (other and everything in between shift down one). Otherwise the
        order already agrees. Either way the tier is rescored and both
        comparison counters are incremented in the same write.
        """
        if preferred_course_id == other_course_id:
            raise ValueError(f"course {preferred_course_id} cannot be compared with itself")

        with self.user_lock(user_id):
            counts = self._hydrate(user_id)
            seq = self.sequencer

            with seq.transaction(user_id):
                preferred = seq.placement(user_id, preferred_course_id)
                if preferred is None:
                    raise CourseNotRankedError(preferred_course_id)
                other = seq.placement(user_id, other_course_id)
                if other is None:
                    raise CourseNotRankedError(other_course_id)

                tier, preferred_pos = preferred
                other_tier, other_pos = other
                if other_tier is not tier:
                    raise TierMismatchError(
                        preferred_course_id, tier.value, other_course_id, other_tier.value,
                    )

                if preferred_pos > other_pos:
                    change = CHANGE_REORDER
                    seq.insert(user_id, tier, preferred_course_id, other_pos)
                else:
                    change = CHANGE_NONE

                compared = (preferred_course_id, other_course_id)
                bumped = dict(counts)
                for c in compared:
                    bumped[c] = counts.get(c, 0) + 1

                rankings = self._score_tiers(user_id, [tier], bumped)
                self._persist(user_id, rankings, compared_course_ids=compared)

        logger.info(
            "[ranking] record_comparison user=%s preferred=%s other=%s tier=%s change=%s",
            user_id, preferred_course_id, other_course_id, tier.value, change,
        )
        return rankings

    def remove_review(self, user_id: str, course_id: str) -> list[CourseRanking]:
        """
        Drop a course from the user's rankings and delete its record.

        Call only once no other review by this user references the course.
        Idempotent: removing an unranked course only re-issues the delete.
        """
        with self.user_lock(user_id):
            counts = self._hydrate(user_id)
            seq = self.sequencer

            with seq.transaction(user_id):
                tier = seq.tier_of(user_id, course_id)
                rankings: list[CourseRanking] = []
                if tier is not None:
                    seq.remove(user_id, tier, course_id)
                    rankings = self._score_tiers(user_id, [tier], counts)
                self._persist(user_id, rankings, delete_course_ids=[course_id])

        logger.info(
            "[ranking] remove_review user=%s course=%s tier=%s rescored=%d",
            user_id, course_id, tier.value if tier else None, len(rankings),
        )
        return rankings

    # ------------------------------------------------------------------
    # Full rebuild
    # ------------------------------------------------------------------

    def _rebuild_sequences(
        self,
        latest: Mapping[str, Review],
        persisted: Sequence[CourseRanking],
        order: Mapping[Tier, Sequence[str]] | None,
    ) -> dict[Tier, list[str]]:
        """
        Per tier: caller order first, then prior persisted order (the
        comparison history), then never-ranked courses oldest play first.
        """
        tier_by_course = {c: review.tier for c, review in latest.items()}
        sequences: dict[Tier, list[str]] = {}
        for tier in TIER_ORDER:
            members = {c for c, t in tier_by_course.items() if t is tier}
            courses: list[str] = []
            seen: set[str] = set()

            def take(candidates: Iterable[str]) -> None:
                for c in candidates:
                    if c in members and c not in seen:
                        seen.add(c)
                        courses.append(c)

            take((order or {}).get(tier, ()))
            take(
                r.course_id
                for r in sorted(persisted, key=lambda r: (r.rank_position, r.course_id))
                if r.tier is tier
            )
            take(sorted(members - seen, key=lambda c: (review_recency_key(latest[c]), c)))
            sequences[tier] = courses
        return sequences

    def refresh_all_rankings(
        self,
        user_id: str,
        order: Mapping[Tier, Sequence[str]] | None = None,
    ) -> list[CourseRanking]:
        """
        Rebuild every tier sequence for the user from their reviews, then
        rescore and persist everything in one batch. Records for courses the
        user no longer has a review of are deleted in the same batch.

        Running it twice with no intervening change yields identical scores.
        """
        with self.user_lock(user_id):
            plan = self._plan_rebuild(user_id, order)

            seq = self.sequencer
            with seq.transaction(user_id):
                for tier, courses in plan.sequences.items():
                    seq.replace(user_id, tier, courses)
                self._persist(user_id, plan.rankings, delete_course_ids=plan.stale)

        logger.info(
            "[ranking] refresh_all_rankings user=%s reviews=%d courses=%d deleted=%d "
            "liked=%d fine=%d didnt_like=%d",
            user_id, plan.review_count, len(plan.rankings), len(plan.stale),
            len(plan.sequences[Tier.LIKED]),
            len(plan.sequences[Tier.FINE]),
            len(plan.sequences[Tier.DIDNT_LIKE]),
        )
        return plan.rankings

    def plan_full_rebuild(
        self,
        user_id: str,
        order: Mapping[Tier, Sequence[str]] | None = None,
    ) -> RebuildPlan:
        """What refresh_all_rankings would write, without touching any state."""
        with self.user_lock(user_id):
            return self._plan_rebuild(user_id, order)

    def _plan_rebuild(
        self,
        user_id: str,
        order: Mapping[Tier, Sequence[str]] | None,
    ) -> RebuildPlan:
        if self.review_source is None:
            raise RuntimeError("full rebuild requires a review_source")

        reviews = [r for r in self.review_source(user_id) if r.user_id == user_id]
        latest = latest_review_by_course(reviews)
        persisted = self.store.read_user_rankings(user_id)
        counts = {r.course_id: r.comparison_count for r in persisted}

        sequences = self._rebuild_sequences(latest, persisted, order)
        return RebuildPlan(
            sequences=sequences,
            rankings=self._rankings_from_sequences(user_id, sequences, counts),
            stale=sorted({r.course_id for r in persisted} - set(latest)),
            previous=persisted,
            review_count=len(reviews),
        )

    # ------------------------------------------------------------------
    # Reads / diagnostics
    # ------------------------------------------------------------------

    def read_score(self, user_id: str, course_id: str) -> float | None:
        return self.store.read_score(user_id, course_id)

    def rankings_for(self, user_id: str, tier: Tier) -> list[CourseRanking]:
        with self.user_lock(user_id):
            counts = self._hydrate(user_id)
            return self._score_tiers(user_id, [tier], counts)

    def export_ranking_data(self, user_id: str) -> dict[str, list[dict[str, Any]]]:
        """Debug/admin view: {tier: [{course_id, position, score, comparisons}, ...]} best first."""
        with self.user_lock(user_id):
            counts = self._hydrate(user_id)
            rankings = self._score_tiers(user_id, TIER_ORDER, counts)

        result: dict[str, list[dict[str, Any]]] = {tier.value: [] for tier in TIER_ORDER}
        for r in rankings:
            result[r.tier.value].append({
                "course_id": r.course_id,
                "position": r.rank_position,
                "score": r.relative_score,
                "comparisons": r.comparison_count,
            })
        return result

    def verify_rankings_integrity(self, user_id: str) -> dict[Tier, IntegrityReport]:
        """Check persisted records; failures are logged, repair is refresh_all_rankings."""
        reports = check_user_integrity(self.store.read_user_rankings(user_id))
        for tier, report in reports.items():
            if not report.ok:
                logger.warning(
                    "[ranking] integrity issues user=%s tier=%s size=%d reasons=%s",
                    user_id, tier.value, report.size, ",".join(report.reasons),
                )
        return reports


def engine_from_env(settings: RankingSettings | None = None) -> RankingEngine:
    """Wire a Supabase-backed engine from environment settings."""
    from src.config import load_settings
    from src.db.course_rankings import SupabaseRankingStore
    from src.db.reviews import SupabaseReviewSource
    from src.db.supabase_client import get_supabase_client

    settings = settings or load_settings()
    client = get_supabase_client(settings)
    return RankingEngine(
        SupabaseRankingStore(client, table=settings.rankings_table),
        review_source=SupabaseReviewSource(client, table=settings.reviews_table),
        settings=settings,
    )
