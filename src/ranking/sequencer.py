# src/ranking/sequencer.py
"""
Tier Sequencer: owner of every (user, tier) ranked sequence.

A ranked sequence is the durable expression of a user's preference inside a
tier (best first). Scores are derived FROM it, never the reverse.

State is an explicit keyed store:
  (user_id, tier) -> TierSequence(courses, version)

TierSequence is immutable; every mutation stores a new value with
version + 1. Callers only ever receive copies.

Invariants:
  - a course appears at most once per user across all three tiers
  - unseen (user, tier) pairs read as empty, version 0

A per-user index course_id -> (tier, position) is rebuilt for the touched
tier on every mutation, so "where is this course" is a dict lookup.
"""
from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Sequence

from src.ranking.errors import CourseAlreadyRankedError, InvalidPositionError
from src.ranking.tiers import TIER_ORDER, Tier


@dataclass(frozen=True)
class TierSequence:
    courses: tuple[str, ...] = ()
    version: int = 0

    def __len__(self) -> int:
        return len(self.courses)


EMPTY = TierSequence()

UserSnapshot = dict[Tier, TierSequence]


class TierSequencer:

    def __init__(self) -> None:
        self._sequences: dict[tuple[str, Tier], TierSequence] = {}
        self._index: dict[str, dict[str, tuple[Tier, int]]] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _get(self, user_id: str, tier: Tier) -> TierSequence:
        return self._sequences.get((user_id, tier), EMPTY)

    def sequence_for(self, user_id: str, tier: Tier) -> list[str]:
        return list(self._get(user_id, tier).courses)

    def placement(self, user_id: str, course_id: str) -> tuple[Tier, int] | None:
        """(tier, 0-based position) of a ranked course, or None."""
        return self._index.get(user_id, {}).get(course_id)

    def tier_of(self, user_id: str, course_id: str) -> Tier | None:
        placed = self.placement(user_id, course_id)
        return placed[0] if placed else None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _set(self, user_id: str, tier: Tier, courses: Sequence[str]) -> None:
        current = self._get(user_id, tier)
        self._sequences[(user_id, tier)] = TierSequence(
            courses=tuple(courses), version=current.version + 1,
        )
        index = self._index.setdefault(user_id, {})
        for c in current.courses:
            placed = index.get(c)
            if placed is not None and placed[0] is tier:
                del index[c]
        for pos, c in enumerate(courses):
            index[c] = (tier, pos)

    def _reindex(self, user_id: str) -> None:
        self._index[user_id] = {
            c: (tier, pos)
            for tier in TIER_ORDER
            for pos, c in enumerate(self._get(user_id, tier).courses)
        }

    def insert(self, user_id: str, tier: Tier, course_id: str, position: int) -> None:
        """
        Insert at 0-based `position`; past-the-end clamps to append.
        A course already in this tier is moved, never duplicated.
        """
        if position < 0:
            raise InvalidPositionError(position)

        other = self.tier_of(user_id, course_id)
        if other is not None and other is not tier:
            raise CourseAlreadyRankedError(course_id, other.value)

        courses = [c for c in self._get(user_id, tier).courses if c != course_id]
        courses.insert(min(position, len(courses)), course_id)
        self._set(user_id, tier, courses)

    def append(self, user_id: str, tier: Tier, course_id: str) -> None:
        self.insert(user_id, tier, course_id, len(self._get(user_id, tier)))

    def remove(self, user_id: str, tier: Tier, course_id: str) -> bool:
        """Remove first occurrence. Absent course is a no-op; returns whether anything changed."""
        placed = self.placement(user_id, course_id)
        if placed is None or placed[0] is not tier:
            return False
        courses = list(self._get(user_id, tier).courses)
        del courses[placed[1]]
        self._set(user_id, tier, courses)
        return True

    def move_tier(
        self,
        user_id: str,
        course_id: str,
        from_tier: Tier,
        to_tier: Tier,
        position: int,
    ) -> None:
        """Atomic remove-then-insert. On failure the user's state is unchanged."""
        with self.transaction(user_id):
            self.remove(user_id, from_tier, course_id)
            self.insert(user_id, to_tier, course_id, position)

    def replace(self, user_id: str, tier: Tier, courses: Sequence[str]) -> None:
        """Install a whole sequence (hydration / full rebuild)."""
        if len(set(courses)) != len(courses):
            raise ValueError(f"duplicate course ids in {tier.value} sequence for user {user_id}")
        self._set(user_id, tier, courses)

    def forget(self, user_id: str) -> None:
        """Drop all in-memory state for a user; versions restart at 0."""
        for tier in TIER_ORDER:
            self._sequences.pop((user_id, tier), None)
        self._index.pop(user_id, None)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def snapshot(self, user_id: str) -> UserSnapshot:
        return {tier: self._get(user_id, tier) for tier in TIER_ORDER}

    def restore(self, user_id: str, snap: UserSnapshot) -> None:
        for tier, seq in snap.items():
            if seq.version == 0 and not seq.courses:
                self._sequences.pop((user_id, tier), None)
            else:
                self._sequences[(user_id, tier)] = seq
        self._reindex(user_id)

    @contextmanager
    def transaction(self, user_id: str) -> Iterator[None]:
        """
        Restore the user's sequences if the block raises anything,
        including KeyboardInterrupt / cancellation.
        """
        snap = self.snapshot(user_id)
        try:
            yield
        except BaseException:
            self.restore(user_id, snap)
            raise
