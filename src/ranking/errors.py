# src/ranking/errors.py
"""
Ranking engine error taxonomy.

  InvalidPositionError / RankOutOfBoundsError / CourseAlreadyRankedError
  CourseNotRankedError / TierMismatchError
      Contract violations. Caller or internal bug: never retried, always
      surfaced so the inconsistency cannot reach persisted scores.

  RankingPersistenceError
      Store write/read failed. `retryable` marks transient transport
      failures; the orchestrator retries whole batches and re-raises on
      exhaustion.
"""
from __future__ import annotations


class RankingError(Exception):
    """Base class for every ranking engine failure."""


class InvalidPositionError(RankingError, ValueError):
    def __init__(self, position: int) -> None:
        super().__init__(f"insert position must be >= 0, got {position}")
        self.position = position


class RankOutOfBoundsError(RankingError, IndexError):
    def __init__(self, rank_position: int, sequence_length: int) -> None:
        super().__init__(
            f"rank_position={rank_position} out of bounds for sequence_length={sequence_length}"
        )
        self.rank_position = rank_position
        self.sequence_length = sequence_length


class CourseAlreadyRankedError(RankingError, ValueError):
    def __init__(self, course_id: str, tier: str) -> None:
        super().__init__(f"course {course_id} is already ranked in tier {tier}; use move_tier")
        self.course_id = course_id
        self.tier = tier


class RankingPersistenceError(RankingError):
    def __init__(
        self,
        message: str,
        *,
        retryable: bool = False,
        attempts: int = 1,
    ) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.attempts = attempts


class CourseNotRankedError(RankingError, LookupError):
    def __init__(self, course_id: str) -> None:
        super().__init__(f"course {course_id} has no ranking for this user")
        self.course_id = course_id


class TierMismatchError(RankingError, ValueError):
    def __init__(self, course_id: str, tier: str, other_course_id: str, other_tier: str) -> None:
        super().__init__(
            f"cannot compare {course_id} ({tier}) with {other_course_id} ({other_tier}): "
            "comparisons happen inside one tier"
        )
        self.course_id = course_id
        self.other_course_id = other_course_id
