# src/ranking/interpolator.py
"""
Rank position -> relative score.

Pure utility: no DB access, no side effects. Must stay byte-for-byte
compatible with scores already stored in course_rankings.

Formula:
  n == 1 or r == 0      -> tier max
  otherwise             -> min + (max - min) * (n - 1 - r) / (n - 1)
  rounded to 1 decimal, ROUND_HALF_UP

Arithmetic is done in Decimal so that e.g. 4.95 rounds to 5.0 instead of
drifting to 4.9 through binary float error.
"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Sequence

from src.ranking.errors import RankOutOfBoundsError
from src.ranking.tiers import Tier

ONE_DECIMAL = Decimal("0.1")


def _score_decimal(tier: Tier, rank_position: int, sequence_length: int) -> Decimal:
    if sequence_length < 1 or rank_position < 0 or rank_position >= sequence_length:
        raise RankOutOfBoundsError(rank_position, sequence_length)

    lo, hi = tier.score_min, tier.score_max
    if sequence_length == 1 or rank_position == 0:
        return hi

    raw = lo + (hi - lo) * Decimal(sequence_length - 1 - rank_position) / Decimal(sequence_length - 1)
    return raw.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)


def score(tier: Tier, rank_position: int, sequence_length: int) -> float:
    """Relative score for the course at 0-based `rank_position` of a tier."""
    return float(_score_decimal(tier, rank_position, sequence_length))


def score_sequence(tier: Tier, courses: Sequence[str]) -> list[tuple[str, float]]:
    """Score every course of a best-first tier sequence, in order."""
    n = len(courses)
    return [(course_id, score(tier, i, n)) for i, course_id in enumerate(courses)]


def format_score(value: float) -> str:
    """Display form used across the app: always one decimal ('10.0', '8.5')."""
    return str(Decimal(str(value)).quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP))
