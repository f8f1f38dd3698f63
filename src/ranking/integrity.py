# src/ranking/integrity.py
"""
Persisted-ranking integrity checks.

Pure: takes course_rankings records, returns explicit reasons. Never
repairs anything; the repair for every failure here is a full rebuild
(RankingEngine.refresh_all_rankings).

Checks per (user, tier):
  duplicate_positions    two records share a rank_position
  position_gaps          positions are not exactly 0..n-1 (also set by duplicates)
  score_out_of_range     a score falls outside the tier's sub-range
  score_not_monotonic    a better-ranked course scores lower than a worse one
  score_mismatch         a score differs from the interpolated value
  duplicate_courses      the same course appears twice
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from src.models import CourseRanking
from src.ranking.interpolator import score
from src.ranking.tiers import TIER_ORDER, Tier


@dataclass(frozen=True)
class IntegrityReport:
    tier: Tier
    size: int
    reasons: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.reasons


def check_tier_integrity(tier: Tier, records: Iterable[CourseRanking]) -> IntegrityReport:
    rows = sorted(
        (r for r in records if r.tier is tier),
        key=lambda r: (r.rank_position, r.course_id),
    )
    reasons: list[str] = []
    n = len(rows)

    courses = [r.course_id for r in rows]
    if len(set(courses)) != n:
        reasons.append("duplicate_courses")

    positions = [r.rank_position for r in rows]
    if len(set(positions)) != n:
        reasons.append("duplicate_positions")
    if sorted(positions) != list(range(n)):
        reasons.append("position_gaps")

    if any(not tier.contains(r.relative_score) for r in rows):
        reasons.append("score_out_of_range")

    if any(a.relative_score < b.relative_score for a, b in zip(rows, rows[1:])):
        reasons.append("score_not_monotonic")

    if "duplicate_positions" not in reasons and "position_gaps" not in reasons:
        if any(r.relative_score != score(tier, r.rank_position, n) for r in rows):
            reasons.append("score_mismatch")

    return IntegrityReport(tier=tier, size=n, reasons=reasons)


def check_user_integrity(records: Iterable[CourseRanking]) -> dict[Tier, IntegrityReport]:
    rows = list(records)
    reports = {tier: check_tier_integrity(tier, rows) for tier in TIER_ORDER}

    seen: dict[str, Tier] = {}
    for r in rows:
        other = seen.setdefault(r.course_id, r.tier)
        if other is not r.tier:
            # course ranked in two tiers at once
            for t in (other, r.tier):
                if "course_in_multiple_tiers" not in reports[t].reasons:
                    reports[t].reasons.append("course_in_multiple_tiers")
    return reports
