# src/ranking/placement.py
"""
Pairwise comparison placement.

The review flow asks "is this course better or worse than X?" until the new
course's slot in the tier is pinned down. This is a binary search over the
tier's best-first sequence; the resolved `position` is what the flow passes
to RankingEngine.apply_review as comparison_position.

Bounds are insertion indices into the sequence WITHOUT the course being
placed, so re-placing a course that is already in the tier works the same
way as placing a new one.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence


def max_comparisons(existing_count: int) -> int:
    """Worst-case questions needed: ceil(log2(n + 1))."""
    return max(0, existing_count).bit_length()


@dataclass
class PlacementSearch:
    course_id: str
    sequence: tuple[str, ...]
    lower: int = 0
    upper: int = 0
    comparisons: list[tuple[str, bool]] = field(default_factory=list)

    @classmethod
    def start(cls, course_id: str, sequence: Sequence[str]) -> "PlacementSearch":
        others = tuple(c for c in sequence if c != course_id)
        return cls(course_id=course_id, sequence=others, lower=0, upper=len(others))

    @property
    def is_complete(self) -> bool:
        return self.lower >= self.upper

    @property
    def position(self) -> int:
        if not self.is_complete:
            raise RuntimeError(
                f"placement of {self.course_id} not resolved: bounds=[{self.lower}, {self.upper}]"
            )
        return self.lower

    def next_comparison(self) -> str | None:
        """Course to compare against next, or None once the slot is known."""
        if self.is_complete:
            return None
        return self.sequence[(self.lower + self.upper) // 2]

    def record(self, other_course_id: str, preferred: bool) -> None:
        """
        preferred=True  -> the course being placed is better than other_course_id
        preferred=False -> it is worse
        """
        expected = self.next_comparison()
        if expected is None:
            raise RuntimeError(f"placement of {self.course_id} already resolved")
        if other_course_id != expected:
            raise ValueError(
                f"expected comparison against {expected}, got {other_course_id}"
            )

        mid = (self.lower + self.upper) // 2
        if preferred:
            self.upper = mid
        else:
            self.lower = mid + 1
        self.comparisons.append((other_course_id, preferred))
