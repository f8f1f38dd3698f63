from __future__ import annotations

from datetime import date, datetime
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, PrivateAttr, field_validator

from src.ranking.tiers import Tier, classify_sentiment


class Review(BaseModel):
    user_id: str
    course_id: str
    sentiment: str
    date_played: Optional[date] = None
    created_at: Optional[datetime] = None
    notes: Optional[str] = None   # not used by ranking

    _tier: Tier = PrivateAttr(default=Tier.FINE)

    @field_validator("date_played", mode="before")
    @classmethod
    def _date_only(cls, v: Any) -> Any:
        # reviews.date_played is sometimes written as a full timestamp
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str) and len(v) > 10:
            return v[:10]
        return v

    def model_post_init(self, __context: Any) -> None:
        # classified once; an unknown sentiment warns once per row
        self._tier = classify_sentiment(self.sentiment)

    @property
    def tier(self) -> Tier:
        return self._tier


class CourseRanking(BaseModel):
    """
    One row of course_rankings.

    rank_position is 0-based here; the table stores it 1-based.
    comparison_count is maintained by the store (incremented in the write
    RPC), so to_row never sends it.
    """
    user_id: str
    course_id: str
    tier: Tier
    rank_position: int = Field(ge=0)
    relative_score: float = Field(ge=0.0, le=10.0)
    comparison_count: int = Field(default=0, ge=0)

    def to_row(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "course_id": self.course_id,
            "sentiment_category": self.tier.value,
            "rank_position": self.rank_position + 1,
            "relative_score": self.relative_score,
        }

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CourseRanking":
        return cls(
            user_id=str(row["user_id"]),
            course_id=str(row["course_id"]),
            tier=classify_sentiment(row.get("sentiment_category")),
            rank_position=max(0, int(row.get("rank_position") or 1) - 1),
            relative_score=float(row.get("relative_score") or 0.0),
            comparison_count=max(0, int(row.get("comparison_count") or 0)),
        )
