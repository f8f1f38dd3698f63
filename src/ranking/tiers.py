# src/ranking/tiers.py
"""
Sentiment tiers and the tier classifier.

Single source of truth for:
  - the three canonical tiers and their fixed score sub-ranges
  - every sentiment spelling ever written by the review flow

Score ranges (must match the course_rankings CHECK / DECIMAL(4,1) column):
  liked       [7.0, 10.0]
  fine        [3.0,  6.9]
  didnt_like  [0.0,  2.9]

Classification rules (deterministic, no heuristics):
  1. A Tier instance passes through unchanged
  2. Strip, lowercase, fold '-' / ' ' / apostrophes to the canonical form
  3. Exact lookup in SENTIMENT_ALIASES
  4. Anything else fails closed into Tier.FINE and is logged as a WARNING
"""
from __future__ import annotations

import logging
import re
from decimal import Decimal
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    LIKED = "liked"
    FINE = "fine"
    DIDNT_LIKE = "didnt_like"

    @property
    def score_min(self) -> Decimal:
        return TIER_SCORE_RANGES[self][0]

    @property
    def score_max(self) -> Decimal:
        return TIER_SCORE_RANGES[self][1]

    def contains(self, score: float) -> bool:
        value = Decimal(str(score))
        return self.score_min <= value <= self.score_max


# Best tier first. Iteration order used by full rebuilds and exports.
TIER_ORDER: tuple[Tier, ...] = (Tier.LIKED, Tier.FINE, Tier.DIDNT_LIKE)

TIER_SCORE_RANGES: dict[Tier, tuple[Decimal, Decimal]] = {
    Tier.LIKED: (Decimal("7.0"), Decimal("10.0")),
    Tier.FINE: (Decimal("3.0"), Decimal("6.9")),
    Tier.DIDNT_LIKE: (Decimal("0.0"), Decimal("2.9")),
}

FALLBACK_TIER = Tier.FINE


# ---------------------------------------------------------------------------
# Alias table
# ---------------------------------------------------------------------------

# Bump when an alias is added or re-pointed.
SENTIMENT_ALIASES_VERSION = 2

SENTIMENT_ALIASES: dict[str, Tier] = {
    # v1: original vocabulary (course_rankings.sentiment_category)
    "liked": Tier.LIKED,
    "fine": Tier.FINE,
    "didnt_like": Tier.DIDNT_LIKE,
    # v2: review flow vocabulary (reviews.sentiment)
    "would_play_again": Tier.LIKED,
    "it_was_fine": Tier.FINE,
    "would_not_play_again": Tier.DIDNT_LIKE,
    # historical spellings seen in exported review rows
    "like": Tier.LIKED,
    "love": Tier.LIKED,
    "loved": Tier.LIKED,
    "ok": Tier.FINE,
    "okay": Tier.FINE,
    "neutral": Tier.FINE,
    "did_not_like": Tier.DIDNT_LIKE,
    "didntlike": Tier.DIDNT_LIKE,
    "dislike": Tier.DIDNT_LIKE,
    "disliked": Tier.DIDNT_LIKE,
}

_SEPARATORS_RE = re.compile(r"[\s\-]+")


def normalize_sentiment_key(raw: str) -> str:
    """'Would-Play Again' -> 'would_play_again', "didn't like" -> 'didnt_like'."""
    s = raw.strip().lower().replace("'", "").replace("’", "")
    return _SEPARATORS_RE.sub("_", s)


def classify_sentiment(raw: Any) -> Tier:
    """
    Map any raw sentiment value to one of the three canonical tiers.

    Never raises. Unknown / malformed input falls back to Tier.FINE and is
    reported with a WARNING so data-quality follow-up can find it.
    """
    if isinstance(raw, Tier):
        return raw

    if isinstance(raw, str):
        tier = SENTIMENT_ALIASES.get(normalize_sentiment_key(raw))
        if tier is not None:
            return tier

    logger.warning(
        "[tiers] unknown sentiment %r (aliases v%d), falling back to %s",
        raw, SENTIMENT_ALIASES_VERSION, FALLBACK_TIER.value,
    )
    return FALLBACK_TIER
