"""
Bid Scoring - cohort-relative competitiveness

Fixed weights: cost 40%, timeline 20%, experience 20%, sustainability 20%.
Cost, timeline and experience are normalized against the min/max observed
across every bid currently on the project, so a new bid can move the scores
of bids submitted before it. Sustainability is absolute (recycled share of
materials, 0-100%).

Fun fact: min-max normalization is sometimes called "feature scaling" and is
the same trick a decathlon uses to add seconds to metres - different units,
one table.
"""

from collections.abc import Iterable
from typing import Protocol

from pydantic import BaseModel, Field

COST_WEIGHT = 0.40
TIMELINE_WEIGHT = 0.20
EXPERIENCE_WEIGHT = 0.20
SUSTAINABILITY_WEIGHT = 0.20


class ScorableBid(Protocol):
    cost: float
    timeline_months: float
    experience: int
    recycled_percent: float


class CohortBaselines(BaseModel):
    """Observed min/max of each cohort-relative attribute"""

    min_cost: float
    max_cost: float
    min_timeline: float
    max_timeline: float
    min_experience: float
    max_experience: float

    model_config = {"frozen": True}

    @classmethod
    def from_bids(cls, bids: Iterable[ScorableBid]) -> "CohortBaselines":
        """
        Compute baselines over a cohort

        Raises:
            ValueError: If the cohort is empty
        """
        bids = list(bids)
        if not bids:
            raise ValueError("Cannot compute baselines for an empty cohort")
        costs = [b.cost for b in bids]
        timelines = [b.timeline_months for b in bids]
        experience = [b.experience for b in bids]
        return cls(
            min_cost=min(costs),
            max_cost=max(costs),
            min_timeline=min(timelines),
            max_timeline=max(timelines),
            min_experience=min(experience),
            max_experience=max(experience),
        )


class ScoreBreakdown(BaseModel):
    """Weighted contribution of each criterion (sums to the score)"""

    cost: float = Field(..., ge=0, le=COST_WEIGHT)
    timeline: float = Field(..., ge=0, le=TIMELINE_WEIGHT)
    experience: float = Field(..., ge=0, le=EXPERIENCE_WEIGHT)
    sustainability: float = Field(..., ge=0, le=SUSTAINABILITY_WEIGHT)

    @property
    def total(self) -> float:
        return self.cost + self.timeline + self.experience + self.sustainability


def clamp(value: float, lo: float = 0.0, hi: float = 1.0) -> float:
    return max(lo, min(hi, value))


def normalize(value: float, lo: float, hi: float, invert: bool = False) -> float:
    """
    Min-max normalize into [0, 1]

    A degenerate range (hi == lo) scores 1 for everyone, so a single bid, or a
    cohort that agrees on an attribute, is never penalized for it.

    Args:
        value: Observed value
        lo: Cohort minimum
        hi: Cohort maximum
        invert: True when lower is better (cost, timeline)

    Example:
        >>> normalize(150_000, 150_000, 170_000, invert=True)
        1.0
    """
    if hi == lo:
        return 1.0
    if invert:
        return clamp((hi - value) / (hi - lo))
    return clamp((value - lo) / (hi - lo))


def score_breakdown(bid: ScorableBid, baselines: CohortBaselines) -> ScoreBreakdown:
    """Per-criterion weighted contributions for preview and comparison"""
    return ScoreBreakdown(
        cost=COST_WEIGHT * normalize(bid.cost, baselines.min_cost, baselines.max_cost, invert=True),
        timeline=TIMELINE_WEIGHT
        * normalize(bid.timeline_months, baselines.min_timeline, baselines.max_timeline, invert=True),
        experience=EXPERIENCE_WEIGHT
        * normalize(bid.experience, baselines.min_experience, baselines.max_experience),
        sustainability=SUSTAINABILITY_WEIGHT * clamp(bid.recycled_percent / 100),
    )


def score_bid(bid: ScorableBid, baselines: CohortBaselines) -> float:
    """
    Competitiveness score in [0, 1]

    Example:
        >>> a = dict(cost=150_000, timeline_months=6, experience=8, recycled_percent=30)
        >>> # against a cohort of a and (170_000, 5, 3, 10) -> 0.66
    """
    return round(clamp(score_breakdown(bid, baselines).total), 6)


def rescore_cohort(bids: Iterable[ScorableBid]) -> list[float]:
    """
    Score every bid against the baselines of the whole cohort

    Returns:
        Scores in the same order as ``bids`` (empty for an empty cohort)
    """
    bids = list(bids)
    if not bids:
        return []
    baselines = CohortBaselines.from_bids(bids)
    return [score_bid(bid, baselines) for bid in bids]


def rank_bids(bids: Iterable, scores: Iterable[float] | None = None) -> list:
    """
    Order bids best first

    Ties resolve to the earlier submission (stable sort over input order).

    Args:
        bids: Bids in submission order
        scores: Precomputed scores; recomputed from the cohort when omitted
    """
    bids = list(bids)
    scores = list(scores) if scores is not None else rescore_cohort(bids)
    order = sorted(range(len(bids)), key=lambda i: -scores[i])
    return [bids[i] for i in order]
