"""
Tests for cohort-relative bid scoring

Fun fact: the two-bid cohort below is the classic "cheap but slow vs fast
but pricey" tender that every procurement officer has seen a thousand times.
"""

from types import SimpleNamespace

import pytest

from lifelines_core.bidding.scoring import (
    CohortBaselines,
    normalize,
    rank_bids,
    rescore_cohort,
    score_bid,
    score_breakdown,
)


def bid(cost: float, timeline: float, experience: int, recycled: float) -> SimpleNamespace:
    return SimpleNamespace(
        cost=cost, timeline_months=timeline, experience=experience, recycled_percent=recycled
    )


BID_A = bid(150_000, 6, 8, 30)
BID_B = bid(170_000, 5, 3, 10)


class TestNormalize:
    """Min-max normalization"""

    def test_degenerate_range_scores_full(self):
        assert normalize(42, 42, 42) == 1.0
        assert normalize(42, 42, 42, invert=True) == 1.0

    def test_invert_rewards_lower_values(self):
        assert normalize(150_000, 150_000, 170_000, invert=True) == 1.0
        assert normalize(170_000, 150_000, 170_000, invert=True) == 0.0
        assert normalize(160_000, 150_000, 170_000, invert=True) == pytest.approx(0.5)

    def test_output_is_clamped(self):
        assert normalize(200, 0, 100) == 1.0
        assert normalize(-5, 0, 100) == 0.0


class TestCohortScoring:
    """Scores relative to every bid on the project"""

    def test_two_bid_cohort(self):
        """Test the cheap-but-slow bid beats the fast-but-pricey one"""
        scores = rescore_cohort([BID_A, BID_B])
        assert scores == [pytest.approx(0.66), pytest.approx(0.22)]
        assert rank_bids([BID_A, BID_B]) == [BID_A, BID_B]
        assert rank_bids([BID_B, BID_A]) == [BID_A, BID_B]

    def test_single_bid_only_loses_on_sustainability(self):
        """Test that a lone bid scores 0.8 plus its recycled share"""
        assert rescore_cohort([bid(168_500, 6, 8, 30)]) == [pytest.approx(0.86)]

    def test_identical_bids_score_identically(self):
        scores = rescore_cohort([bid(100, 4, 2, 50), bid(100, 4, 2, 50), bid(100, 4, 2, 50)])
        assert len(set(scores)) == 1

    def test_new_bid_moves_existing_scores(self):
        """Test that adding a cheaper competitor lowers the incumbent's score"""
        (alone,) = rescore_cohort([BID_B])
        with_competitor = rescore_cohort([BID_B, BID_A])[0]
        assert with_competitor < alone

    def test_scores_stay_in_unit_interval(self):
        cohort = [bid(1, 1, 0, 0), bid(1e9, 120, 500, 100), bid(5e5, 12, 10, 55)]
        for score in rescore_cohort(cohort):
            assert 0.0 <= score <= 1.0

    def test_breakdown_sums_to_score(self):
        baselines = CohortBaselines.from_bids([BID_A, BID_B])
        breakdown = score_breakdown(BID_A, baselines)
        assert breakdown.cost == pytest.approx(0.4)
        assert breakdown.timeline == pytest.approx(0.0)
        assert breakdown.total == pytest.approx(score_bid(BID_A, baselines))

    def test_ties_keep_submission_order(self):
        first, second = bid(100, 4, 2, 50), bid(100, 4, 2, 50)
        assert rank_bids([first, second]) == [first, second]

    def test_empty_cohort(self):
        assert rescore_cohort([]) == []
        assert rank_bids([]) == []
        with pytest.raises(ValueError):
            CohortBaselines.from_bids([])
