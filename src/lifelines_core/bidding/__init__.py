"""
Bidding Module - contractor bids and cohort-relative scoring

Fun fact: sealed-bid procurement goes back at least to 19th century naval
contracts, where envelopes were opened in public at a fixed hour.
"""

from lifelines_core.bidding.models import Bid, BidStatus
from lifelines_core.bidding.scoring import rank_bids, rescore_cohort, score_bid

__all__ = [
    "Bid",
    "BidStatus",
    "score_bid",
    "rescore_cohort",
    "rank_bids",
]
