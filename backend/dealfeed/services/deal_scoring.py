"""Heuristic deal ranking.

The default "smart" ordering of every feed is a weighted sum of three
signals: where the deal ships from, how soon it expires and how deep the
discount is. Feeds that emphasize coupons may add a flat bonus for deals
carrying a coupon code.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

from dealfeed.sources.base import Deal
from dealfeed.sources.utils.normalizer import parse_iso

# ---------------------------------------------------------------------------
# Score weights
# ---------------------------------------------------------------------------
NON_CN_WAREHOUSE_BONUS = 10.0
EXPIRY_WINDOW_DAYS = 10.0     # Bonus decays linearly to 0 over this window
DISCOUNT_BONUS_CAP = 8.0
DISCOUNT_PERCENT_PER_POINT = Decimal("5")

CN_WAREHOUSE = "CN"
SECONDS_PER_DAY = 86400.0


@dataclass
class DealScore:
    """Result of scoring one deal.

    Attributes:
        score: Total ranking value (higher ranks first)
        components: Breakdown of individual scoring components
    """

    score: float
    components: Dict[str, float] = field(default_factory=dict)


class DealScorer:
    """Computes the ranking score of a deal.

    Args:
        coupon_bonus: Flat bonus for deals with a coupon code (0 disables it)
        now: Fixed reference time; defaults to the current time per call
    """

    def __init__(self, coupon_bonus: float = 0.0, now: Optional[datetime] = None):
        self.coupon_bonus = coupon_bonus
        self._now = now

    def score(self, deal: Deal) -> float:
        return self.breakdown(deal).score

    def breakdown(self, deal: Deal) -> DealScore:
        components = {
            "warehouse": self._warehouse_score(deal),
            "expiry": self._expiry_score(deal),
            "discount": self._discount_score(deal),
            "coupon": self.coupon_bonus if deal.coupon_code else 0.0,
        }
        return DealScore(score=sum(components.values()), components=components)

    @staticmethod
    def _warehouse_score(deal: Deal) -> float:
        warehouse = (deal.warehouse or "").strip().upper()
        if warehouse and warehouse != CN_WAREHOUSE:
            return NON_CN_WAREHOUSE_BONUS
        return 0.0

    def _expiry_score(self, deal: Deal) -> float:
        """max(0, 10 - min(10, days remaining)); no end date means no bonus."""
        ends = parse_iso(deal.ends_at)
        if ends is None:
            return 0.0
        now = self._now or datetime.now(timezone.utc)
        days = max(0.0, (ends - now).total_seconds() / SECONDS_PER_DAY)
        return max(0.0, EXPIRY_WINDOW_DAYS - min(EXPIRY_WINDOW_DAYS, days))

    @staticmethod
    def _discount_score(deal: Deal) -> float:
        price, original = deal.price, deal.original_price
        if price is None or original is None or original <= 0 or price >= original:
            return 0.0
        percent = (1 - price / original) * 100
        return float(min(Decimal(str(DISCOUNT_BONUS_CAP)), max(Decimal("0"), percent / DISCOUNT_PERCENT_PER_POINT)))

