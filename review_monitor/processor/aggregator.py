"""Review aggregate computation.

Recomputes a product's ``rating_data`` and ``review_summary`` from its stored
reviews. Runs after every review ingestion and review deletion so the
product row never drifts from its review set.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from review_monitor.models.data_models import utc_now
from review_monitor.processor.normalizer import STAR_KEYS


def compute_rating_data(
    ratings: Iterable[int],
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Compute rating aggregate from a set of review ratings.

    Args:
        ratings: Star ratings (1..5) of every stored review for a product
        now: Timestamp recorded as lastUpdated

    Returns:
        Dict with rating (mean rounded to 2 decimals), reviewCount,
        starsBreakdown as fractions and lastUpdated. An empty review set
        yields rating 0 and an all-zero breakdown.
    """
    ratings = [int(r) for r in ratings]
    total = len(ratings)
    now = now or utc_now()

    breakdown = {key: 0.0 for key in STAR_KEYS}
    if total:
        for stars in range(1, 6):
            breakdown[f"{stars}star"] = round(ratings.count(stars) / total, 4)

    return {
        "rating": round(sum(ratings) / total, 2) if total else 0,
        "reviewCount": total,
        "starsBreakdown": breakdown,
        "lastUpdated": now.isoformat(),
    }


def compute_review_summary(verified_flags: Iterable[bool], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Count verified-purchase reviews."""
    now = now or utc_now()
    return {
        "verifiedPurchases": sum(1 for flag in verified_flags if flag),
        "lastUpdated": now.isoformat(),
    }
