"""
Baseline Calculator — cohort statistics used as the outlier comparison point.

A cohort is every video from one collection run (same region, category
and snapshot type). Standard deviation is the population form, so a
single-sample cohort has a spread of exactly 0; the detector floors the
spread itself rather than this module special-casing small cohorts.
"""

import logging
import math
import statistics
from dataclasses import dataclass
from typing import List, Optional

from collectors import VideoSample
from errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CohortBaseline:
    """Statistical summary of one cohort at collection time."""
    region_code: Optional[str]
    category_id: Optional[str]
    sample_count: int
    mean_views: float
    median_views: float
    std_dev_views: float
    mean_engagement_rate: float
    mean_likes: float = 0.0
    p75_views: float = 0.0
    p90_views: float = 0.0


def percentile(values: List[float], pct: float) -> float:
    """Nearest-rank percentile: smallest value with at least pct% at or below it."""
    if not values:
        return 0.0
    ordered = sorted(values)
    index = max(math.ceil((pct / 100) * len(ordered)) - 1, 0)
    return float(ordered[min(index, len(ordered) - 1)])


def compute_baseline(samples: List[VideoSample],
                     region_code: Optional[str] = None,
                     category_id: Optional[str] = None) -> CohortBaseline:
    """
    Compute the cohort baseline for a batch of samples.

    Args:
        samples: At least one VideoSample from the same cohort.
        region_code: Cohort region; defaults to the first sample's region.
        category_id: Cohort category (None = all categories).

    Raises:
        ValidationError: if samples is empty.
    """
    if not samples:
        raise ValidationError("Cannot compute a baseline from zero samples")

    views = [s.views for s in samples]
    rates = [s.engagement_rate for s in samples]

    baseline = CohortBaseline(
        region_code=region_code or samples[0].region_code,
        category_id=category_id,
        sample_count=len(samples),
        mean_views=statistics.mean(views),
        median_views=float(statistics.median(views)),
        std_dev_views=statistics.pstdev(views),
        mean_engagement_rate=statistics.mean(rates),
        mean_likes=statistics.mean(s.likes for s in samples),
        p75_views=percentile(views, 75),
        p90_views=percentile(views, 90),
    )

    logger.debug(
        f"Baseline {baseline.region_code}/{category_id or 'all'}: "
        f"n={baseline.sample_count} mean={baseline.mean_views:.0f} "
        f"sd={baseline.std_dev_views:.0f} eng={baseline.mean_engagement_rate:.4f}"
    )
    return baseline
