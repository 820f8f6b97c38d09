"""
Trend Series Aggregator — chartable history of a cohort's snapshots.

Reads the most recent N snapshots through SnapshotStore.series_for and
reshapes them into three parallel series sharing one timestamp axis.
Nothing is persisted here.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class TrendSeries:
    """Three series of {date, value} points, same length and order."""
    avg_views: List[Dict] = field(default_factory=list)
    avg_engagement: List[Dict] = field(default_factory=list)
    outlier_count: List[Dict] = field(default_factory=list)

    def __len__(self):
        return len(self.avg_views)

    def to_dict(self) -> Dict:
        return {
            "avgViews": self.avg_views,
            "avgEngagement": self.avg_engagement,
            "outlierCount": self.outlier_count,
        }


class TrendSeriesAggregator:
    """Builds TrendSeries for a cohort from stored snapshots."""

    def __init__(self, store: SnapshotStore):
        self.store = store

    def build(self, region_code: str, snapshot_type: str,
              category_id: Optional[str] = None,
              window_size: int = 30) -> TrendSeries:
        points = self.store.series_for(
            region_code, snapshot_type,
            category_id=category_id, window_size=window_size,
        )

        series = TrendSeries()
        for p in points:
            series.avg_views.append({"date": p.captured_at, "value": p.avg_views})
            series.avg_engagement.append({"date": p.captured_at, "value": p.avg_engagement_rate})
            series.outlier_count.append({"date": p.captured_at, "value": p.outlier_count})

        logger.debug(
            f"Trend series {region_code}/{category_id or 'all'}/{snapshot_type}: "
            f"{len(series)} points"
        )
        return series
