"""
Trend Collector — one collection run, end to end.

Clamps the requested page size, fetches samples from the metadata source,
computes the cohort baseline, classifies outliers, and writes the snapshot
plus ledger upserts in a single transaction. Errors from the source
propagate unchanged; retry policy belongs to the scheduler.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from baseline import compute_baseline
from collectors import BaseCollector, VideoSample
from collectors.youtube import resolve_category_id, validate_region_code
from engine_settings import EngineSettings
from errors import SourceUnavailable, ValidationError
from outlier_detector import FlaggedVideo, OutlierDetector
from outlier_ledger import OutlierLedger
from snapshot_store import CohortKey, Snapshot, SnapshotStore

logger = logging.getLogger(__name__)


def _unique_by_video_id(samples: List[VideoSample]) -> List[VideoSample]:
    """Drop repeated video ids, keeping the first occurrence and its chart position."""
    seen = set()
    unique = []
    for sample in samples:
        if sample.video_id in seen:
            continue
        seen.add(sample.video_id)
        unique.append(sample)
    return unique


@dataclass
class CollectionResult:
    """What a collection run produced."""
    snapshot: Snapshot
    flagged: List[FlaggedVideo]
    requested_max_results: Optional[int]
    max_results: int

    def to_dict(self) -> Dict:
        return {
            "snapshotId": self.snapshot.id,
            "snapshot": self.snapshot.to_dict(),
            "totalVideos": self.snapshot.total_videos,
            "avgViews": self.snapshot.avg_views,
            "avgLikes": self.snapshot.avg_likes,
            "avgEngagementRate": self.snapshot.avg_engagement_rate,
            "outlierCount": self.snapshot.outlier_count,
            "maxResults": self.max_results,
            "outliers": [
                {
                    "videoId": f.video_id,
                    "outlierType": f.verdict.primary_type,
                    "outlierTypes": f.verdict.ordered_types(),
                    "outlierScore": round(f.verdict.outlier_score, 4),
                    "viewsVsBaseline": round(f.views_vs_baseline, 4),
                }
                for f in self.flagged
            ],
        }


class TrendCollector:
    """Runs collection passes against one metadata source."""

    def __init__(self, collector: BaseCollector, store: SnapshotStore,
                 ledger: OutlierLedger, settings: EngineSettings = None):
        self.collector = collector
        self.store = store
        self.ledger = ledger
        self.settings = settings or EngineSettings()
        self.detector = OutlierDetector(self.settings.thresholds)

    def collect_trending(self, region_code: str = None, category_id: str = None,
                         max_results: int = None,
                         snapshot_type: str = None) -> CollectionResult:
        """Collect the trending chart for a cohort and persist one snapshot."""
        region = validate_region_code(region_code or self.settings.default_region)
        category = resolve_category_id(category_id)
        limit = self.settings.clamp_max_results(max_results)
        if max_results is not None and limit != max_results:
            logger.info(f"maxResults {max_results} clamped to {limit}")

        cohort = CohortKey(
            region_code=region,
            category_id=category,
            snapshot_type=snapshot_type or self.settings.default_snapshot_type,
        )
        samples = self.collector.fetch_trending(region, category, limit)
        return self._record(cohort, samples, max_results, limit)

    def collect_search(self, keyword: str, region_code: str = None,
                       max_results: int = None) -> CollectionResult:
        """Collect keyword search results as a 'search' snapshot."""
        if not keyword or not keyword.strip():
            raise ValidationError("keyword is required for a search snapshot")

        region = validate_region_code(region_code or self.settings.default_region)
        limit = self.settings.clamp_max_results(max_results)
        cohort = CohortKey(region_code=region, category_id=None, snapshot_type="search")
        samples = self.collector.search_videos(keyword.strip(), region, limit)
        return self._record(cohort, samples, max_results, limit,
                            query_keyword=keyword.strip())

    def list_categories(self, region_code: str = None) -> List[Dict[str, str]]:
        region = validate_region_code(region_code or self.settings.default_region)
        return self.collector.list_categories(region)

    def _record(self, cohort: CohortKey, samples: List[VideoSample],
                requested: Optional[int], limit: int,
                query_keyword: str = None) -> CollectionResult:
        if not samples:
            raise SourceUnavailable(f"No videos returned for {cohort.label()}")

        unique = _unique_by_video_id(samples)
        if len(unique) != len(samples):
            logger.info(
                f"Dropped {len(samples) - len(unique)} repeated video ids from {cohort.label()}"
            )
        samples = unique[:limit]
        baseline = compute_baseline(samples, cohort.region_code, cohort.category_id)
        results = self.detector.detect(samples, baseline)
        flagged = self.detector.flag(results, baseline)

        snapshot = self.store.write_snapshot(
            cohort, baseline, flagged,
            ledger=self.ledger, query_keyword=query_keyword,
        )
        logger.info(
            f"Collection {cohort.label()}: {len(samples)} videos, "
            f"{len(flagged)} outliers -> snapshot {snapshot.id}"
        )
        return CollectionResult(
            snapshot=snapshot,
            flagged=flagged,
            requested_max_results=requested,
            max_results=limit,
        )
