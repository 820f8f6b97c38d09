"""
Outlier Detector — identifies videos that significantly outperform their cohort.

Scores each video against the cohort baseline from the same collection run
and classifies it into zero or more outlier types:

  view_spike        views far above the cohort mean (z-score) and above an
                    absolute floor, so small cohorts can't flood the ledger
  engagement_spike  (likes + comments) / views is a multiple of the cohort's
  rapid_growth      views per hour since publish exceeds a fixed rate

Thresholds come from engine settings, not hardcoded. Detection is a pure
function of (samples, baseline, thresholds): no clock reads, no I/O.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Tuple

from baseline import CohortBaseline
from collectors import VideoSample
from engine_settings import OutlierThresholds

logger = logging.getLogger(__name__)

VIEW_SPIKE = "view_spike"
ENGAGEMENT_SPIKE = "engagement_spike"
RAPID_GROWTH = "rapid_growth"

# Primary type when a video triggers several
TYPE_PRIORITY = (VIEW_SPIKE, ENGAGEMENT_SPIKE, RAPID_GROWTH)
OUTLIER_TYPES = frozenset(TYPE_PRIORITY)

# Floor for the cohort spread so a homogeneous cohort scores 0, not NaN
SPREAD_EPSILON = 1e-9

EMOJI_RE = re.compile("[\U0001F300-\U0001F9FF]")
HOW_TO_RE = re.compile(r"how to|how do i|tutorial|guide", re.IGNORECASE)
DIGIT_RE = re.compile(r"\d")


@dataclass(frozen=True)
class OutlierVerdict:
    """Classification of a single video against its cohort."""
    types: FrozenSet[str]
    deviation_score: float
    engagement_multiple: float
    views_per_hour: Optional[float]
    outlier_score: float

    @property
    def is_outlier(self) -> bool:
        return bool(self.types)

    @property
    def primary_type(self) -> Optional[str]:
        for t in TYPE_PRIORITY:
            if t in self.types:
                return t
        return None

    def ordered_types(self) -> List[str]:
        return [t for t in TYPE_PRIORITY if t in self.types]


@dataclass
class FlaggedVideo:
    """An outlier video plus the metrics denormalized into snapshots and the ledger."""
    sample: VideoSample
    verdict: OutlierVerdict
    rank_position: int            # position in the upstream chart (1-based)
    percentile: float             # chart position as a percentile (top = 100)
    views_vs_baseline: float
    engagement_vs_baseline: float
    title_features: Dict = field(default_factory=dict)
    detected_reasons: List[str] = field(default_factory=list)

    @property
    def video_id(self) -> str:
        return self.sample.video_id

    def metrics(self) -> Dict:
        """Metrics snapshot stored alongside the ledger entry."""
        s = self.sample
        return {
            "views": s.views,
            "likes": s.likes,
            "comments": s.comments,
            "engagement_rate": round(s.engagement_rate, 6),
            "deviation_score": round(self.verdict.deviation_score, 4),
            "engagement_multiple": round(self.verdict.engagement_multiple, 4),
            "views_per_hour": (
                round(self.verdict.views_per_hour, 2)
                if self.verdict.views_per_hour is not None else None
            ),
            "views_vs_baseline": round(self.views_vs_baseline, 4),
            "engagement_vs_baseline": round(self.engagement_vs_baseline, 4),
            "outlier_types": self.verdict.ordered_types(),
            "rank_position": self.rank_position,
            "title": s.title,
            "channel_id": s.channel_id,
            "channel_title": s.channel_title,
            "thumbnail_url": s.thumbnail_url,
            "published_at": s.published_at.isoformat() if s.published_at else None,
            "collected_at": s.collected_at.isoformat() if s.collected_at else None,
            "title_features": self.title_features,
            "detected_reasons": self.detected_reasons,
        }


def views_per_hour(sample: VideoSample) -> Optional[float]:
    """Views per hour since publish, or None when elapsed time is unknown or <= 0."""
    if sample.published_at is None or sample.collected_at is None:
        return None
    elapsed_hours = (sample.collected_at - sample.published_at).total_seconds() / 3600
    if elapsed_hours <= 0:
        # Published "in the future" (clock skew): not eligible
        return None
    return sample.views / elapsed_hours


def analyze_title(title: str) -> Dict:
    """Cheap title heuristics kept with each outlier for pattern review."""
    title = title or ""
    has_emojis = bool(EMOJI_RE.search(title))
    has_how_to = bool(HOW_TO_RE.search(title))
    has_number = bool(DIGIT_RE.search(title))

    if has_emojis:
        thumbnail_type = "text_heavy"
    elif has_how_to:
        thumbnail_type = "tutorial"
    elif has_number:
        thumbnail_type = "listicle"
    else:
        thumbnail_type = "unknown"

    return {
        "title_length": len(title),
        "title_emojis": has_emojis,
        "has_how_to": has_how_to,
        "has_number": has_number,
        "thumbnail_type": thumbnail_type,
    }


def detected_reasons(verdict: OutlierVerdict, engagement_vs_baseline: float,
                     title_features: Dict) -> List[str]:
    """Human-readable tags explaining why a video stands out."""
    reasons = []
    if verdict.outlier_score > 3:
        reasons.append("exceptional_performance")
    if engagement_vs_baseline > 1.5:
        reasons.append("high_engagement")
    if title_features.get("title_length", 0) < 50:
        reasons.append("concise_title")
    if title_features.get("has_number"):
        reasons.append("numbered_title")
    return reasons


class OutlierDetector:
    """
    Classifies every video in a cohort against that cohort's baseline.

    Process:
    1. Compute z-score of views against the baseline (spread floored at epsilon)
    2. Compare engagement rate to the cohort mean
    3. Compute views/hour since publish where timestamps allow
    4. Union every triggered type into the verdict
    """

    def __init__(self, thresholds: OutlierThresholds = None):
        self.thresholds = thresholds or OutlierThresholds()

    def detect(self, samples: List[VideoSample],
               baseline: CohortBaseline) -> List[Tuple[VideoSample, OutlierVerdict]]:
        """Return (sample, verdict) for every sample, in input order."""
        results = [(s, self.score(s, baseline)) for s in samples]
        flagged = sum(1 for _, v in results if v.is_outlier)
        logger.debug(f"Detector: {flagged}/{len(samples)} samples flagged")
        return results

    def score(self, sample: VideoSample, baseline: CohortBaseline) -> OutlierVerdict:
        """Classify one sample."""
        t = self.thresholds
        types = set()
        strengths = []

        spread = max(baseline.std_dev_views, SPREAD_EPSILON)
        deviation = (sample.views - baseline.mean_views) / spread
        if deviation >= t.view_spike_z and sample.views > t.view_spike_min_views:
            types.add(VIEW_SPIKE)
            strengths.append(deviation / t.view_spike_z)

        rate = sample.engagement_rate
        if baseline.mean_engagement_rate > 0:
            multiple = rate / baseline.mean_engagement_rate
        else:
            multiple = 0.0
        if multiple >= t.engagement_spike_multiple:
            types.add(ENGAGEMENT_SPIKE)
            strengths.append(multiple / t.engagement_spike_multiple)

        vph = views_per_hour(sample)
        if vph is not None and vph > t.rapid_growth_rate_per_hour:
            types.add(RAPID_GROWTH)
            strengths.append(vph / t.rapid_growth_rate_per_hour)

        return OutlierVerdict(
            types=frozenset(types),
            deviation_score=deviation,
            engagement_multiple=multiple,
            views_per_hour=vph,
            outlier_score=max(strengths) if strengths else 0.0,
        )

    def flag(self, results: List[Tuple[VideoSample, OutlierVerdict]],
             baseline: CohortBaseline) -> List[FlaggedVideo]:
        """
        Keep only outliers and attach denormalized metrics.

        Rank and percentile describe the sample's position in the upstream
        chart, so they are computed over the full result list. Output is
        sorted by outlier score, highest first.
        """
        total = len(results)
        flagged = []

        for i, (sample, verdict) in enumerate(results):
            if not verdict.is_outlier:
                continue

            views_vs = sample.views / baseline.mean_views if baseline.mean_views else 0.0
            eng_vs = (
                sample.engagement_rate / baseline.mean_engagement_rate
                if baseline.mean_engagement_rate else 0.0
            )
            features = analyze_title(sample.title)

            flagged.append(FlaggedVideo(
                sample=sample,
                verdict=verdict,
                rank_position=i + 1,
                percentile=round((1 - i / total) * 100, 2),
                views_vs_baseline=views_vs,
                engagement_vs_baseline=eng_vs,
                title_features=features,
                detected_reasons=detected_reasons(verdict, eng_vs, features),
            ))

        flagged.sort(key=lambda f: f.verdict.outlier_score, reverse=True)
        return flagged
