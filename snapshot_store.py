"""
Snapshot Store — append-only history of collection runs.

Each run writes exactly one trend_snapshots row plus its embedded flagged
videos, and (when a ledger is passed) the ledger upserts for those videos,
all in one transaction. Readers never see a snapshot without its flagged
list. Snapshots are never updated after they are written.
"""

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from baseline import CohortBaseline
from database_migrations import connect
from errors import NotFound
from outlier_detector import FlaggedVideo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CohortKey:
    """(region, category, snapshot type): the group sharing one baseline."""
    region_code: str
    category_id: Optional[str]
    snapshot_type: str

    def label(self) -> str:
        return f"{self.region_code}/{self.category_id or 'all'}/{self.snapshot_type}"


@dataclass
class Snapshot:
    """One immutable collection-run record."""
    id: str
    captured_at: str
    region_code: str
    category_id: Optional[str]
    snapshot_type: str
    total_videos: int
    avg_views: float
    median_views: float
    std_dev_views: float
    avg_likes: float
    avg_engagement_rate: float
    outlier_count: int
    p75_views: float = 0.0
    p90_views: float = 0.0
    query_keyword: Optional[str] = None
    flagged: List[Dict] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: sqlite3.Row, flagged: List[Dict] = None) -> "Snapshot":
        return cls(
            id=row["id"],
            captured_at=row["captured_at"],
            region_code=row["region_code"],
            category_id=row["category_id"],
            snapshot_type=row["snapshot_type"],
            total_videos=row["total_videos"],
            avg_views=row["avg_views"],
            median_views=row["median_views"],
            std_dev_views=row["std_dev_views"],
            avg_likes=row["avg_likes"],
            avg_engagement_rate=row["avg_engagement_rate"],
            outlier_count=row["outlier_count"],
            p75_views=row["p75_views"],
            p90_views=row["p90_views"],
            query_keyword=row["query_keyword"],
            flagged=flagged or [],
        )

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "captured_at": self.captured_at,
            "region_code": self.region_code,
            "category_id": self.category_id,
            "snapshot_type": self.snapshot_type,
            "query_keyword": self.query_keyword,
            "total_videos": self.total_videos,
            "avg_views": self.avg_views,
            "median_views": self.median_views,
            "std_dev_views": self.std_dev_views,
            "avg_likes": self.avg_likes,
            "avg_engagement_rate": self.avg_engagement_rate,
            "p75_views": self.p75_views,
            "p90_views": self.p90_views,
            "outlier_count": self.outlier_count,
            "flagged": self.flagged,
        }


@dataclass(frozen=True)
class SeriesPoint:
    captured_at: str
    avg_views: float
    avg_engagement_rate: float
    outlier_count: int


def _flagged_from_row(row: sqlite3.Row) -> Dict:
    return {
        "video_id": row["video_id"],
        "position": row["position"],
        "rank_position": row["rank_position"],
        "percentile": row["percentile"],
        "view_count": row["view_count"],
        "like_count": row["like_count"],
        "comment_count": row["comment_count"],
        "engagement_rate": row["engagement_rate"],
        "outlier_type": row["outlier_type"],
        "outlier_types": json.loads(row["outlier_types"] or "[]"),
        "outlier_score": row["outlier_score"],
        "title": row["title"],
        "channel_id": row["channel_id"],
    }


class SnapshotStore:
    """Writes and reads trend snapshots."""

    def __init__(self, db_path=None, flagged_limit: int = 25):
        self.db_path = db_path
        self.flagged_limit = flagged_limit

    def _get_conn(self):
        return connect(self.db_path)

    def write_snapshot(self, cohort: CohortKey, baseline: CohortBaseline,
                       flagged: List[FlaggedVideo], ledger=None,
                       query_keyword: Optional[str] = None) -> Snapshot:
        """
        Persist one collection run atomically.

        Args:
            cohort: Cohort the baseline was computed for.
            baseline: Cohort statistics for this run.
            flagged: Outliers, highest score first. All count toward
                outlier_count; only the first flagged_limit are embedded.
            ledger: Optional OutlierLedger; when given, every flagged video is
                upserted inside the same transaction.
            query_keyword: Search term for 'search' snapshots.
        """
        snapshot_id = uuid.uuid4().hex
        conn = self._get_conn()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                captured_at = self._next_captured_at(conn, cohort)
                conn.execute("""
                    INSERT INTO trend_snapshots
                        (id, captured_at, region_code, category_id, snapshot_type,
                         query_keyword, total_videos, avg_views, median_views,
                         std_dev_views, avg_likes, avg_engagement_rate, p75_views, p90_views,
                         outlier_count)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    snapshot_id, captured_at, cohort.region_code, cohort.category_id,
                    cohort.snapshot_type, query_keyword, baseline.sample_count,
                    float(baseline.mean_views), float(baseline.median_views),
                    float(baseline.std_dev_views), float(baseline.mean_likes),
                    float(baseline.mean_engagement_rate),
                    float(baseline.p75_views), float(baseline.p90_views), len(flagged),
                ))

                for position, item in enumerate(flagged[:self.flagged_limit], 1):
                    s = item.sample
                    conn.execute("""
                        INSERT INTO snapshot_videos
                            (snapshot_id, video_id, position, rank_position, percentile,
                             view_count, like_count, comment_count, engagement_rate,
                             outlier_type, outlier_types, outlier_score, title, channel_id)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, (
                        snapshot_id, s.video_id, position, item.rank_position,
                        item.percentile, s.views, s.likes, s.comments,
                        round(s.engagement_rate, 6), item.verdict.primary_type,
                        json.dumps(item.verdict.ordered_types()),
                        round(item.verdict.outlier_score, 4), s.title, s.channel_id,
                    ))

                if ledger is not None:
                    for item in flagged:
                        ledger.upsert_in(
                            conn, item.video_id, cohort.region_code,
                            item.verdict.primary_type, item.metrics(),
                            outlier_types=item.verdict.ordered_types(),
                            outlier_score=item.verdict.outlier_score,
                            category_id=cohort.category_id or item.sample.category_id,
                            now=captured_at,
                        )

                conn.commit()
            except BaseException:
                conn.rollback()
                raise

            snapshot = self._load(conn, snapshot_id)
        finally:
            conn.close()

        logger.info(
            f"Snapshot {snapshot_id} written for {cohort.label()}: "
            f"{snapshot.total_videos} videos, {snapshot.outlier_count} outliers"
        )
        return snapshot

    def _next_captured_at(self, conn: sqlite3.Connection, cohort: CohortKey) -> str:
        """Now, but never earlier than the cohort's latest snapshot."""
        now = datetime.now(timezone.utc).isoformat()
        row = conn.execute("""
            SELECT MAX(captured_at) FROM trend_snapshots
            WHERE region_code = ? AND category_id IS ? AND snapshot_type = ?
        """, (cohort.region_code, cohort.category_id, cohort.snapshot_type)).fetchone()
        latest = row[0] if row else None
        if latest and latest > now:
            logger.warning(f"Clock behind latest {cohort.label()} snapshot; reusing {latest}")
            return latest
        return now

    def get_snapshot(self, snapshot_id: str) -> Snapshot:
        conn = self._get_conn()
        try:
            return self._load(conn, snapshot_id)
        finally:
            conn.close()

    def list_snapshots(self, region_code: str, snapshot_type: str,
                       category_id: Optional[str] = None, limit: int = 10,
                       offset: int = 0) -> Tuple[List[Snapshot], int]:
        """Page of snapshots, newest first, plus the total matching count."""
        where_sql, params = self._cohort_filter(region_code, snapshot_type, category_id)

        conn = self._get_conn()
        try:
            rows = conn.execute(f"""
                SELECT * FROM trend_snapshots
                WHERE {where_sql}
                ORDER BY captured_at DESC, rowid DESC
                LIMIT ? OFFSET ?
            """, (*params, limit, offset)).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM trend_snapshots WHERE {where_sql}", params
            ).fetchone()[0]

            snapshots = [
                Snapshot.from_row(row, self._flagged_for(conn, row["id"]))
                for row in rows
            ]
        finally:
            conn.close()

        return snapshots, total

    def series_for(self, region_code: str, snapshot_type: str,
                   category_id: Optional[str] = None,
                   window_size: int = 30) -> List[SeriesPoint]:
        """Aggregates for the most recent window_size snapshots, oldest first."""
        if window_size <= 0:
            return []
        where_sql, params = self._cohort_filter(region_code, snapshot_type, category_id)

        conn = self._get_conn()
        try:
            rows = conn.execute(f"""
                SELECT captured_at, avg_views, avg_engagement_rate, outlier_count
                FROM trend_snapshots
                WHERE {where_sql}
                ORDER BY captured_at DESC, rowid DESC
                LIMIT ?
            """, (*params, window_size)).fetchall()
        finally:
            conn.close()

        return [
            SeriesPoint(
                captured_at=row["captured_at"],
                avg_views=row["avg_views"],
                avg_engagement_rate=row["avg_engagement_rate"],
                outlier_count=row["outlier_count"],
            )
            for row in reversed(rows)
        ]

    @staticmethod
    def _cohort_filter(region_code: str, snapshot_type: str,
                       category_id: Optional[str]) -> Tuple[str, list]:
        # No category means "every category" for reads
        where = ["region_code = ?", "snapshot_type = ?"]
        params = [region_code, snapshot_type]
        if category_id:
            where.append("category_id = ?")
            params.append(category_id)
        return " AND ".join(where), params

    def _flagged_for(self, conn: sqlite3.Connection, snapshot_id: str) -> List[Dict]:
        rows = conn.execute("""
            SELECT * FROM snapshot_videos
            WHERE snapshot_id = ?
            ORDER BY position ASC
        """, (snapshot_id,)).fetchall()
        return [_flagged_from_row(r) for r in rows]

    def _load(self, conn: sqlite3.Connection, snapshot_id: str) -> Snapshot:
        row = conn.execute(
            "SELECT * FROM trend_snapshots WHERE id = ?", (snapshot_id,)
        ).fetchone()
        if not row:
            raise NotFound("snapshot", snapshot_id)
        return Snapshot.from_row(row, self._flagged_for(conn, snapshot_id))
