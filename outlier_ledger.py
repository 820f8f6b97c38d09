"""
Outlier Ledger — deduplicated registry of outlier videos across all runs.

One row per platform video id. Re-detection refreshes the metrics payload
and outlier type but keeps the first-seen timestamp and any human review
flags. Each upsert is a single INSERT ... ON CONFLICT statement, so two
runs flagging the same video serialize on that row (last writer wins on
the payload) without any cross-row locking.
"""

import json
import logging
import sqlite3
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from database_migrations import connect
from errors import NotFound

logger = logging.getLogger(__name__)


@dataclass
class OutlierRecord:
    """Current ledger state for one video."""
    video_id: str
    region_code: str
    category_id: Optional[str]
    outlier_type: str
    outlier_types: List[str]
    outlier_score: float
    metrics: Dict
    detected_at: str
    last_detected_at: str
    detection_count: int
    is_verified: bool = False
    is_false_positive: bool = False
    verified_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "OutlierRecord":
        return cls(
            video_id=row["video_id"],
            region_code=row["region_code"],
            category_id=row["category_id"],
            outlier_type=row["outlier_type"],
            outlier_types=json.loads(row["outlier_types"] or "[]"),
            outlier_score=row["outlier_score"],
            metrics=json.loads(row["metrics"] or "{}"),
            detected_at=row["detected_at"],
            last_detected_at=row["last_detected_at"],
            detection_count=row["detection_count"],
            is_verified=bool(row["is_verified"]),
            is_false_positive=bool(row["is_false_positive"]),
            verified_at=row["verified_at"],
        )

    def to_dict(self) -> Dict:
        return asdict(self)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class OutlierLedger:
    """Reads and writes the outlier_videos table."""

    def __init__(self, db_path=None):
        self.db_path = db_path

    def _get_conn(self):
        return connect(self.db_path)

    def upsert_outlier(self, video_id: str, region_code: str, outlier_type: str,
                       metrics: Dict, outlier_types: List[str] = None,
                       outlier_score: float = 0.0, category_id: str = None,
                       now: str = None) -> OutlierRecord:
        """Insert or refresh a ledger entry in its own transaction."""
        conn = self._get_conn()
        try:
            with conn:
                self.upsert_in(conn, video_id, region_code, outlier_type, metrics,
                               outlier_types=outlier_types,
                               outlier_score=outlier_score,
                               category_id=category_id, now=now)
            return self._fetch(conn, video_id)
        finally:
            conn.close()

    def upsert_in(self, conn: sqlite3.Connection, video_id: str, region_code: str,
                  outlier_type: str, metrics: Dict, outlier_types: List[str] = None,
                  outlier_score: float = 0.0, category_id: str = None,
                  now: str = None) -> None:
        """
        Upsert on a caller-owned connection, so the snapshot writer can
        include ledger updates in its own transaction. Does not commit.
        """
        now = now or _utcnow()
        types = outlier_types or [outlier_type]

        conn.execute("""
            INSERT INTO outlier_videos
                (video_id, region_code, category_id, outlier_type, outlier_types,
                 outlier_score, metrics, detected_at, last_detected_at,
                 detection_count, is_verified, is_false_positive)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1, 0, 0)
            ON CONFLICT(video_id) DO UPDATE SET
                outlier_type = excluded.outlier_type,
                outlier_types = excluded.outlier_types,
                outlier_score = excluded.outlier_score,
                metrics = excluded.metrics,
                last_detected_at = excluded.last_detected_at,
                detection_count = outlier_videos.detection_count + 1
        """, (
            video_id, region_code, category_id, outlier_type, json.dumps(types),
            float(outlier_score), json.dumps(metrics, default=str), now, now,
        ))

    def mark_verification(self, video_id: str, is_verified: Optional[bool] = None,
                          is_false_positive: Optional[bool] = None) -> OutlierRecord:
        """
        Set review flags on an existing entry.

        The flags are independent: callers wanting "verified clears false
        positive" must send both. Setting is_verified=True stamps verified_at.

        Raises:
            NotFound: if the video has no ledger entry.
        """
        assignments = []
        params = []
        if is_verified is not None:
            assignments.append("is_verified = ?")
            params.append(1 if is_verified else 0)
            if is_verified:
                assignments.append("verified_at = ?")
                params.append(_utcnow())
        if is_false_positive is not None:
            assignments.append("is_false_positive = ?")
            params.append(1 if is_false_positive else 0)

        conn = self._get_conn()
        try:
            with conn:
                if assignments:
                    cursor = conn.execute(
                        f"UPDATE outlier_videos SET {', '.join(assignments)} WHERE video_id = ?",
                        (*params, video_id),
                    )
                    if cursor.rowcount == 0:
                        raise NotFound("outlier", video_id)
            record = self._fetch(conn, video_id)
        finally:
            conn.close()

        logger.info(
            f"Outlier {video_id} review updated: verified={record.is_verified} "
            f"false_positive={record.is_false_positive}"
        )
        return record

    def get_outlier(self, video_id: str) -> OutlierRecord:
        """Return the ledger entry for a video, or raise NotFound."""
        conn = self._get_conn()
        try:
            return self._fetch(conn, video_id)
        finally:
            conn.close()

    def list_outliers(self, region_code: str, outlier_type: Optional[str] = None,
                      exclude_false_positive: bool = True, limit: int = 20,
                      offset: int = 0) -> Tuple[List[OutlierRecord], int]:
        """Page of ledger entries, newest first-detection first, plus total count."""
        where = ["region_code = ?"]
        params: list = [region_code]
        if exclude_false_positive:
            where.append("is_false_positive = 0")
        if outlier_type:
            where.append("outlier_type = ?")
            params.append(outlier_type)
        where_sql = " AND ".join(where)

        conn = self._get_conn()
        try:
            rows = conn.execute(f"""
                SELECT * FROM outlier_videos
                WHERE {where_sql}
                ORDER BY detected_at DESC, id DESC
                LIMIT ? OFFSET ?
            """, (*params, limit, offset)).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM outlier_videos WHERE {where_sql}", params
            ).fetchone()[0]
        finally:
            conn.close()

        return [OutlierRecord.from_row(r) for r in rows], total

    def _fetch(self, conn: sqlite3.Connection, video_id: str) -> OutlierRecord:
        row = conn.execute(
            "SELECT * FROM outlier_videos WHERE video_id = ?", (video_id,)
        ).fetchone()
        if not row:
            raise NotFound("outlier", video_id)
        return OutlierRecord.from_row(row)
