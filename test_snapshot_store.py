"""
Tests for the snapshot store: atomic writes, ledger upserts in the same
transaction, newest-first pagination and the series read path.

Run: python -m pytest test_snapshot_store.py -v
"""

import os
import shutil
import sqlite3
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from baseline import compute_baseline
from collectors import VideoSample
from database_migrations import run_migrations
from errors import NotFound
from outlier_detector import OutlierDetector
from outlier_ledger import OutlierLedger
from snapshot_store import CohortKey, SnapshotStore


def _sample(video_id, views, likes=0):
    return VideoSample(
        video_id=video_id, channel_id="UC1", title=f"Video {video_id}",
        category_id="24", region_code="IN", views=views, likes=likes,
    )


def _flag(samples):
    baseline = compute_baseline(samples, "IN", "24")
    detector = OutlierDetector()
    return baseline, detector.flag(detector.detect(samples, baseline), baseline)


def _cohort_with_spikes(n_spikes):
    """Twenty quiet videos plus n_spikes big ones, all view spikes."""
    samples = [_sample(f"quiet{i}", 1_000) for i in range(20)]
    samples += [_sample(f"spike{i}", 400_000 + i * 10_000) for i in range(n_spikes)]
    return samples


def _count(db_path, table):
    conn = sqlite3.connect(str(db_path))
    try:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        conn.close()


class _FailingLedger(OutlierLedger):
    """Ledger that fails on its second upsert, mid-transaction."""

    def __init__(self, db_path):
        super().__init__(db_path)
        self.calls = 0

    def upsert_in(self, conn, *args, **kwargs):
        self.calls += 1
        if self.calls == 2:
            raise sqlite3.OperationalError("disk I/O error")
        return super().upsert_in(conn, *args, **kwargs)


class SnapshotStoreTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.db_path = Path(self.tmpdir) / "test.db"
        run_migrations(self.db_path)
        self.store = SnapshotStore(self.db_path)
        self.ledger = OutlierLedger(self.db_path)
        self.cohort = CohortKey("IN", "24", "trending")

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)


class TestWriteSnapshot(SnapshotStoreTestCase):

    def test_three_flagged_means_three_ledger_rows_one_snapshot(self):
        baseline, flagged = _flag(_cohort_with_spikes(3))
        self.assertEqual(len(flagged), 3)

        snapshot = self.store.write_snapshot(self.cohort, baseline, flagged,
                                             ledger=self.ledger)

        self.assertEqual(_count(self.db_path, "trend_snapshots"), 1)
        self.assertEqual(_count(self.db_path, "outlier_videos"), 3)
        self.assertEqual(snapshot.outlier_count, 3)
        self.assertEqual(len(snapshot.flagged), 3)
        self.assertEqual(snapshot.total_videos, 23)
        self.assertEqual(snapshot.category_id, "24")

    def test_flagged_embedded_in_score_order(self):
        baseline, flagged = _flag(_cohort_with_spikes(3))
        snapshot = self.store.write_snapshot(self.cohort, baseline, flagged)

        scores = [f["outlier_score"] for f in snapshot.flagged]
        self.assertEqual(scores, sorted(scores, reverse=True))
        self.assertEqual([f["position"] for f in snapshot.flagged], [1, 2, 3])
        self.assertEqual(snapshot.flagged[0]["outlier_types"], ["view_spike"])

    def test_no_ledger_writes_for_non_outliers(self):
        samples = [_sample(f"v{i}", 1_000) for i in range(5)]
        baseline, flagged = _flag(samples)
        snapshot = self.store.write_snapshot(self.cohort, baseline, flagged,
                                             ledger=self.ledger)
        self.assertEqual(snapshot.outlier_count, 0)
        self.assertEqual(snapshot.flagged, [])
        self.assertEqual(_count(self.db_path, "outlier_videos"), 0)

    def test_embedded_list_capped_but_count_is_full(self):
        store = SnapshotStore(self.db_path, flagged_limit=2)
        baseline, flagged = _flag(_cohort_with_spikes(3))
        snapshot = store.write_snapshot(self.cohort, baseline, flagged, ledger=self.ledger)

        self.assertEqual(snapshot.outlier_count, 3)
        self.assertEqual(len(snapshot.flagged), 2)
        self.assertEqual(_count(self.db_path, "outlier_videos"), 3)

    def test_failure_mid_write_leaves_nothing_behind(self):
        baseline, flagged = _flag(_cohort_with_spikes(3))
        with self.assertRaises(sqlite3.OperationalError):
            self.store.write_snapshot(self.cohort, baseline, flagged,
                                      ledger=_FailingLedger(self.db_path))

        self.assertEqual(_count(self.db_path, "trend_snapshots"), 0)
        self.assertEqual(_count(self.db_path, "snapshot_videos"), 0)
        self.assertEqual(_count(self.db_path, "outlier_videos"), 0)

    def test_captured_at_never_goes_backwards(self):
        """A snapshot written with a lagging clock reuses the cohort's latest time."""
        future = "2999-01-01T00:00:00+00:00"
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("""
            INSERT INTO trend_snapshots
                (id, captured_at, region_code, category_id, snapshot_type, total_videos,
                 avg_views, median_views, std_dev_views, avg_likes,
                 avg_engagement_rate, outlier_count)
            VALUES ('future', ?, 'IN', '24', 'trending', 1, 1, 1, 0, 0, 0, 0)
        """, (future,))
        conn.commit()
        conn.close()

        baseline, flagged = _flag([_sample("a", 100)])
        snapshot = self.store.write_snapshot(self.cohort, baseline, flagged)
        self.assertEqual(snapshot.captured_at, future)

    def test_search_snapshot_keeps_keyword(self):
        baseline, flagged = _flag([_sample("a", 100), _sample("b", 200)])
        snapshot = self.store.write_snapshot(
            CohortKey("IN", None, "search"), baseline, flagged, query_keyword="chai",
        )
        loaded = self.store.get_snapshot(snapshot.id)
        self.assertEqual(loaded.snapshot_type, "search")
        self.assertEqual(loaded.query_keyword, "chai")
        self.assertIsNone(loaded.category_id)

    def test_get_missing_snapshot(self):
        with self.assertRaises(NotFound):
            self.store.get_snapshot("nope")

    def test_view_percentiles_persisted(self):
        samples = [_sample(f"v{i}", (i + 1) * 100) for i in range(10)]
        baseline, flagged = _flag(samples)
        snapshot = self.store.write_snapshot(self.cohort, baseline, flagged)

        loaded = self.store.get_snapshot(snapshot.id)
        self.assertEqual(loaded.p75_views, 800.0)
        self.assertEqual(loaded.p90_views, 900.0)
        self.assertEqual(loaded.to_dict()["p90_views"], 900.0)

        listed, _ = self.store.list_snapshots("IN", "trending", "24")
        self.assertEqual(listed[0].p75_views, 800.0)


class TestPercentileColumnsMigration(unittest.TestCase):
    """Databases created before p75/p90 were stored get the columns added."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.db_path = Path(self.tmpdir) / "old.db"
        conn = sqlite3.connect(str(self.db_path))
        conn.execute("""
            CREATE TABLE trend_snapshots (
                id TEXT PRIMARY KEY,
                captured_at TEXT NOT NULL,
                region_code TEXT NOT NULL,
                category_id TEXT,
                snapshot_type TEXT NOT NULL,
                query_keyword TEXT,
                total_videos INTEGER NOT NULL,
                avg_views REAL NOT NULL,
                median_views REAL NOT NULL,
                std_dev_views REAL NOT NULL,
                avg_likes REAL NOT NULL,
                avg_engagement_rate REAL NOT NULL,
                outlier_count INTEGER NOT NULL
            )
        """)
        conn.execute("""
            INSERT INTO trend_snapshots
                (id, captured_at, region_code, category_id, snapshot_type, total_videos,
                 avg_views, median_views, std_dev_views, avg_likes,
                 avg_engagement_rate, outlier_count)
            VALUES ('old', '2024-01-01T00:00:00+00:00', 'IN', '24', 'trending',
                    1, 1, 1, 0, 0, 0, 0)
        """)
        conn.commit()
        conn.close()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _columns(self):
        conn = sqlite3.connect(str(self.db_path))
        try:
            return [r[1] for r in conn.execute("PRAGMA table_info(trend_snapshots)")]
        finally:
            conn.close()

    def test_columns_added_and_rerun_is_safe(self):
        run_migrations(self.db_path)
        run_migrations(self.db_path)

        columns = self._columns()
        self.assertIn("p75_views", columns)
        self.assertIn("p90_views", columns)

        old = SnapshotStore(self.db_path).get_snapshot("old")
        self.assertEqual(old.p75_views, 0)
        self.assertEqual(old.p90_views, 0)


class TestListSnapshots(SnapshotStoreTestCase):

    def _write(self, cohort, views):
        baseline, flagged = _flag([_sample("a", views), _sample("b", views)])
        return self.store.write_snapshot(cohort, baseline, flagged)

    def test_newest_first_with_total(self):
        ids = [self._write(self.cohort, v).id for v in (100, 200, 300)]

        page, total = self.store.list_snapshots("IN", "trending", category_id="24")
        self.assertEqual(total, 3)
        self.assertEqual([s.id for s in page], list(reversed(ids)))

    def test_pagination(self):
        ids = [self._write(self.cohort, v).id for v in (100, 200, 300, 400)]

        page, total = self.store.list_snapshots("IN", "trending", limit=2, offset=1)
        self.assertEqual(total, 4)
        self.assertEqual([s.id for s in page], [ids[2], ids[1]])

    def test_filters_by_cohort(self):
        self._write(self.cohort, 100)
        self._write(CohortKey("IN", "20", "trending"), 100)
        self._write(CohortKey("US", "24", "trending"), 100)
        self._write(CohortKey("IN", "24", "search"), 100)

        _, gaming_total = self.store.list_snapshots("IN", "trending", category_id="20")
        self.assertEqual(gaming_total, 1)
        # No category: every IN trending snapshot
        _, all_total = self.store.list_snapshots("IN", "trending")
        self.assertEqual(all_total, 2)

    def test_empty_cohort(self):
        page, total = self.store.list_snapshots("JP", "trending")
        self.assertEqual(page, [])
        self.assertEqual(total, 0)


class TestSeriesFor(SnapshotStoreTestCase):

    def _write(self, views):
        baseline, flagged = _flag([_sample("a", views), _sample("b", views)])
        return self.store.write_snapshot(self.cohort, baseline, flagged)

    def test_ascending_window_of_most_recent(self):
        for v in (100, 200, 300, 400, 500):
            self._write(v)

        points = self.store.series_for("IN", "trending", category_id="24", window_size=3)
        self.assertEqual([p.avg_views for p in points], [300, 400, 500])
        stamps = [p.captured_at for p in points]
        self.assertEqual(stamps, sorted(stamps))

    def test_empty_cohort_is_empty_list(self):
        self.assertEqual(self.store.series_for("IN", "trending"), [])

    def test_non_positive_window(self):
        self._write(100)
        self.assertEqual(self.store.series_for("IN", "trending", window_size=0), [])


if __name__ == '__main__':
    unittest.main(verbosity=2)
