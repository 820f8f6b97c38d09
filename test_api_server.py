"""
API tests via the Flask test client.

The YouTube source is replaced with a fake; each test gets its own
temporary database.

Run: python -m pytest test_api_server.py -v
"""

import os
import shutil
import sqlite3
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from api_server import app
from collectors import BaseCollector, VideoSample
from database_migrations import run_migrations
from engine_settings import EngineSettings
from errors import SourceUnavailable
from outlier_ledger import OutlierLedger


def _sample(video_id, views, region="IN"):
    return VideoSample(
        video_id=video_id, channel_id="UC1", title=f"Video {video_id}",
        category_id="24", region_code=region, views=views,
    )


SPIKE_COHORT = [_sample(f"q{i}", 1_000) for i in range(10)] + [_sample("hit", 900_000)]


class FakeSource(BaseCollector):

    def __init__(self, samples=None, error=None):
        self.samples = samples if samples is not None else list(SPIKE_COHORT)
        self.error = error
        self.calls = []

    def fetch_trending(self, region_code, category_id=None, max_results=50):
        self.calls.append(("trending", region_code, category_id, max_results))
        if self.error:
            raise self.error
        return list(self.samples)

    def search_videos(self, keyword, region_code, max_results=50):
        self.calls.append(("search", keyword, region_code, max_results))
        return list(self.samples)

    def list_categories(self, region_code):
        return [{"id": "20", "name": "Gaming", "assignable": True}]

    def health_check(self):
        return True


class ApiTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.db_path = Path(self.tmpdir) / "test.db"
        run_migrations(self.db_path)
        app.config.update(
            TESTING=True,
            DB_PATH=self.db_path,
            ENGINE_SETTINGS=EngineSettings(default_region="IN"),
        )
        self.client = app.test_client()
        self.source = FakeSource()
        self.source_patch = patch("api_server.create_youtube_collector",
                                  return_value=self.source)
        self.source_patch.start()

    def tearDown(self):
        self.source_patch.stop()
        app.config.pop("DB_PATH", None)
        app.config.pop("ENGINE_SETTINGS", None)
        shutil.rmtree(self.tmpdir, ignore_errors=True)


class TestHealth(ApiTestCase):

    def test_health(self):
        resp = self.client.get("/api/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json(), {"status": "ok"})


class TestTrendsEndpoint(ApiTestCase):

    def test_post_collects_and_clamps(self):
        resp = self.client.post("/api/youtube/trends",
                                json={"regionCode": "IN", "maxResults": 500})
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertTrue(data["success"])
        self.assertEqual(data["maxResults"], 50)
        self.assertEqual(data["outlierCount"], 1)
        self.assertEqual(self.source.calls[0][3], 50)

    def test_post_without_body_uses_defaults(self):
        resp = self.client.post("/api/youtube/trends")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.source.calls[0][:2], ("trending", "IN"))

    def test_get_snapshot_action(self):
        resp = self.client.get("/api/youtube/trends?action=snapshot&regionCode=IN&category=GAMING")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.source.calls[0][2], "20")
        self.assertIn("snapshotId", resp.get_json())

    def test_get_categories(self):
        resp = self.client.get("/api/youtube/trends?action=categories&regionCode=US")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["categories"][0]["name"], "Gaming")

    def test_get_search(self):
        resp = self.client.get("/api/youtube/trends?action=search&keyword=chai")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["snapshot"]["snapshot_type"], "search")

    def test_search_without_keyword_is_400(self):
        resp = self.client.get("/api/youtube/trends?action=search")
        self.assertEqual(resp.status_code, 400)

    def test_unknown_action(self):
        resp = self.client.get("/api/youtube/trends?action=explode")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json(), {"error": "Invalid action"})

    def test_bad_region_is_400(self):
        resp = self.client.post("/api/youtube/trends", json={"regionCode": "INDIA"})
        self.assertEqual(resp.status_code, 400)

    def test_bad_max_results_type_is_400(self):
        resp = self.client.post("/api/youtube/trends", json={"maxResults": "lots"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error"], "Invalid request")

    def test_upstream_failure_is_generic_500(self):
        self.source.error = SourceUnavailable("HTTP 403 quotaExceeded key=secret")
        with self.assertLogs("api_server", level="ERROR"):
            resp = self.client.post("/api/youtube/trends", json={})
        self.assertEqual(resp.status_code, 500)
        self.assertNotIn("secret", resp.get_json()["error"])
        self.assertNotIn("quota", resp.get_json()["error"])

    def test_missing_api_key_is_500(self):
        with patch("api_server.create_youtube_collector",
                   side_effect=SourceUnavailable("YOUTUBE_API_KEY not set")):
            with self.assertLogs("api_server", level="ERROR"):
                resp = self.client.post("/api/youtube/trends", json={})
        self.assertEqual(resp.status_code, 500)


class TestOutliersEndpoint(ApiTestCase):

    def setUp(self):
        super().setUp()
        self.client.post("/api/youtube/trends", json={"regionCode": "IN"})

    def test_list(self):
        resp = self.client.get("/api/youtube/outliers?regionCode=IN")
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertEqual(data["total"], 1)
        self.assertEqual(data["limit"], 20)
        self.assertEqual(data["offset"], 0)
        self.assertEqual(data["outliers"][0]["video_id"], "hit")

    def test_filter_by_type(self):
        resp = self.client.get("/api/youtube/outliers?type=engagement_spike")
        self.assertEqual(resp.get_json()["total"], 0)

    def test_unknown_type_is_400(self):
        resp = self.client.get("/api/youtube/outliers?type=bogus")
        self.assertEqual(resp.status_code, 400)

    def test_verify(self):
        resp = self.client.put("/api/youtube/outliers",
                               json={"videoId": "hit", "isVerified": True})
        self.assertEqual(resp.status_code, 200)
        outlier = resp.get_json()["outlier"]
        self.assertTrue(outlier["is_verified"])
        self.assertIsNotNone(outlier["verified_at"])

    def test_false_positive_hidden_by_default(self):
        resp = self.client.put("/api/youtube/outliers",
                               json={"youtubeVideoId": "hit", "isFalsePositive": True})
        self.assertEqual(resp.status_code, 200)

        self.assertEqual(self.client.get("/api/youtube/outliers").get_json()["total"], 0)
        resp = self.client.get("/api/youtube/outliers?includeFalsePositives=true")
        self.assertEqual(resp.get_json()["total"], 1)

    def test_verify_missing_video_is_404(self):
        resp = self.client.put("/api/youtube/outliers",
                               json={"videoId": "ghost", "isVerified": True})
        self.assertEqual(resp.status_code, 404)

    def test_verify_without_video_id_is_400(self):
        resp = self.client.put("/api/youtube/outliers", json={"isVerified": True})
        self.assertEqual(resp.status_code, 400)

    def test_storage_failure_is_generic_500(self):
        with patch.object(OutlierLedger, "list_outliers",
                          side_effect=sqlite3.OperationalError("database is locked")):
            with self.assertLogs("api_server", level="ERROR"):
                resp = self.client.get("/api/youtube/outliers")
        self.assertEqual(resp.status_code, 500)
        self.assertNotIn("locked", resp.get_json()["error"])


class TestSnapshotsEndpoint(ApiTestCase):

    def test_page_and_trend_data(self):
        for _ in range(3):
            self.client.post("/api/youtube/trends", json={"regionCode": "IN"})

        resp = self.client.get("/api/youtube/snapshots?regionCode=IN&limit=2")
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertEqual(data["total"], 3)
        self.assertEqual(len(data["snapshots"]), 2)
        self.assertEqual(data["limit"], 2)
        self.assertEqual(len(data["trendData"]["avgViews"]), 3)
        self.assertEqual(len(data["trendData"]["outlierCount"]), 3)
        self.assertEqual(data["snapshots"][0]["flagged"][0]["video_id"], "hit")

    def test_empty_cohort(self):
        resp = self.client.get("/api/youtube/snapshots?regionCode=JP")
        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertEqual(data["snapshots"], [])
        self.assertEqual(data["trendData"]["avgViews"], [])

    def test_negative_offset_is_400(self):
        resp = self.client.get("/api/youtube/snapshots?offset=-1")
        self.assertEqual(resp.status_code, 400)


class TestTopicsEndpoint(ApiTestCase):

    def _create(self, **overrides):
        body = {"topic": "Monsoon recipes", "category": "Food", "growth": 12.5}
        body.update(overrides)
        return self.client.post("/api/youtube/topics", json=body)

    def test_create_and_get(self):
        resp = self._create(contentIdeas=["Chai"], isViral=True)
        self.assertEqual(resp.status_code, 201)
        topic = resp.get_json()["trendingTopic"]
        self.assertEqual(topic["source_type"], "youtube_trending")
        self.assertTrue(topic["is_viral"])

        resp = self.client.get(f"/api/youtube/topics/{topic['id']}")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["trendingTopic"]["content_ideas"], ["Chai"])

    def test_create_requires_topic_and_category(self):
        resp = self.client.post("/api/youtube/topics", json={"topic": "No category"})
        self.assertEqual(resp.status_code, 400)

    def test_list_with_filters(self):
        self._create(topic="A", isViral=True, growth=50)
        self._create(topic="B", growth=10)
        self._create(topic="C", category="Tech", nicheId="ai")

        data = self.client.get("/api/youtube/topics?category=Food").get_json()
        self.assertEqual([t["topic"] for t in data["topics"]], ["A", "B"])
        data = self.client.get("/api/youtube/topics?viral=true").get_json()
        self.assertEqual(data["total"], 1)
        data = self.client.get("/api/youtube/topics?nicheId=ai").get_json()
        self.assertEqual(data["topics"][0]["topic"], "C")

    def test_replace_and_delete(self):
        topic_id = self._create().get_json()["trendingTopic"]["id"]

        resp = self.client.put(f"/api/youtube/topics/{topic_id}",
                               json={"topic": "Renamed", "category": "Food",
                                     "sourceType": "manual"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["trendingTopic"]["topic"], "Renamed")
        self.assertIsNone(resp.get_json()["trendingTopic"]["growth"])

        self.assertEqual(self.client.delete(f"/api/youtube/topics/{topic_id}").status_code, 200)
        self.assertEqual(self.client.get(f"/api/youtube/topics/{topic_id}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/youtube/topics/{topic_id}").status_code, 404)

    def test_replace_missing_is_404(self):
        resp = self.client.put("/api/youtube/topics/ghost",
                               json={"topic": "X", "category": "Y"})
        self.assertEqual(resp.status_code, 404)

    def test_non_object_body_is_400(self):
        resp = self.client.post("/api/youtube/topics", json=["not", "an", "object"])
        self.assertEqual(resp.status_code, 400)


if __name__ == '__main__':
    unittest.main(verbosity=2)
