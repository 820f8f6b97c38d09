"""
API Server — JSON endpoints over the trend outlier engine.

Routes:
  GET  /api/health
  GET  /api/youtube/outliers       ledger page (false positives hidden by default)
  PUT  /api/youtube/outliers       set review flags on one ledger entry
  GET  /api/youtube/snapshots      snapshot page + trendData series
  GET  /api/youtube/trends         action=snapshot|search|categories
  POST /api/youtube/trends         trigger a collection run
  GET/POST        /api/youtube/topics
  GET/PUT/DELETE  /api/youtube/topics/<topic_id>

Usage:
    python api_server.py                  # runs on http://localhost:5000
    python api_server.py --port 8080      # custom port
"""

import argparse
import logging
import sqlite3

from flask import Flask, jsonify, request
from pydantic import ValidationError as RequestValidationError

import config
from api_schemas import (
    CollectTrendsRequest, OutlierListQuery, OutlierVerificationRequest,
    SnapshotListQuery, TopicListQuery, TopicRequest, TrendsQuery,
)
from collectors.youtube import create_youtube_collector, validate_region_code
from database_migrations import run_migrations
from engine_settings import EngineSettings, load_settings
from errors import (
    InvalidCategory, InvalidRegion, NotFound, SourceUnavailable, ValidationError,
)
from outlier_ledger import OutlierLedger
from snapshot_store import SnapshotStore
from topic_store import TopicStore
from trend_collector import TrendCollector
from trend_series import TrendSeriesAggregator

app = Flask(__name__)
app.json.sort_keys = False

logger = logging.getLogger(__name__)

TREND_ACTIONS = ("snapshot", "search", "categories")


# ── Wiring ──

def get_settings() -> EngineSettings:
    """Engine settings for this app (app.config override, else settings.yaml)."""
    settings = app.config.get("ENGINE_SETTINGS")
    if settings is None:
        settings = load_settings()
        app.config["ENGINE_SETTINGS"] = settings
    return settings


def _db_path():
    return app.config.get("DB_PATH")


def _ledger() -> OutlierLedger:
    return OutlierLedger(_db_path())


def _snapshot_store() -> SnapshotStore:
    return SnapshotStore(_db_path(), flagged_limit=get_settings().flagged_per_snapshot)


def _topic_store() -> TopicStore:
    return TopicStore(_db_path())


def _trend_collector() -> TrendCollector:
    return TrendCollector(
        create_youtube_collector(), _snapshot_store(), _ledger(), get_settings()
    )


def _query_args() -> dict:
    """Query string as a plain dict, with empty values dropped."""
    return {k: v for k, v in request.args.items() if v != ""}


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def _error_response(e: Exception, action: str):
    """Map an exception to a JSON error; upstream and storage causes are logged, not returned."""
    if isinstance(e, RequestValidationError):
        details = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        return jsonify({"error": "Invalid request", "details": details}), 400
    if isinstance(e, (ValidationError, InvalidRegion, InvalidCategory)):
        return jsonify({"error": str(e)}), 400
    if isinstance(e, NotFound):
        return jsonify({"error": str(e)}), 404
    if isinstance(e, SourceUnavailable):
        logger.error(f"{action} failed, upstream unavailable: {e}")
        return jsonify({"error": f"{action} failed: upstream source unavailable"}), 500
    if isinstance(e, sqlite3.Error):
        logger.error(f"{action} failed, storage error: {e}")
        return jsonify({"error": f"{action} failed: storage error"}), 500
    logger.exception(f"{action} failed: {e}")
    return jsonify({"error": f"{action} failed"}), 500


# ── Health ──

@app.route("/api/health")
def api_health():
    return jsonify({"status": "ok"})


# ── Outliers ──

@app.route("/api/youtube/outliers", methods=["GET"])
def api_list_outliers():
    """Ledger entries for a region, newest first."""
    try:
        query = OutlierListQuery.model_validate(_query_args())
        region = validate_region_code(query.region_code or get_settings().default_region)
        outliers, total = _ledger().list_outliers(
            region,
            outlier_type=query.type,
            exclude_false_positive=not query.include_false_positives,
            limit=query.limit,
            offset=query.offset,
        )
        return jsonify({
            "outliers": [o.to_dict() for o in outliers],
            "total": total,
            "limit": query.limit,
            "offset": query.offset,
        })
    except Exception as e:
        return _error_response(e, "Outlier listing")


@app.route("/api/youtube/outliers", methods=["PUT"])
def api_verify_outlier():
    """Set isVerified / isFalsePositive on a ledger entry."""
    try:
        body = OutlierVerificationRequest.model_validate(_json_body())
        outlier = _ledger().mark_verification(
            body.video_id,
            is_verified=body.is_verified,
            is_false_positive=body.is_false_positive,
        )
        return jsonify({"outlier": outlier.to_dict()})
    except Exception as e:
        return _error_response(e, "Outlier update")


# ── Snapshots ──

@app.route("/api/youtube/snapshots")
def api_list_snapshots():
    """Snapshot page for a cohort plus the chartable series over its recent history."""
    try:
        settings = get_settings()
        query = SnapshotListQuery.model_validate(_query_args())
        region = validate_region_code(query.region_code or settings.default_region)
        snapshot_type = query.snapshot_type or settings.default_snapshot_type

        store = _snapshot_store()
        snapshots, total = store.list_snapshots(
            region, snapshot_type,
            category_id=query.category_id,
            limit=query.limit,
            offset=query.offset,
        )
        trend_data = TrendSeriesAggregator(store).build(
            region, snapshot_type,
            category_id=query.category_id,
            window_size=settings.series_window,
        )
        return jsonify({
            "snapshots": [s.to_dict() for s in snapshots],
            "total": total,
            "limit": query.limit,
            "offset": query.offset,
            "trendData": trend_data.to_dict(),
        })
    except Exception as e:
        return _error_response(e, "Snapshot listing")


# ── Trends ──

@app.route("/api/youtube/trends", methods=["GET"])
def api_trends():
    """Run a trending or search collection, or list categories."""
    action = request.args.get("action", "snapshot")
    if action not in TREND_ACTIONS:
        return jsonify({"error": "Invalid action"}), 400

    try:
        query = TrendsQuery.model_validate(_query_args())
        collector = _trend_collector()

        if action == "categories":
            categories = collector.list_categories(query.region_code)
            return jsonify({"categories": categories})

        if action == "search":
            result = collector.collect_search(
                query.keyword, region_code=query.region_code,
                max_results=query.max_results,
            )
            return jsonify(result.to_dict())

        result = collector.collect_trending(
            region_code=query.region_code,
            category_id=query.category,
            max_results=query.max_results,
        )
        return jsonify(result.to_dict())
    except Exception as e:
        return _error_response(e, "Trend collection")


@app.route("/api/youtube/trends", methods=["POST"])
def api_collect_trends():
    """Trigger one trending collection run."""
    try:
        body = CollectTrendsRequest.model_validate(_json_body())
        result = _trend_collector().collect_trending(
            region_code=body.region_code,
            category_id=body.category,
            max_results=body.max_results,
        )
        return jsonify({"success": True, **result.to_dict()})
    except Exception as e:
        return _error_response(e, "Trend collection")


# ── Topics ──

@app.route("/api/youtube/topics", methods=["GET"])
def api_list_topics():
    try:
        query = TopicListQuery.model_validate(_query_args())
        topics, total = _topic_store().list_topics(
            category=query.category,
            viral_only=query.viral_only,
            niche_id=query.niche_id,
            limit=query.limit,
            offset=query.offset,
        )
        return jsonify({
            "topics": [t.to_dict() for t in topics],
            "total": total,
            "limit": query.limit,
            "offset": query.offset,
        })
    except Exception as e:
        return _error_response(e, "Topic listing")


@app.route("/api/youtube/topics", methods=["POST"])
def api_create_topic():
    try:
        body = TopicRequest.model_validate(_json_body())
        topic = _topic_store().create_topic(**body.model_dump())
        return jsonify({"trendingTopic": topic.to_dict()}), 201
    except Exception as e:
        return _error_response(e, "Topic creation")


@app.route("/api/youtube/topics/<topic_id>", methods=["GET"])
def api_get_topic(topic_id):
    try:
        return jsonify({"trendingTopic": _topic_store().get_topic(topic_id).to_dict()})
    except Exception as e:
        return _error_response(e, "Topic lookup")


@app.route("/api/youtube/topics/<topic_id>", methods=["PUT"])
def api_replace_topic(topic_id):
    """Replace every field of a topic; omitted optional fields reset to defaults."""
    try:
        body = TopicRequest.model_validate(_json_body())
        topic = _topic_store().replace_topic(topic_id, **body.model_dump())
        return jsonify({"trendingTopic": topic.to_dict()})
    except Exception as e:
        return _error_response(e, "Topic update")


@app.route("/api/youtube/topics/<topic_id>", methods=["DELETE"])
def api_delete_topic(topic_id):
    try:
        _topic_store().delete_topic(topic_id)
        return jsonify({"success": True, "id": topic_id})
    except Exception as e:
        return _error_response(e, "Topic deletion")


# ── Entry point ──

if __name__ == "__main__":
    from main import setup_logging

    parser = argparse.ArgumentParser(description="Trend Outlier Engine API")
    parser.add_argument("--host", default=config.API_HOST)
    parser.add_argument("--port", type=int, default=config.API_PORT)
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()

    setup_logging()
    run_migrations()
    logger.info(f"API server starting on http://{args.host}:{args.port}")
    app.run(host=args.host, port=args.port, debug=args.debug)
