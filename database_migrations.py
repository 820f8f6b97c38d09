"""
Database migrations for the Trend Outlier Engine.

Creates snapshot, ledger, topic and credential tables.
Safe to run multiple times (idempotent).
"""

import sqlite3
import logging

import config

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_MS = 5000


def connect(db_path=None) -> sqlite3.Connection:
    """Open a connection with Row factory and a busy timeout for concurrent writers."""
    conn = sqlite3.connect(str(db_path or config.DB_PATH), timeout=BUSY_TIMEOUT_MS / 1000)
    conn.row_factory = sqlite3.Row
    conn.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def run_migrations(db_path=None):
    """
    Create every table the engine needs.
    Safe to call multiple times - only creates tables if they don't exist.
    """
    db_path = db_path or config.DB_PATH
    conn = sqlite3.connect(str(db_path))

    logger.info("Running trend engine migrations...")

    try:
        conn.executescript("""
            -- API credentials (admin-managed)
            CREATE TABLE IF NOT EXISTS api_credentials (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                service TEXT UNIQUE NOT NULL,  -- 'youtube'
                api_key TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            -- One immutable row per collection run
            CREATE TABLE IF NOT EXISTS trend_snapshots (
                id TEXT PRIMARY KEY,
                captured_at TEXT NOT NULL,
                region_code TEXT NOT NULL,
                category_id TEXT,             -- NULL = all categories
                snapshot_type TEXT NOT NULL,  -- 'trending', 'search', 'category'
                query_keyword TEXT,
                total_videos INTEGER NOT NULL,
                avg_views REAL NOT NULL,
                median_views REAL NOT NULL,
                std_dev_views REAL NOT NULL,
                avg_likes REAL NOT NULL,
                avg_engagement_rate REAL NOT NULL,
                p75_views REAL NOT NULL DEFAULT 0,
                p90_views REAL NOT NULL DEFAULT 0,
                outlier_count INTEGER NOT NULL
            );

            -- Flagged videos embedded in a snapshot (denormalized at capture time)
            CREATE TABLE IF NOT EXISTS snapshot_videos (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                snapshot_id TEXT NOT NULL,
                video_id TEXT NOT NULL,
                position INTEGER NOT NULL,    -- order within the snapshot
                rank_position INTEGER,        -- position in the upstream chart
                percentile REAL,
                view_count INTEGER NOT NULL,
                like_count INTEGER NOT NULL,
                comment_count INTEGER NOT NULL,
                engagement_rate REAL NOT NULL,
                outlier_type TEXT NOT NULL,
                outlier_types TEXT NOT NULL,  -- JSON array
                outlier_score REAL NOT NULL,
                title TEXT,
                channel_id TEXT,
                FOREIGN KEY (snapshot_id) REFERENCES trend_snapshots(id) ON DELETE CASCADE,
                UNIQUE(snapshot_id, video_id)
            );

            -- Deduplicated outlier ledger, one row per platform video id
            CREATE TABLE IF NOT EXISTS outlier_videos (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                video_id TEXT UNIQUE NOT NULL,
                region_code TEXT NOT NULL,
                category_id TEXT,
                outlier_type TEXT NOT NULL,
                outlier_types TEXT NOT NULL,  -- JSON array
                outlier_score REAL NOT NULL DEFAULT 0,
                metrics TEXT NOT NULL,        -- JSON metrics snapshot
                detected_at TEXT NOT NULL,    -- first seen; never overwritten
                last_detected_at TEXT NOT NULL,
                detection_count INTEGER NOT NULL DEFAULT 1,
                is_verified INTEGER NOT NULL DEFAULT 0,
                is_false_positive INTEGER NOT NULL DEFAULT 0,
                verified_at TEXT
            );

            -- Trending topics (platform-derived or manually entered)
            CREATE TABLE IF NOT EXISTS trending_topics (
                id TEXT PRIMARY KEY,
                topic TEXT NOT NULL,
                niche_id TEXT,
                volume INTEGER,
                growth REAL,
                category TEXT NOT NULL,
                is_viral INTEGER NOT NULL DEFAULT 0,
                is_evergreen INTEGER NOT NULL DEFAULT 0,
                content_ideas TEXT,           -- JSON array
                target_demographics TEXT,     -- JSON
                source_type TEXT NOT NULL,    -- 'youtube_trending', 'manual'
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_snapshots_cohort
                ON trend_snapshots(region_code, snapshot_type, category_id, captured_at);
            CREATE INDEX IF NOT EXISTS idx_snapshot_videos_snapshot
                ON snapshot_videos(snapshot_id, position);
            CREATE INDEX IF NOT EXISTS idx_outliers_region_detected
                ON outlier_videos(region_code, detected_at);
            CREATE INDEX IF NOT EXISTS idx_topics_category
                ON trending_topics(category, growth);
        """)
        conn.commit()
    finally:
        conn.close()

    add_percentile_columns_to_snapshots(db_path)

    logger.info("Trend engine migrations complete")


def add_percentile_columns_to_snapshots(db_path=None):
    """Add p75_views / p90_views to trend_snapshots tables created before they existed."""
    db_path = db_path or config.DB_PATH
    conn = sqlite3.connect(str(db_path))

    try:
        for column in ("p75_views", "p90_views"):
            try:
                conn.execute(
                    f"ALTER TABLE trend_snapshots ADD COLUMN {column} REAL NOT NULL DEFAULT 0"
                )
                logger.info(f"Added {column} column to trend_snapshots")
            except sqlite3.OperationalError as e:
                if "duplicate column" not in str(e).lower():
                    raise
        conn.commit()
    finally:
        conn.close()
