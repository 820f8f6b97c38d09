"""
Topic Store — CRUD operations for trending topics.

Topics are either derived from platform trends (source_type
'youtube_trending') or entered by hand ('manual'). They are replaced
wholesale; there is no partial update.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from database_migrations import connect
from errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

SOURCE_TYPES = ("youtube_trending", "manual")


@dataclass
class TrendingTopic:
    """A topic with its demand signals and content suggestions."""
    id: str
    topic: str
    category: str
    niche_id: Optional[str] = None
    volume: Optional[int] = None
    growth: Optional[float] = None
    is_viral: bool = False
    is_evergreen: bool = False
    content_ideas: List[str] = field(default_factory=list)
    target_demographics: Optional[Dict] = None
    source_type: str = "manual"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


def _from_row(row) -> TrendingTopic:
    return TrendingTopic(
        id=row["id"],
        topic=row["topic"],
        category=row["category"],
        niche_id=row["niche_id"],
        volume=row["volume"],
        growth=row["growth"],
        is_viral=bool(row["is_viral"]),
        is_evergreen=bool(row["is_evergreen"]),
        content_ideas=json.loads(row["content_ideas"]) if row["content_ideas"] else [],
        target_demographics=(
            json.loads(row["target_demographics"]) if row["target_demographics"] else None
        ),
        source_type=row["source_type"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _validate(topic: str, category: str, source_type: str):
    if not topic or not str(topic).strip():
        raise ValidationError("topic is required")
    if not category or not str(category).strip():
        raise ValidationError("category is required")
    if source_type not in SOURCE_TYPES:
        raise ValidationError(f"source_type must be one of {SOURCE_TYPES}")


class TopicStore:
    """Manages the trending_topics table."""

    def __init__(self, db_path=None):
        self.db_path = db_path

    def _get_conn(self):
        return connect(self.db_path)

    def create_topic(self, topic: str, category: str, niche_id: str = None,
                     volume: int = None, growth: float = None,
                     is_viral: bool = False, is_evergreen: bool = False,
                     content_ideas: List[str] = None,
                     target_demographics: Dict = None,
                     source_type: str = "manual") -> TrendingTopic:
        """Insert a new topic and return it."""
        _validate(topic, category, source_type)
        now = datetime.now(timezone.utc).isoformat()
        topic_id = uuid.uuid4().hex

        conn = self._get_conn()
        try:
            with conn:
                conn.execute("""
                    INSERT INTO trending_topics
                        (id, topic, niche_id, volume, growth, category, is_viral,
                         is_evergreen, content_ideas, target_demographics,
                         source_type, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    topic_id, topic.strip(), niche_id, volume, growth, category.strip(),
                    1 if is_viral else 0, 1 if is_evergreen else 0,
                    json.dumps(content_ideas or []),
                    json.dumps(target_demographics) if target_demographics is not None else None,
                    source_type, now, now,
                ))
            created = self._fetch(conn, topic_id)
        finally:
            conn.close()

        logger.info(f"Created topic '{created.topic}' ({created.category}, {source_type})")
        return created

    def get_topic(self, topic_id: str) -> TrendingTopic:
        conn = self._get_conn()
        try:
            return self._fetch(conn, topic_id)
        finally:
            conn.close()

    def list_topics(self, category: str = None, viral_only: bool = False,
                    niche_id: str = None, limit: int = 20,
                    offset: int = 0) -> Tuple[List[TrendingTopic], int]:
        """Page of topics ordered by growth (fastest first), plus total count."""
        where = []
        params = []
        if category:
            where.append("category = ?")
            params.append(category)
        if viral_only:
            where.append("is_viral = 1")
        if niche_id:
            where.append("niche_id = ?")
            params.append(niche_id)
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""

        conn = self._get_conn()
        try:
            rows = conn.execute(f"""
                SELECT * FROM trending_topics
                {where_sql}
                ORDER BY COALESCE(growth, 0) DESC, created_at DESC
                LIMIT ? OFFSET ?
            """, (*params, limit, offset)).fetchall()
            total = conn.execute(
                f"SELECT COUNT(*) FROM trending_topics {where_sql}", params
            ).fetchone()[0]
        finally:
            conn.close()

        return [_from_row(r) for r in rows], total

    def replace_topic(self, topic_id: str, topic: str, category: str,
                      niche_id: str = None, volume: int = None,
                      growth: float = None, is_viral: bool = False,
                      is_evergreen: bool = False, content_ideas: List[str] = None,
                      target_demographics: Dict = None,
                      source_type: str = "manual") -> TrendingTopic:
        """Overwrite every mutable field of an existing topic."""
        _validate(topic, category, source_type)
        now = datetime.now(timezone.utc).isoformat()

        conn = self._get_conn()
        try:
            with conn:
                cursor = conn.execute("""
                    UPDATE trending_topics
                    SET topic = ?, niche_id = ?, volume = ?, growth = ?, category = ?,
                        is_viral = ?, is_evergreen = ?, content_ideas = ?,
                        target_demographics = ?, source_type = ?, updated_at = ?
                    WHERE id = ?
                """, (
                    topic.strip(), niche_id, volume, growth, category.strip(),
                    1 if is_viral else 0, 1 if is_evergreen else 0,
                    json.dumps(content_ideas or []),
                    json.dumps(target_demographics) if target_demographics is not None else None,
                    source_type, now, topic_id,
                ))
                if cursor.rowcount == 0:
                    raise NotFound("topic", topic_id)
            return self._fetch(conn, topic_id)
        finally:
            conn.close()

    def delete_topic(self, topic_id: str) -> None:
        conn = self._get_conn()
        try:
            with conn:
                cursor = conn.execute(
                    "DELETE FROM trending_topics WHERE id = ?", (topic_id,)
                )
                if cursor.rowcount == 0:
                    raise NotFound("topic", topic_id)
        finally:
            conn.close()
        logger.info(f"Deleted topic {topic_id}")

    def _fetch(self, conn, topic_id: str) -> TrendingTopic:
        row = conn.execute(
            "SELECT * FROM trending_topics WHERE id = ?", (topic_id,)
        ).fetchone()
        if not row:
            raise NotFound("topic", topic_id)
        return _from_row(row)
