"""
Collectors — platform-agnostic video metadata fetching layer.

Each platform collector implements BaseCollector.
Use the factory functions to get the right collector for your config.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from datetime import datetime

from errors import SourceUnavailable


def engagement_rate(likes: int, comments: int, views: int) -> float:
    """(likes + comments) / views, flooring views at 1 for zero-view videos."""
    return (likes + comments) / max(views, 1)


@dataclass
class VideoSample:
    """Platform-agnostic video metrics captured during one collection run."""
    video_id: str                       # platform video id
    channel_id: str
    title: str
    category_id: Optional[str]
    region_code: str
    views: int = 0
    likes: int = 0
    comments: int = 0
    published_at: Optional[datetime] = None
    collected_at: Optional[datetime] = None
    channel_title: Optional[str] = None
    thumbnail_url: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    @property
    def engagement_rate(self) -> float:
        return engagement_rate(self.likes, self.comments, self.views)


class BaseCollector(ABC):
    """Abstract base for all platform metadata sources."""

    @abstractmethod
    def fetch_trending(self, region_code: str, category_id: Optional[str] = None,
                       max_results: int = 50) -> List[VideoSample]:
        """Fetch currently-trending videos for a region (and optional category)."""
        ...

    @abstractmethod
    def list_categories(self, region_code: str) -> List[Dict[str, str]]:
        """List the video categories the platform exposes for a region."""
        ...

    def search_videos(self, keyword: str, region_code: str,
                      max_results: int = 50) -> List[VideoSample]:
        """Keyword search; sources without one raise SourceUnavailable."""
        raise SourceUnavailable(f"{type(self).__name__} does not support keyword search")

    @abstractmethod
    def health_check(self) -> bool:
        """Verify API access is working."""
        ...
