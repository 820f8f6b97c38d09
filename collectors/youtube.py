"""
YouTube Collector — fetches trending video metadata via the YouTube Data API v3.

Uses the same abstract BaseCollector interface as every other source.
No retries happen here: callers decide whether a SourceUnavailable
failure is worth another attempt.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

import requests

import config
from collectors import BaseCollector, VideoSample
from errors import InvalidCategory, InvalidRegion, SourceUnavailable

logger = logging.getLogger(__name__)

REGION_CODE_RE = re.compile(r"^[A-Za-z]{2}$")

# Statuses that mean "the upstream is unreachable or refusing us",
# as opposed to "the request itself was wrong".
UNAVAILABLE_STATUS = {401, 403, 429, 500, 502, 503, 504}

# Well-known YouTube category ids
YOUTUBE_CATEGORIES = {
    "FILM_ANIMATION": "1",
    "AUTOS_VEHICLES": "2",
    "MUSIC": "10",
    "PETS_ANIMALS": "15",
    "SPORTS": "17",
    "SHORT_MOVIES": "18",
    "TRAVEL_EVENTS": "19",
    "GAMING": "20",
    "VIDEOBLOGGING": "21",
    "PEOPLE_BLOGS": "22",
    "COMEDY": "23",
    "ENTERTAINMENT": "24",
    "NEWS_POLITICS": "25",
    "HOWTO_STYLE": "26",
    "EDUCATION": "27",
    "SCIENCE_TECHNOLOGY": "28",
}


def validate_region_code(region_code: str) -> str:
    """Return the upper-cased region code, or raise InvalidRegion."""
    if not region_code or not REGION_CODE_RE.match(str(region_code)):
        raise InvalidRegion(region_code)
    return str(region_code).upper()


def resolve_category_id(value: Optional[str]) -> Optional[str]:
    """Accept either a numeric category id or a name like 'GAMING'."""
    if value is None or str(value).strip() == "":
        return None
    value = str(value).strip()
    return YOUTUBE_CATEGORIES.get(value.upper(), value)


def parse_rfc3339(value: Optional[str]) -> Optional[datetime]:
    """Parse '2024-01-01T12:34:56Z' into an aware UTC datetime."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)
    except ValueError:
        logger.debug(f"Unparseable timestamp from upstream: {value!r}")
        return None


def _int_stat(stats: dict, key: str) -> int:
    """YouTube returns counts as strings and omits hidden ones."""
    try:
        return int(stats.get(key) or 0)
    except (TypeError, ValueError):
        return 0


class YouTubeTrendingCollector(BaseCollector):
    """Collects trending (chart=mostPopular) videos and categories."""

    def __init__(self, api_key: str, timeout: float = None):
        if not api_key:
            raise SourceUnavailable(
                "YOUTUBE_API_KEY is required. Create one in the Google Cloud console"
            )
        self.api_key = api_key
        self.base_url = config.YOUTUBE_API_BASE
        self.timeout = timeout or config.SOURCE_TIMEOUT_SECONDS

    def health_check(self) -> bool:
        """Verify YouTube API access with the cheapest available call."""
        try:
            response = requests.get(
                f"{self.base_url}/i18nRegions",
                params={"part": "snippet", "key": self.api_key},
                timeout=10,
            )
            return response.status_code == 200
        except requests.RequestException:
            return False

    def fetch_trending(self, region_code: str, category_id: Optional[str] = None,
                       max_results: int = 50) -> List[VideoSample]:
        """Fetch the most popular videos for a region.

        max_results is passed through as requested; the hard ceiling is the
        caller's job. Returns an empty list if the chart is empty.
        """
        region = validate_region_code(region_code)
        params = {
            "part": "snippet,statistics",
            "chart": "mostPopular",
            "regionCode": region,
            "maxResults": max_results,
            "key": self.api_key,
        }
        if category_id:
            params["videoCategoryId"] = category_id

        logger.info(
            f"  YouTube {region}/{category_id or 'all'}: fetching up to {max_results} trending videos"
        )
        data = self._get("videos", params, region, category_id)
        collected_at = datetime.now(timezone.utc)
        samples = self._parse_videos(data.get("items", []), region, collected_at)
        logger.info(f"  YouTube {region}/{category_id or 'all'}: collected {len(samples)} videos")
        return samples[:max_results]

    def search_videos(self, keyword: str, region_code: str,
                      max_results: int = 50) -> List[VideoSample]:
        """Search videos by keyword, then hydrate their statistics."""
        region = validate_region_code(region_code)
        search = self._get("search", {
            "part": "snippet",
            "q": keyword,
            "type": "video",
            "order": "relevance",
            "regionCode": region,
            "maxResults": max_results,
            "key": self.api_key,
        }, region)

        video_ids = [
            item.get("id", {}).get("videoId")
            for item in search.get("items", [])
        ]
        video_ids = [vid for vid in video_ids if vid]
        if not video_ids:
            logger.info(f"  YouTube search '{keyword}' ({region}): no videos found")
            return []

        data = self._get("videos", {
            "part": "snippet,statistics",
            "id": ",".join(video_ids),
            "key": self.api_key,
        }, region)
        collected_at = datetime.now(timezone.utc)
        samples = self._parse_videos(data.get("items", []), region, collected_at)
        logger.info(f"  YouTube search '{keyword}' ({region}): collected {len(samples)} videos")
        return samples[:max_results]

    def list_categories(self, region_code: str) -> List[Dict[str, str]]:
        """Return [{id, name, assignable}] for the region's video categories."""
        region = validate_region_code(region_code)
        data = self._get("videoCategories", {
            "part": "snippet",
            "regionCode": region,
            "key": self.api_key,
        }, region)

        return [
            {
                "id": item.get("id"),
                "name": (item.get("snippet") or {}).get("title", ""),
                "assignable": bool((item.get("snippet") or {}).get("assignable", False)),
            }
            for item in data.get("items", [])
        ]

    def _get(self, resource: str, params: dict, region_code: str,
             category_id: Optional[str] = None) -> dict:
        """GET a Data API resource and translate failures into engine errors."""
        try:
            response = requests.get(
                f"{self.base_url}/{resource}",
                params=params,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            raise SourceUnavailable(
                f"YouTube {resource} timed out after {self.timeout}s"
            ) from e
        except requests.RequestException as e:
            raise SourceUnavailable(f"YouTube {resource} request failed: {e}") from e

        if response.status_code == 200:
            try:
                return response.json() or {}
            except ValueError as e:
                raise SourceUnavailable(f"YouTube {resource} returned invalid JSON") from e

        detail = self._error_detail(response)
        if response.status_code in UNAVAILABLE_STATUS:
            raise SourceUnavailable(
                f"YouTube {resource} failed: HTTP {response.status_code} {detail}".strip()
            )
        if response.status_code in (400, 404):
            lowered = detail.lower()
            if "region" in lowered:
                raise InvalidRegion(region_code)
            if category_id and ("category" in lowered or "chart" in lowered):
                raise InvalidCategory(category_id, region_code)

        raise SourceUnavailable(
            f"YouTube {resource} failed: HTTP {response.status_code} {detail}".strip()
        )

    @staticmethod
    def _error_detail(response) -> str:
        """Flatten the Data API error envelope into 'reason: message' text."""
        try:
            error = (response.json() or {}).get("error", {})
        except ValueError:
            return (response.text or "")[:200]
        parts = [error.get("message", "")]
        for item in error.get("errors", []) or []:
            parts.append(f"{item.get('reason', '')}: {item.get('message', '')}")
        return " | ".join(p for p in parts if p)

    def _parse_videos(self, items: List[dict], region_code: str,
                      collected_at: datetime) -> List[VideoSample]:
        """Parse videos.list items into VideoSample objects."""
        samples = []

        for item in items:
            video_id = item.get("id")
            if not video_id or not isinstance(video_id, str):
                continue

            snippet = item.get("snippet") or {}
            stats = item.get("statistics") or {}
            thumbnails = snippet.get("thumbnails") or {}
            thumb = (
                thumbnails.get("high") or thumbnails.get("medium")
                or thumbnails.get("default") or {}
            )

            samples.append(VideoSample(
                video_id=video_id,
                channel_id=snippet.get("channelId", ""),
                title=snippet.get("title", ""),
                category_id=snippet.get("categoryId"),
                region_code=region_code,
                views=_int_stat(stats, "viewCount"),
                likes=_int_stat(stats, "likeCount"),
                comments=_int_stat(stats, "commentCount"),
                published_at=parse_rfc3339(snippet.get("publishedAt")),
                collected_at=collected_at,
                channel_title=snippet.get("channelTitle"),
                thumbnail_url=thumb.get("url"),
                tags=list(snippet.get("tags") or []),
            ))

        return samples


def create_youtube_collector() -> YouTubeTrendingCollector:
    """Create a YouTube collector using the stored or environment API key."""
    api_key = config.get_api_key('youtube')
    if not api_key:
        raise SourceUnavailable(
            "YOUTUBE_API_KEY not set in database or environment. "
            "Add it to the api_credentials table or set YOUTUBE_API_KEY in .env"
        )
    return YouTubeTrendingCollector(api_key=api_key)
