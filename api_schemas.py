"""
API Schemas — Pydantic v2 models for request validation.

Each route validates its query string or JSON body through one of these
models before anything reaches the stores. Field names are snake_case;
the camelCase names clients send are accepted as aliases.
"""

from typing import Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from outlier_detector import TYPE_PRIORITY
from topic_store import SOURCE_TYPES


class _Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


# ── Outliers ──

class OutlierListQuery(_Request):
    type: Optional[Literal[TYPE_PRIORITY]] = None
    region_code: Optional[str] = Field(None, alias="regionCode")
    limit: int = Field(20, ge=1, le=100)
    offset: int = Field(0, ge=0)
    include_false_positives: bool = Field(False, alias="includeFalsePositives")


class OutlierVerificationRequest(_Request):
    video_id: str = Field(
        ..., min_length=1,
        validation_alias=AliasChoices("videoId", "youtubeVideoId", "video_id"),
    )
    is_verified: Optional[bool] = Field(None, alias="isVerified")
    is_false_positive: Optional[bool] = Field(None, alias="isFalsePositive")


# ── Snapshots & trends ──

class SnapshotListQuery(_Request):
    region_code: Optional[str] = Field(None, alias="regionCode")
    category_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("categoryId", "category", "category_id"),
    )
    snapshot_type: Optional[str] = Field(
        None, validation_alias=AliasChoices("type", "snapshot_type"),
    )
    limit: int = Field(10, ge=1, le=100)
    offset: int = Field(0, ge=0)


class TrendsQuery(_Request):
    """Query string for GET /api/youtube/trends (action is checked by the route)."""
    region_code: Optional[str] = Field(None, alias="regionCode")
    category: Optional[str] = Field(
        None, validation_alias=AliasChoices("category", "categoryId"),
    )
    max_results: Optional[int] = Field(None, alias="maxResults")
    keyword: Optional[str] = Field(
        None, validation_alias=AliasChoices("keyword", "q", "query"),
    )


class CollectTrendsRequest(_Request):
    region_code: Optional[str] = Field(None, alias="regionCode")
    category: Optional[str] = Field(
        None, validation_alias=AliasChoices("category", "categoryId"),
    )
    max_results: Optional[int] = Field(None, alias="maxResults")


# ── Topics ──

class TopicRequest(_Request):
    """Full topic body, used for both create and replace."""
    topic: str = Field(..., min_length=1, max_length=500)
    category: str = Field(..., min_length=1, max_length=200)
    niche_id: Optional[str] = Field(None, alias="nicheId")
    volume: Optional[int] = Field(None, ge=0)
    growth: Optional[float] = None
    is_viral: bool = Field(False, alias="isViral")
    is_evergreen: bool = Field(False, alias="isEvergreen")
    content_ideas: List[str] = Field(default_factory=list, alias="contentIdeas")
    target_demographics: Optional[Dict] = Field(None, alias="targetDemographics")
    source_type: Literal[SOURCE_TYPES] = Field("youtube_trending", alias="sourceType")


class TopicListQuery(_Request):
    category: Optional[str] = None
    viral_only: bool = Field(
        False, validation_alias=AliasChoices("viral", "viralOnly", "viral_only"),
    )
    niche_id: Optional[str] = Field(None, alias="nicheId")
    limit: int = Field(20, ge=1, le=100)
    offset: int = Field(0, ge=0)
