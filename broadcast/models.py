"""
Broadcast Data Model
====================
Posts, stored platform credentials and normalized per-platform results.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


SUPPORTED_PLATFORMS = ("linkedin", "instagram", "tiktok", "twitter", "threads", "youtube")


class MediaType(str, Enum):
    NONE = "none"
    IMAGE = "image"
    VIDEO = "video"


class PostStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    PARTIAL = "partial"
    FAILED = "failed"


# Statuses a publish run may claim a post from (compare-and-swap to PUBLISHING)
CLAIMABLE_STATUSES = (
    PostStatus.DRAFT.value,
    PostStatus.SCHEDULED.value,
    PostStatus.FAILED.value,
    PostStatus.PARTIAL.value,
)


class ResultStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    PENDING = "pending"


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _json_field(value: Any, default: Any) -> Any:
    """asyncpg hands JSONB back as str unless a codec is registered."""
    if value is None:
        return default
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return default
    return value


@dataclass
class PlatformResult:
    """Result of publishing to a single platform."""
    status: str
    post_id: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None
    note: Optional[str] = None
    error_code: Optional[str] = None
    container_id: Optional[str] = None
    publish_id: Optional[str] = None
    reconnect_required: bool = False

    @property
    def success(self) -> bool:
        return self.status == ResultStatus.SUCCESS.value

    @classmethod
    def ok(cls, post_id: Optional[str] = None, url: Optional[str] = None, **extra) -> "PlatformResult":
        return cls(status=ResultStatus.SUCCESS.value, post_id=post_id, url=url, **extra)

    @classmethod
    def failed(cls, error: str, error_code: Optional[str] = None, **extra) -> "PlatformResult":
        return cls(status=ResultStatus.ERROR.value, error=error, error_code=error_code, **extra)

    @classmethod
    def pending(cls, container_id: Optional[str] = None, note: Optional[str] = None) -> "PlatformResult":
        return cls(status=ResultStatus.PENDING.value, container_id=container_id, note=note)

    def to_dict(self) -> dict:
        """Serialize without empty fields (stored in posts.platform_results)."""
        out: Dict[str, Any] = {"status": self.status}
        for key in ("post_id", "url", "error", "note", "error_code", "container_id", "publish_id"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        if self.reconnect_required:
            out["reconnect_required"] = True
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "PlatformResult":
        return cls(
            status=data.get("status", ResultStatus.ERROR.value),
            post_id=data.get("post_id"),
            url=data.get("url"),
            error=data.get("error"),
            note=data.get("note"),
            error_code=data.get("error_code"),
            container_id=data.get("container_id"),
            publish_id=data.get("publish_id"),
            reconnect_required=bool(data.get("reconnect_required", False)),
        )


@dataclass
class Post:
    """One piece of content to distribute."""
    id: str
    user_id: str
    caption: Optional[str] = None
    media_url: Optional[str] = None
    media_type: MediaType = MediaType.NONE
    media_key: Optional[str] = None
    thumbnail_url: Optional[str] = None
    platforms: List[str] = field(default_factory=list)
    platform_metadata: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    status: str = PostStatus.DRAFT.value
    platform_results: Dict[str, dict] = field(default_factory=dict)
    scheduled_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_media(self) -> bool:
        return bool(self.media_url) and self.media_type != MediaType.NONE

    @property
    def is_video(self) -> bool:
        return bool(self.media_url) and self.media_type == MediaType.VIDEO

    @property
    def is_image(self) -> bool:
        return bool(self.media_url) and self.media_type == MediaType.IMAGE

    def metadata_for(self, platform: str) -> Dict[str, Any]:
        """Adapter-specific precomputed fields (e.g. a pre-uploaded video handle)."""
        return self.platform_metadata.get(platform) or {}

    @classmethod
    def from_record(cls, row: dict) -> "Post":
        media_url = row.get("media_url") or row.get("video_url")
        raw_type = row.get("media_type")
        if raw_type:
            media_type = MediaType(raw_type)
        elif media_url:
            # Legacy rows only carried video_url
            media_type = MediaType.VIDEO
        else:
            media_type = MediaType.NONE

        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            caption=row.get("caption"),
            media_url=media_url,
            media_type=media_type,
            media_key=row.get("media_key"),
            thumbnail_url=row.get("thumbnail_url"),
            platforms=list(row.get("platforms") or []),
            platform_metadata=_json_field(row.get("platform_metadata"), {}),
            status=row.get("status") or PostStatus.DRAFT.value,
            platform_results=_json_field(row.get("platform_results"), {}),
            scheduled_at=row.get("scheduled_at"),
            published_at=row.get("published_at"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "caption": self.caption,
            "media_url": self.media_url,
            "media_type": self.media_type.value,
            "thumbnail_url": self.thumbnail_url,
            "platforms": self.platforms,
            "status": self.status,
            "platform_results": self.platform_results,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "published_at": self.published_at.isoformat() if self.published_at else None,
        }


@dataclass
class Credential:
    """Stored OAuth token set for one (user, platform) pair."""
    user_id: str
    platform: str
    access_token: str
    platform_user_id: Optional[str] = None
    account_name: Optional[str] = None
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    scopes: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        """True when the token is expired or expires inside the window."""
        if self.token_expires_at is None:
            return False
        now = now or _now_utc()
        return (self.token_expires_at - now).total_seconds() <= seconds

    def public_dict(self) -> dict:
        """Account view for the API (never includes tokens)."""
        return {
            "platform": self.platform,
            "platform_user_id": self.platform_user_id,
            "account_name": self.account_name,
            "token_expires_at": self.token_expires_at.isoformat() if self.token_expires_at else None,
            "scopes": self.scopes,
            "metadata": self.metadata,
        }


def aggregate_status(results: Dict[str, PlatformResult]) -> str:
    """
    published: every dispatched platform succeeded
    partial:   at least one succeeded and at least one did not
    failed:    none succeeded (pending counts as not succeeded)
    """
    if not results:
        return PostStatus.FAILED.value
    successes = sum(1 for r in results.values() if r.success)
    if successes == len(results):
        return PostStatus.PUBLISHED.value
    if successes > 0:
        return PostStatus.PARTIAL.value
    return PostStatus.FAILED.value
