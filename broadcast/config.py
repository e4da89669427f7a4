"""
Broadcast Configuration
=======================
Environment-driven settings shared by the API and the worker.

Module constants are read once at import. Publish runs receive a
PublishSettings snapshot so polling budgets and content policy can be
overridden per run (tests shrink the poll intervals to zero).
"""

import os
from dataclasses import dataclass
from typing import List

# ============================================================
# Core
# ============================================================

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
DATABASE_URL = os.environ.get("DATABASE_URL")

JWT_SECRET = os.environ.get("JWT_SECRET", "")
JWT_ISSUER = os.environ.get("JWT_ISSUER", "https://api.broadcast.app")
JWT_AUDIENCE = os.environ.get("JWT_AUDIENCE", "broadcast-app")

TOKEN_ENC_KEYS = os.environ.get("TOKEN_ENC_KEYS", "")  # v1:BASE64,v2:BASE64 (newest last)
CRON_SECRET = os.environ.get("CRON_SECRET", "")

ALLOWED_ORIGINS = os.environ.get(
    "ALLOWED_ORIGINS",
    "https://app.broadcast.app,https://broadcast.app",
)

# ============================================================
# Platform apps
# ============================================================

TIKTOK_CLIENT_KEY = os.environ.get("TIKTOK_CLIENT_KEY", "")
TIKTOK_CLIENT_SECRET = os.environ.get("TIKTOK_CLIENT_SECRET", "")
GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "") or os.environ.get("YOUTUBE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET", "") or os.environ.get("YOUTUBE_CLIENT_SECRET", "")
TWITTER_CLIENT_ID = os.environ.get("TWITTER_CLIENT_ID", "")
TWITTER_CLIENT_SECRET = os.environ.get("TWITTER_CLIENT_SECRET", "")

META_API_VERSION = os.environ.get("META_API_VERSION", "v21.0")
THREADS_API_VERSION = os.environ.get("THREADS_API_VERSION", "v1.0")
LINKEDIN_VERSION = os.environ.get("LINKEDIN_VERSION", "202507")

# ============================================================
# Publishing
# ============================================================

HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "120"))
TOKEN_REFRESH_SKEW_SEC = int(os.environ.get("TOKEN_REFRESH_SKEW_SEC", "300"))  # refresh 5 min early

IG_POLL_INTERVAL = float(os.environ.get("IG_POLL_INTERVAL", "1"))
IG_POLL_MAX_ATTEMPTS = int(os.environ.get("IG_POLL_MAX_ATTEMPTS", "30"))
THREADS_POLL_INTERVAL = float(os.environ.get("THREADS_POLL_INTERVAL", "1"))
THREADS_POLL_MAX_ATTEMPTS = int(os.environ.get("THREADS_POLL_MAX_ATTEMPTS", "30"))
THREADS_VIDEO_POLL_MAX_ATTEMPTS = int(os.environ.get("THREADS_VIDEO_POLL_MAX_ATTEMPTS", "60"))
TWITTER_POLL_MAX_ATTEMPTS = int(os.environ.get("TWITTER_POLL_MAX_ATTEMPTS", "30"))
TWITTER_MAX_POLL_DELAY = float(os.environ.get("TWITTER_MAX_POLL_DELAY", "10"))
TWITTER_CHUNK_SIZE = int(os.environ.get("TWITTER_CHUNK_SIZE", str(4 * 1024 * 1024)))

YOUTUBE_TITLE_MAX = int(os.environ.get("YOUTUBE_TITLE_MAX", "100"))
YOUTUBE_SHORTS_TAG = os.environ.get("YOUTUBE_SHORTS_TAG", "#Shorts")
YOUTUBE_FORCE_SHORTS_TAG = os.environ.get("YOUTUBE_FORCE_SHORTS_TAG", "1") == "1"
YOUTUBE_CATEGORY_ID = os.environ.get("YOUTUBE_CATEGORY_ID", "22")  # People & Blogs
YOUTUBE_PRIVACY = os.environ.get("YOUTUBE_PRIVACY", "public")
YOUTUBE_DEFAULT_TITLE = os.environ.get("YOUTUBE_DEFAULT_TITLE", "New video")

# ============================================================
# Scheduler
# ============================================================

SCHEDULER_INTERVAL_SECONDS = float(os.environ.get("SCHEDULER_INTERVAL_SECONDS", "60"))
SCHEDULER_BATCH_SIZE = int(os.environ.get("SCHEDULER_BATCH_SIZE", "10"))


def split_origins(raw: str) -> List[str]:
    return [o.strip() for o in raw.split(",") if o.strip()]


@dataclass(frozen=True)
class PublishSettings:
    """Per-run snapshot of publishing knobs."""
    meta_api_version: str = META_API_VERSION
    threads_api_version: str = THREADS_API_VERSION
    linkedin_version: str = LINKEDIN_VERSION

    ig_poll_interval: float = IG_POLL_INTERVAL
    ig_poll_max_attempts: int = IG_POLL_MAX_ATTEMPTS
    threads_poll_interval: float = THREADS_POLL_INTERVAL
    threads_poll_max_attempts: int = THREADS_POLL_MAX_ATTEMPTS
    threads_video_poll_max_attempts: int = THREADS_VIDEO_POLL_MAX_ATTEMPTS
    twitter_poll_max_attempts: int = TWITTER_POLL_MAX_ATTEMPTS
    twitter_max_poll_delay: float = TWITTER_MAX_POLL_DELAY
    twitter_chunk_size: int = TWITTER_CHUNK_SIZE

    youtube_title_max: int = YOUTUBE_TITLE_MAX
    youtube_shorts_tag: str = YOUTUBE_SHORTS_TAG
    youtube_force_shorts_tag: bool = YOUTUBE_FORCE_SHORTS_TAG
    youtube_category_id: str = YOUTUBE_CATEGORY_ID
    youtube_privacy: str = YOUTUBE_PRIVACY
    youtube_default_title: str = YOUTUBE_DEFAULT_TITLE

    token_refresh_skew_sec: int = TOKEN_REFRESH_SKEW_SEC
    tiktok_client_key: str = TIKTOK_CLIENT_KEY
    tiktok_client_secret: str = TIKTOK_CLIENT_SECRET
    google_client_id: str = GOOGLE_CLIENT_ID
    google_client_secret: str = GOOGLE_CLIENT_SECRET
    twitter_client_id: str = TWITTER_CLIENT_ID
    twitter_client_secret: str = TWITTER_CLIENT_SECRET

    http_timeout: float = HTTP_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "PublishSettings":
        return cls()


def validate_env(require_jwt: bool = True):
    """Fail fast on missing required configuration (API + worker startup)."""
    missing = []
    if not DATABASE_URL:
        missing.append("DATABASE_URL")
    if require_jwt and (not JWT_SECRET or JWT_SECRET == "change-me"):
        missing.append("JWT_SECRET")
    if not TOKEN_ENC_KEYS:
        missing.append("TOKEN_ENC_KEYS")

    if missing:
        raise RuntimeError(f"Missing required env vars: {', '.join(missing)}")
