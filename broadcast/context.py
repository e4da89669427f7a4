"""
Broadcast Publish Context
=========================
Carries everything one adapter call needs: the post, the credential for its
platform, the shared HTTP client, the repository (for token persistence) and
the settings snapshot for the run.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .config import PublishSettings
from .models import Credential, Post

logger = logging.getLogger("broadcast")


class PostLogger(logging.LoggerAdapter):
    """Prefixes every record with the post id so one run can be grepped."""

    def process(self, msg, kwargs):
        post_id = self.extra.get("post_id", "-")
        platform = self.extra.get("platform")
        if platform:
            return f"[post={post_id}] [{platform}] {msg}", kwargs
        return f"[post={post_id}] {msg}", kwargs


def post_logger(post_id: str, platform: Optional[str] = None) -> PostLogger:
    extra = {"post_id": post_id}
    if platform:
        extra["platform"] = platform
    return PostLogger(logger, extra)


@dataclass
class PublishContext:
    """
    Per-platform invocation state.

    `repository` is whatever store the run was handed (asyncpg Repository in
    production, an in-memory fake in tests); adapters only use it to persist
    refreshed tokens.
    """
    platform: str
    post: Post
    credential: Credential
    client: httpx.AsyncClient
    repository: Any
    settings: PublishSettings
    log: Optional[logging.LoggerAdapter] = None

    def __post_init__(self):
        if self.log is None:
            self.log = post_logger(self.post.id, self.platform)

    @property
    def caption(self) -> str:
        return self.post.caption or ""

    @property
    def metadata(self) -> dict:
        return self.post.metadata_for(self.platform)

    def auth_headers(self, **extra) -> dict:
        headers = {"Authorization": f"Bearer {self.credential.access_token}"}
        headers.update(extra)
        return headers
