"""Shared fixtures: in-memory store, fake media store, HTTP router for platform fakes."""

from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Union

import httpx
import pytest

from broadcast import tokens
from broadcast.config import PublishSettings
from broadcast.context import PublishContext
from broadcast.models import CLAIMABLE_STATUSES, Credential, MediaType, Post, PostStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_post(**overrides) -> Post:
    fields = dict(
        id="post-1",
        user_id="user-1",
        caption="Launch day\nWe shipped it.",
        media_url=None,
        media_type=MediaType.NONE,
        platforms=[],
        status=PostStatus.DRAFT.value,
    )
    fields.update(overrides)
    return Post(**fields)


def make_video_post(**overrides) -> Post:
    fields = dict(
        media_url="https://media.example.com/videos/clip.mp4",
        media_type=MediaType.VIDEO,
        media_key="videos/clip.mp4",
    )
    fields.update(overrides)
    return make_post(**fields)


def make_credential(platform: str, **overrides) -> Credential:
    fields = dict(
        user_id="user-1",
        platform=platform,
        access_token=f"{platform}-token",
        platform_user_id=f"{platform}-uid",
        account_name=f"{platform}_account",
        refresh_token=f"{platform}-refresh",
        token_expires_at=utcnow() + timedelta(days=1),
    )
    fields.update(overrides)
    return Credential(**fields)


class FakeRepository:
    """In-memory stand-in for broadcast.db.Repository."""

    def __init__(self, posts: Optional[List[Post]] = None, credentials: Optional[List[Credential]] = None):
        self.posts: Dict[str, Post] = {p.id: p for p in posts or []}
        self.credentials: Dict[tuple, Credential] = {(c.user_id, c.platform): c for c in credentials or []}
        self.writes: List[dict] = []
        self.finished: List[dict] = []
        self.claims: List[str] = []
        self.failed_marks: List[str] = []
        self.credential_updates: List[tuple] = []
        self.metadata_updates: List[tuple] = []
        self.on_save: Optional[Callable] = None
        self.fail_on_save = False

    async def get_post(self, post_id, user_id=None):
        post = self.posts.get(post_id)
        if post is None or (user_id is not None and post.user_id != user_id):
            return None
        return post

    async def claim_post(self, post_id, from_statuses=CLAIMABLE_STATUSES, platforms=()):
        post = self.posts.get(post_id)
        if post is None or post.status not in tuple(from_statuses):
            return False
        post.status = PostStatus.PUBLISHING.value
        post.platform_results = {p: r for p, r in post.platform_results.items() if p not in set(platforms)}
        self.claims.append(post_id)
        return True

    async def save_platform_result(self, post_id, platform, result, status):
        if self.fail_on_save:
            raise RuntimeError("database unavailable")
        post = self.posts[post_id]
        post.platform_results = {**post.platform_results, platform: copy.deepcopy(result)}
        post.status = status
        self.writes.append({
            "platform": platform,
            "result": copy.deepcopy(result),
            "status": status,
            "entries": sorted(post.platform_results),
        })
        if self.on_save is not None:
            self.on_save(platform)

    async def finish_post(self, post_id, status, results, published_at=None):
        post = self.posts[post_id]
        post.status = status
        post.platform_results = {**post.platform_results, **copy.deepcopy(results)}
        if published_at is not None:
            post.published_at = published_at
        self.finished.append({"status": status, "results": copy.deepcopy(results), "published_at": published_at})

    async def mark_post_failed(self, post_id):
        self.failed_marks.append(post_id)
        if post_id in self.posts:
            self.posts[post_id].status = PostStatus.FAILED.value

    async def fetch_due_posts(self, now=None, limit=10):
        now = now or utcnow()
        due = [
            p for p in self.posts.values()
            if p.status == PostStatus.SCHEDULED.value and p.scheduled_at and p.scheduled_at <= now
        ]
        due.sort(key=lambda p: p.scheduled_at)
        return due[:limit]

    async def get_credential(self, user_id, platform):
        return self.credentials.get((user_id, platform))

    async def get_credentials(self, user_id, platforms):
        return {
            p: self.credentials[(user_id, p)]
            for p in platforms
            if (user_id, p) in self.credentials
        }

    async def list_credentials(self, user_id):
        return [c for (uid, _), c in sorted(self.credentials.items()) if uid == user_id]

    async def update_credential(self, user_id, platform, patch):
        cred = self.credentials.get((user_id, platform))
        if cred is None:
            return None
        self.credential_updates.append((user_id, platform, dict(patch)))
        if "access_token" in patch:
            cred.access_token = patch["access_token"]
        if patch.get("refresh_token"):
            cred.refresh_token = patch["refresh_token"]
        if "token_expires_at" in patch:
            cred.token_expires_at = patch["token_expires_at"]
        return cred

    async def upsert_credential(self, credential):
        self.credentials[(credential.user_id, credential.platform)] = credential

    async def update_credential_metadata(self, user_id, platform, account_name, metadata):
        self.metadata_updates.append((user_id, platform, account_name, dict(metadata)))
        cred = self.credentials.get((user_id, platform))
        if cred is not None:
            cred.metadata = {**cred.metadata, **metadata}
            if account_name:
                cred.account_name = account_name


class FakeMediaStore:
    def __init__(self, fail: bool = False):
        self.deleted: List[str] = []
        self.fail = fail

    async def delete(self, media_ref):
        if self.fail:
            raise RuntimeError("R2 unavailable")
        self.deleted.append(media_ref)
        return True

    def resolve_url(self, key):
        return f"https://media.example.com/{key}"


def _bare_url(request: httpx.Request) -> str:
    return f"{request.url.scheme}://{request.url.host}{request.url.path}"


Responder = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class Router:
    """
    MockTransport handler keyed on (method, url without query).

    Several responses for one route are served in order; the last one repeats.
    Unrouted requests get a 404 so a missing fake shows up as a platform error.
    """

    def __init__(self):
        self.routes: Dict[tuple, List[Responder]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, method: str, url: str, *responses: Responder) -> "Router":
        self.routes[(method.upper(), url)] = list(responses)
        return self

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, _bare_url(request))
        responses = self.routes.get(key)
        if not responses:
            return httpx.Response(404, json={"error": {"message": f"no route for {key[0]} {key[1]}"}})
        responder = responses.pop(0) if len(responses) > 1 else responses[0]
        if callable(responder):
            return responder(request)
        # fresh copy: a repeated route must not hand out an already-consumed response
        return httpx.Response(responder.status_code, headers=responder.headers, content=responder.content)

    def calls(self, method: str, url: str) -> List[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method.upper() and _bare_url(r) == url
        ]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def settings() -> PublishSettings:
    return PublishSettings(
        ig_poll_interval=0,
        ig_poll_max_attempts=3,
        threads_poll_interval=0,
        threads_poll_max_attempts=3,
        threads_video_poll_max_attempts=5,
        twitter_poll_max_attempts=3,
        twitter_max_poll_delay=0,
        twitter_chunk_size=4,
        tiktok_client_key="tt-key",
        tiktok_client_secret="tt-secret",
        google_client_id="g-id",
        google_client_secret="g-secret",
        twitter_client_id="tw-id",
        twitter_client_secret="tw-secret",
    )


@pytest.fixture(autouse=True)
def reset_refresh_locks():
    # locks bind to the event loop that first waits on them
    tokens._refresh_locks.clear()
    yield
    tokens._refresh_locks.clear()


@pytest.fixture
def router() -> Router:
    return Router()


@pytest.fixture
def media_store() -> FakeMediaStore:
    return FakeMediaStore()


def make_ctx(platform, post, credential, client, settings, repository=None) -> PublishContext:
    return PublishContext(
        platform=platform,
        post=post,
        credential=credential,
        client=client,
        repository=repository or FakeRepository(posts=[post], credentials=[credential]),
        settings=settings,
    )
