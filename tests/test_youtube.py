"""Tests for the YouTube Shorts adapter."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from broadcast.errors import AdapterError, ErrorCode, ReconnectRequired
from broadcast.platforms.youtube import (
    UPLOAD_INIT_URL,
    build_description,
    build_title,
    publish_to_youtube,
    shorts_url,
)
from broadcast.tokens import GOOGLE_TOKEN_URL

from conftest import FakeRepository, make_credential, make_ctx, make_post, make_video_post, utcnow

VIDEO_URL = "https://media.example.com/videos/clip.mp4"
SESSION_URL = "https://upload.youtube.test/session/1"


@pytest.fixture
def yt_settings(settings):
    return replace(
        settings,
        youtube_title_max=100,
        youtube_shorts_tag="#Shorts",
        youtube_force_shorts_tag=True,
        youtube_default_title="New video",
    )


class TestMetadataHelpers:
    def test_title_is_first_caption_line(self, yt_settings):
        assert build_title("  Launch day\nmore text", yt_settings) == "Launch day"

    def test_title_truncated(self, yt_settings):
        assert len(build_title("t" * 150, yt_settings)) == 100

    def test_empty_caption_uses_default_title(self, yt_settings):
        assert build_title("   ", yt_settings) == "New video"

    def test_shorts_tag_appended_once(self, yt_settings):
        assert build_description("Hello", yt_settings) == "Hello\n\n#Shorts"
        assert build_description("Hello #shorts", yt_settings) == "Hello #shorts"
        assert build_description("", yt_settings) == "#Shorts"

    def test_shorts_tag_not_forced(self, yt_settings):
        assert build_description("Hello", replace(yt_settings, youtube_force_shorts_tag=False)) == "Hello"

    def test_shorts_url(self):
        assert shorts_url("abc") == "https://youtube.com/shorts/abc"


class TestPublishToYouTube:
    @pytest.mark.asyncio
    async def test_expired_token_refreshed_once_then_resumable_upload(self, router, yt_settings):
        router.add("POST", GOOGLE_TOKEN_URL, httpx.Response(200, json={"access_token": "yt-new", "expires_in": 3599}))
        router.add("GET", VIDEO_URL, httpx.Response(200, content=b"video-bytes"))
        router.add("POST", UPLOAD_INIT_URL, httpx.Response(200, headers={"location": SESSION_URL}))
        router.add("PUT", SESSION_URL, httpx.Response(200, json={"id": "vid123"}))

        credential = make_credential("youtube", token_expires_at=utcnow() - timedelta(minutes=5))
        repo = FakeRepository(credentials=[credential])
        post = make_video_post()

        async with router.client() as client:
            result = await publish_to_youtube(make_ctx("youtube", post, credential, client, yt_settings, repo))

        assert result.success
        assert result.post_id == "vid123"
        assert result.url == "https://youtube.com/shorts/vid123"

        (token_call,) = router.calls("POST", GOOGLE_TOKEN_URL)
        assert router.requests[0] is token_call
        grant = {k: v[0] for k, v in parse_qs(token_call.content.decode()).items()}
        assert grant["grant_type"] == "refresh_token"
        assert grant["refresh_token"] == "youtube-refresh"
        assert grant["client_id"] == "g-id"

        assert len(repo.credential_updates) == 1
        assert repo.credential_updates[0][2]["access_token"] == "yt-new"
        assert repo.credential_updates[0][2]["refresh_token"] == "youtube-refresh"

        (init,) = router.calls("POST", UPLOAD_INIT_URL)
        assert init.headers["Authorization"] == "Bearer yt-new"
        assert init.url.params["uploadType"] == "resumable"
        assert init.headers["X-Upload-Content-Length"] == str(len(b"video-bytes"))
        snippet = json.loads(init.content)["snippet"]
        assert snippet["title"] == "Launch day"
        assert snippet["description"].endswith("#Shorts")

        (put,) = router.calls("PUT", SESSION_URL)
        assert put.content == b"video-bytes"

    @pytest.mark.asyncio
    async def test_fresh_token_is_not_refreshed(self, router, yt_settings):
        router.add("GET", VIDEO_URL, httpx.Response(200, content=b"v"))
        router.add("POST", UPLOAD_INIT_URL, httpx.Response(200, headers={"location": SESSION_URL}))
        router.add("PUT", SESSION_URL, httpx.Response(201, json={"id": "vid9"}))

        async with router.client() as client:
            result = await publish_to_youtube(
                make_ctx("youtube", make_video_post(), make_credential("youtube"), client, yt_settings)
            )

        assert result.post_id == "vid9"
        assert router.calls("POST", GOOGLE_TOKEN_URL) == []

    @pytest.mark.asyncio
    async def test_revoked_refresh_token_requires_reconnect(self, router, yt_settings):
        router.add("POST", GOOGLE_TOKEN_URL, httpx.Response(400, json={"error": "invalid_grant"}))
        credential = make_credential("youtube", token_expires_at=utcnow() - timedelta(minutes=5))

        async with router.client() as client:
            with pytest.raises(ReconnectRequired):
                await publish_to_youtube(make_ctx("youtube", make_video_post(), credential, client, yt_settings))

        assert router.calls("POST", UPLOAD_INIT_URL) == []

    @pytest.mark.asyncio
    async def test_missing_location_header(self, router, yt_settings):
        router.add("GET", VIDEO_URL, httpx.Response(200, content=b"v"))
        router.add("POST", UPLOAD_INIT_URL, httpx.Response(200))

        async with router.client() as client:
            with pytest.raises(AdapterError) as exc:
                await publish_to_youtube(
                    make_ctx("youtube", make_video_post(), make_credential("youtube"), client, yt_settings)
                )
        assert exc.value.code == ErrorCode.UPLOAD_FAILED

    @pytest.mark.asyncio
    async def test_video_required(self, router, yt_settings):
        async with router.client() as client:
            with pytest.raises(AdapterError) as exc:
                await publish_to_youtube(
                    make_ctx("youtube", make_post(), make_credential("youtube"), client, yt_settings)
                )

        assert exc.value.code == ErrorCode.MEDIA_REQUIRED
        assert router.requests == []
