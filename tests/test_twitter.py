"""Tests for the Twitter/X adapter: chunked upload, processing status, text fallback."""

from __future__ import annotations

import base64
import json
from datetime import timedelta
from urllib.parse import parse_qs

import httpx
import pytest

from broadcast.errors import AdapterError, ErrorCode
from broadcast.platforms.twitter import (
    TWEETS_URL,
    UPLOAD_URL,
    ProcessingState,
    decode_processing_info,
    publish_to_twitter,
)
from broadcast.tokens import TWITTER_TOKEN_URL

from conftest import make_credential, make_ctx, make_post, make_video_post, utcnow

VIDEO_URL = "https://media.example.com/videos/clip.mp4"
VIDEO_BYTES = b"abcdefghij"


def form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def upload_endpoint(finalize_body: dict):
    def respond(request: httpx.Request) -> httpx.Response:
        command = form(request)["command"]
        if command == "INIT":
            return httpx.Response(202, json={"media_id_string": "77"})
        if command == "APPEND":
            return httpx.Response(204)
        if command == "FINALIZE":
            return httpx.Response(200, json={"media_id_string": "77", **finalize_body})
        return httpx.Response(400, json={"error": f"unexpected {command}"})
    return respond


def tweet_created(tweet_id="1800"):
    return httpx.Response(201, json={"data": {"id": tweet_id, "text": "..."}})


class TestDecodeProcessingInfo:
    def test_absent(self):
        assert decode_processing_info({"media_id_string": "1"}) is None

    def test_in_progress(self):
        info = decode_processing_info({"processing_info": {"state": "in_progress", "check_after_secs": 5}})
        assert info.state == ProcessingState.IN_PROGRESS
        assert info.check_after_secs == 5
        assert not info.done

    def test_failed_with_error(self):
        info = decode_processing_info({"processing_info": {"state": "failed", "error": {"message": "InvalidMedia"}}})
        assert info.done
        assert info.error == "InvalidMedia"


class TestTwitterUpload:
    @pytest.mark.asyncio
    async def test_chunked_upload_then_tweet_with_media(self, router, settings):
        router.add("GET", VIDEO_URL, httpx.Response(200, content=VIDEO_BYTES))
        router.add("POST", UPLOAD_URL, upload_endpoint({"processing_info": {"state": "pending", "check_after_secs": 1}}))
        router.add(
            "GET", UPLOAD_URL,
            httpx.Response(200, json={"processing_info": {"state": "in_progress", "check_after_secs": 1}}),
            httpx.Response(200, json={"processing_info": {"state": "succeeded"}}),
        )
        router.add("POST", TWEETS_URL, tweet_created())

        async with router.client() as client:
            result = await publish_to_twitter(
                make_ctx("twitter", make_video_post(), make_credential("twitter"), client, settings)
            )

        assert result.success
        assert result.post_id == "1800"
        assert result.url == "https://twitter.com/i/web/status/1800"
        assert result.note is None

        commands = [form(r) for r in router.calls("POST", UPLOAD_URL)]
        assert [c["command"] for c in commands] == ["INIT", "APPEND", "APPEND", "APPEND", "FINALIZE"]
        assert commands[0]["total_bytes"] == "10"
        assert commands[0]["media_category"] == "tweet_video"
        appends = commands[1:4]
        assert [a["segment_index"] for a in appends] == ["0", "1", "2"]
        assert b"".join(base64.b64decode(a["media_data"]) for a in appends) == VIDEO_BYTES

        assert len(router.calls("GET", UPLOAD_URL)) == 2
        (tweet,) = router.calls("POST", TWEETS_URL)
        assert json.loads(tweet.content)["media"] == {"media_ids": ["77"]}

    @pytest.mark.asyncio
    async def test_processing_failure_falls_back_to_text(self, router, settings):
        router.add("GET", VIDEO_URL, httpx.Response(200, content=VIDEO_BYTES))
        router.add("POST", UPLOAD_URL, upload_endpoint({
            "processing_info": {"state": "failed", "error": {"message": "InvalidMedia"}},
        }))
        router.add("POST", TWEETS_URL, tweet_created("1801"))

        post = make_video_post(caption="Watch this")
        async with router.client() as client:
            result = await publish_to_twitter(make_ctx("twitter", post, make_credential("twitter"), client, settings))

        assert result.success
        assert result.post_id == "1801"
        assert "InvalidMedia" in result.note
        assert result.note.endswith("posted as text only.")
        (tweet,) = router.calls("POST", TWEETS_URL)
        assert json.loads(tweet.content) == {"text": "Watch this"}

    @pytest.mark.asyncio
    async def test_processing_timeout_falls_back_to_text(self, router, settings):
        router.add("GET", VIDEO_URL, httpx.Response(200, content=VIDEO_BYTES))
        router.add("POST", UPLOAD_URL, upload_endpoint({"processing_info": {"state": "pending"}}))
        router.add("GET", UPLOAD_URL, httpx.Response(200, json={"processing_info": {"state": "in_progress"}}))
        router.add("POST", TWEETS_URL, tweet_created())

        async with router.client() as client:
            result = await publish_to_twitter(
                make_ctx("twitter", make_video_post(), make_credential("twitter"), client, settings)
            )

        assert result.success
        assert result.note
        assert len(router.calls("GET", UPLOAD_URL)) == settings.twitter_poll_max_attempts
        (tweet,) = router.calls("POST", TWEETS_URL)
        assert "media" not in json.loads(tweet.content)

    @pytest.mark.asyncio
    async def test_media_download_failure_falls_back_to_text(self, router, settings):
        router.add("GET", VIDEO_URL, httpx.Response(404, text="gone"))
        router.add("POST", TWEETS_URL, tweet_created())

        async with router.client() as client:
            result = await publish_to_twitter(
                make_ctx("twitter", make_video_post(), make_credential("twitter"), client, settings)
            )

        assert result.success
        assert "Media download failed" in result.note
        assert router.calls("POST", UPLOAD_URL) == []

    @pytest.mark.asyncio
    async def test_preuploaded_media_id_is_reused(self, router, settings):
        router.add("POST", TWEETS_URL, tweet_created())
        post = make_video_post(platform_metadata={"twitter": {"media_id": "55"}})

        async with router.client() as client:
            await publish_to_twitter(make_ctx("twitter", post, make_credential("twitter"), client, settings))

        assert [r.method for r in router.requests] == ["POST"]
        assert json.loads(router.requests[0].content)["media"] == {"media_ids": ["55"]}


class TestTwitterText:
    @pytest.mark.asyncio
    async def test_caption_truncated(self, router, settings):
        router.add("POST", TWEETS_URL, tweet_created())

        async with router.client() as client:
            await publish_to_twitter(
                make_ctx("twitter", make_post(caption="y" * 300), make_credential("twitter"), client, settings)
            )

        (tweet,) = router.calls("POST", TWEETS_URL)
        assert len(json.loads(tweet.content)["text"]) == 280

    @pytest.mark.asyncio
    async def test_expired_token_is_not_refreshed_at_publish(self, router, settings):
        router.add("POST", TWEETS_URL, tweet_created())
        credential = make_credential("twitter", token_expires_at=utcnow() - timedelta(hours=1))

        async with router.client() as client:
            await publish_to_twitter(make_ctx("twitter", make_post(), credential, client, settings))

        assert router.calls("POST", TWITTER_TOKEN_URL) == []
        (tweet,) = router.calls("POST", TWEETS_URL)
        assert tweet.headers["Authorization"] == "Bearer twitter-token"

    @pytest.mark.asyncio
    async def test_rejected_tweet_raises(self, router, settings):
        router.add("POST", TWEETS_URL, httpx.Response(403, json={"detail": "You are not allowed to create a Tweet"}))

        async with router.client() as client:
            with pytest.raises(AdapterError) as exc:
                await publish_to_twitter(make_ctx("twitter", make_post(), make_credential("twitter"), client, settings))

        assert exc.value.code == ErrorCode.PUBLISH_FAILED
        assert "not allowed" in exc.value.message
