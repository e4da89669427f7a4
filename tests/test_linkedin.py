"""Tests for the LinkedIn adapter: content selection, multipart video upload, images."""

from __future__ import annotations

import json

import httpx
import pytest

from broadcast.errors import AdapterError, ErrorCode
from broadcast.models import MediaType
from broadcast.platforms.linkedin import (
    Image,
    PreuploadedVideo,
    ServerUploadVideo,
    TextOnly,
    init_video_upload,
    publish_to_linkedin,
    select_content,
)

from conftest import make_credential, make_ctx, make_post, make_video_post

API = "https://api.linkedin.com"
VIDEO_URL = "https://media.example.com/videos/clip.mp4"
VIDEO_BYTES = b"0123456789abcdefghijKLMNOPQRST"
VIDEO_URN = "urn:li:video:C5500"


def instructions(count=3, size=10):
    return [
        {
            "uploadUrl": f"https://upload.linkedin.test/part/{i + 1}",
            "firstByte": i * size,
            "lastByte": (i + 1) * size - 1,
        }
        for i in range(count)
    ]


def videos_endpoint(upload_instructions):
    """Serves initializeUpload and finalizeUpload, which share a path."""

    def respond(request: httpx.Request) -> httpx.Response:
        action = request.url.params.get("action")
        if action == "initializeUpload":
            return httpx.Response(200, json={"value": {
                "video": VIDEO_URN,
                "uploadToken": "tok-1",
                "uploadInstructions": upload_instructions,
            }})
        if action == "finalizeUpload":
            return httpx.Response(200)
        return httpx.Response(400, json={"message": f"unexpected action {action}"})

    return respond


class TestSelectContent:
    def test_text_only(self):
        assert isinstance(select_content(make_post()), TextOnly)

    def test_image(self):
        post = make_post(media_url="https://media.example.com/a.jpg", media_type=MediaType.IMAGE)
        assert select_content(post) == Image(url="https://media.example.com/a.jpg")

    def test_server_upload_video(self):
        assert select_content(make_video_post()) == ServerUploadVideo(url=VIDEO_URL)

    def test_preuploaded_video_wins(self):
        post = make_video_post(platform_metadata={"linkedin": {"video_urn": VIDEO_URN}})
        assert select_content(post) == PreuploadedVideo(video_urn=VIDEO_URN)


class TestLinkedInVideo:
    @pytest.mark.asyncio
    async def test_multipart_upload_in_order_then_finalize_once(self, router, settings):
        router.add("GET", VIDEO_URL, httpx.Response(200, content=VIDEO_BYTES))
        router.add("POST", f"{API}/rest/videos", videos_endpoint(instructions()))
        for i in range(3):
            router.add("PUT", f"https://upload.linkedin.test/part/{i + 1}",
                       httpx.Response(200, headers={"etag": f"etag-{i + 1}"}))
        router.add("POST", f"{API}/rest/posts", httpx.Response(201, headers={"x-restli-id": "urn:li:share:9"}))

        post = make_video_post()
        async with router.client() as client:
            result = await publish_to_linkedin(make_ctx("linkedin", post, make_credential("linkedin"), client, settings))

        assert result.success
        assert result.post_id == "urn:li:share:9"

        puts = [r for r in router.requests if r.method == "PUT"]
        assert [str(r.url) for r in puts] == [f"https://upload.linkedin.test/part/{i}" for i in (1, 2, 3)]
        assert [r.content for r in puts] == [VIDEO_BYTES[0:10], VIDEO_BYTES[10:20], VIDEO_BYTES[20:30]]

        video_calls = router.calls("POST", f"{API}/rest/videos")
        actions = [r.url.params.get("action") for r in video_calls]
        assert actions == ["initializeUpload", "finalizeUpload"]

        finalize = json.loads(video_calls[1].content)["finalizeUploadRequest"]
        assert finalize["uploadedPartIds"] == ["etag-1", "etag-2", "etag-3"]
        assert finalize["video"] == VIDEO_URN
        assert finalize["uploadToken"] == "tok-1"

        init = json.loads(video_calls[0].content)["initializeUploadRequest"]
        assert init["fileSizeBytes"] == len(VIDEO_BYTES)
        assert init["owner"] == "urn:li:person:linkedin-uid"

        (create,) = router.calls("POST", f"{API}/rest/posts")
        assert json.loads(create.content)["content"] == {"media": {"id": VIDEO_URN}}

    @pytest.mark.asyncio
    async def test_single_part_upload_still_finalizes(self, router, settings):
        router.add("GET", VIDEO_URL, httpx.Response(200, content=VIDEO_BYTES))
        router.add("POST", f"{API}/rest/videos", videos_endpoint(instructions(count=1, size=30)))
        router.add("PUT", "https://upload.linkedin.test/part/1", httpx.Response(200, headers={"etag": "only"}))
        router.add("POST", f"{API}/rest/posts", httpx.Response(201, headers={"x-restli-id": "urn:li:share:1"}))

        async with router.client() as client:
            result = await publish_to_linkedin(
                make_ctx("linkedin", make_video_post(), make_credential("linkedin"), client, settings)
            )

        assert result.success
        finalize = router.calls("POST", f"{API}/rest/videos")[-1]
        assert json.loads(finalize.content)["finalizeUploadRequest"]["uploadedPartIds"] == ["only"]

    @pytest.mark.asyncio
    async def test_missing_etag_fails_the_upload(self, router, settings):
        router.add("GET", VIDEO_URL, httpx.Response(200, content=VIDEO_BYTES))
        router.add("POST", f"{API}/rest/videos", videos_endpoint(instructions()))
        router.add("PUT", "https://upload.linkedin.test/part/1", httpx.Response(200))

        async with router.client() as client:
            with pytest.raises(AdapterError) as exc:
                await publish_to_linkedin(
                    make_ctx("linkedin", make_video_post(), make_credential("linkedin"), client, settings)
                )

        assert exc.value.code == ErrorCode.UPLOAD_FAILED
        assert router.calls("POST", f"{API}/rest/posts") == []

    @pytest.mark.asyncio
    async def test_preuploaded_video_skips_upload(self, router, settings):
        router.add("POST", f"{API}/rest/posts", httpx.Response(201, headers={"x-restli-id": "urn:li:share:2"}))
        post = make_video_post(platform_metadata={"linkedin": {"video_urn": VIDEO_URN}})

        async with router.client() as client:
            result = await publish_to_linkedin(make_ctx("linkedin", post, make_credential("linkedin"), client, settings))

        assert result.post_id == "urn:li:share:2"
        assert [r.method for r in router.requests] == ["POST"]
        assert json.loads(router.requests[0].content)["content"] == {"media": {"id": VIDEO_URN}}


class TestLinkedInPosts:
    @pytest.mark.asyncio
    async def test_image_post(self, router, settings):
        image_url = "https://media.example.com/photo.jpg"
        router.add("GET", image_url, httpx.Response(200, content=b"jpeg-bytes"))
        router.add("POST", f"{API}/rest/images", httpx.Response(200, json={"value": {
            "uploadUrl": "https://upload.linkedin.test/image/1",
            "image": "urn:li:image:D1",
        }}))
        router.add("PUT", "https://upload.linkedin.test/image/1", httpx.Response(201))
        router.add("POST", f"{API}/rest/posts", httpx.Response(201, headers={"x-restli-id": "urn:li:share:3"}))

        post = make_post(media_url=image_url, media_type=MediaType.IMAGE)
        async with router.client() as client:
            result = await publish_to_linkedin(make_ctx("linkedin", post, make_credential("linkedin"), client, settings))

        assert result.success
        (put,) = router.calls("PUT", "https://upload.linkedin.test/image/1")
        assert put.content == b"jpeg-bytes"
        (create,) = router.calls("POST", f"{API}/rest/posts")
        assert json.loads(create.content)["content"] == {"media": {"id": "urn:li:image:D1"}}

    @pytest.mark.asyncio
    async def test_rejected_post_is_an_error_without_text_fallback(self, router, settings):
        router.add("POST", f"{API}/rest/posts",
                   httpx.Response(422, json={"message": "Content is a duplicate"}))

        async with router.client() as client:
            with pytest.raises(AdapterError) as exc:
                await publish_to_linkedin(
                    make_ctx("linkedin", make_post(), make_credential("linkedin"), client, settings)
                )

        assert exc.value.code == ErrorCode.PUBLISH_FAILED
        assert exc.value.http_status == 422
        assert "duplicate" in exc.value.message
        assert len(router.calls("POST", f"{API}/rest/posts")) == 1

    @pytest.mark.asyncio
    async def test_author_resolved_from_userinfo(self, router, settings):
        router.add("GET", f"{API}/v2/userinfo", httpx.Response(200, json={"sub": "abc123"}))
        router.add("POST", f"{API}/rest/posts", httpx.Response(201, headers={"x-restli-id": "urn:li:share:4"}))

        credential = make_credential("linkedin", platform_user_id=None)
        async with router.client() as client:
            await publish_to_linkedin(make_ctx("linkedin", make_post(), credential, client, settings))

        (create,) = router.calls("POST", f"{API}/rest/posts")
        assert json.loads(create.content)["author"] == "urn:li:person:abc123"

    @pytest.mark.asyncio
    async def test_accepted_without_id_is_success_with_note(self, router, settings):
        router.add("POST", f"{API}/rest/posts", httpx.Response(201))

        async with router.client() as client:
            result = await publish_to_linkedin(
                make_ctx("linkedin", make_post(), make_credential("linkedin"), client, settings)
            )

        assert result.success
        assert result.post_id is None
        assert result.note


class TestLinkedInInitVideo:
    @pytest.mark.asyncio
    async def test_returns_upload_instructions(self, router, settings):
        parts = instructions(count=2, size=5)
        router.add("POST", f"{API}/rest/videos", videos_endpoint(parts))

        async with router.client() as client:
            out = await init_video_upload(client, make_credential("linkedin"), settings, 10)

        assert out == {
            "uploadUrl": "https://upload.linkedin.test/part/1",
            "videoUrn": VIDEO_URN,
            "authorUrn": "urn:li:person:linkedin-uid",
            "uploadToken": "tok-1",
            "uploadInstructions": parts,
        }
