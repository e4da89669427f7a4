"""
LinkedIn publishing via the versioned REST API.

Content is chosen once, up front:
  PreuploadedVideo   - browser already uploaded; handle in platform_metadata.linkedin.video_urn
  ServerUploadVideo  - video in the media store; initializeUpload -> PUT parts -> finalizeUpload
  Image              - images?action=initializeUpload -> PUT bytes
  TextOnly           - commentary only

Every variant ends in POST /rest/posts. Any non-2xx aborts the publish;
there is no downgrade to a text post.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

import httpx

from ..config import PublishSettings
from ..context import PublishContext
from ..errors import AdapterError, ErrorCode
from ..models import Credential, PlatformResult, Post
from .base import download_media, json_body, raise_for_status

logger = logging.getLogger("broadcast")

API_BASE = "https://api.linkedin.com"


@dataclass
class TextOnly:
    pass


@dataclass
class Image:
    url: str


@dataclass
class PreuploadedVideo:
    video_urn: str


@dataclass
class ServerUploadVideo:
    url: str


LinkedInContent = Union[TextOnly, Image, PreuploadedVideo, ServerUploadVideo]


def select_content(post: Post) -> LinkedInContent:
    video_urn = post.metadata_for("linkedin").get("video_urn")
    if video_urn:
        return PreuploadedVideo(video_urn=video_urn)
    if post.is_video:
        return ServerUploadVideo(url=post.media_url)
    if post.is_image:
        return Image(url=post.media_url)
    return TextOnly()


class LinkedInApi:
    """Thin wrapper over the REST endpoints the adapter and the init endpoint use."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        credential: Credential,
        settings: PublishSettings,
        log: Optional[logging.LoggerAdapter] = None,
    ):
        self.client = client
        self.credential = credential
        self.settings = settings
        self.log = log or logger

    @property
    def headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.credential.access_token}",
            "Content-Type": "application/json",
            "X-Restli-Protocol-Version": "2.0.0",
            "LinkedIn-Version": self.settings.linkedin_version,
        }

    async def author_urn(self) -> str:
        member_id = self.credential.platform_user_id
        if member_id:
            return member_id if member_id.startswith("urn:li:") else f"urn:li:person:{member_id}"

        resp = await self.client.get(
            f"{API_BASE}/v2/userinfo",
            headers={"Authorization": f"Bearer {self.credential.access_token}"},
        )
        raise_for_status(resp, "linkedin", "Profile lookup")
        sub = json_body(resp).get("sub")
        if not sub:
            raise AdapterError("linkedin", "LinkedIn profile has no member id")
        return f"urn:li:person:{sub}"

    async def initialize_video_upload(self, owner: str, file_size: int) -> dict:
        resp = await self.client.post(
            f"{API_BASE}/rest/videos",
            params={"action": "initializeUpload"},
            headers=self.headers,
            json={
                "initializeUploadRequest": {
                    "owner": owner,
                    "fileSizeBytes": file_size,
                    "uploadCaptions": False,
                    "uploadThumbnail": False,
                }
            },
        )
        raise_for_status(resp, "linkedin", "Video initializeUpload", code=ErrorCode.UPLOAD_FAILED)
        value = json_body(resp).get("value") or {}
        if not value.get("video") or not value.get("uploadInstructions"):
            raise AdapterError("linkedin", "initializeUpload returned no upload instructions", code=ErrorCode.UPLOAD_FAILED)
        return value

    async def upload_parts(self, instructions: List[dict], data: bytes) -> List[str]:
        """PUT each instruction's byte range in order; returns ETags in the same order."""
        etags: List[str] = []
        for i, instruction in enumerate(instructions):
            first = int(instruction["firstByte"])
            last = int(instruction["lastByte"])
            resp = await self.client.put(
                instruction["uploadUrl"],
                content=data[first:last + 1],
                headers={
                    "Authorization": f"Bearer {self.credential.access_token}",
                    "Content-Type": "application/octet-stream",
                },
            )
            raise_for_status(resp, "linkedin", f"Video part {i + 1}/{len(instructions)} upload", code=ErrorCode.UPLOAD_FAILED)
            etag = resp.headers.get("etag")
            if not etag:
                raise AdapterError("linkedin", f"Video part {i + 1} returned no ETag", code=ErrorCode.UPLOAD_FAILED)
            etags.append(etag)
        return etags

    async def finalize_video_upload(self, video_urn: str, upload_token: str, etags: List[str]):
        resp = await self.client.post(
            f"{API_BASE}/rest/videos",
            params={"action": "finalizeUpload"},
            headers=self.headers,
            json={
                "finalizeUploadRequest": {
                    "video": video_urn,
                    "uploadToken": upload_token,
                    "uploadedPartIds": etags,
                }
            },
        )
        raise_for_status(resp, "linkedin", "Video finalizeUpload", code=ErrorCode.UPLOAD_FAILED)

    async def upload_video(self, owner: str, data: bytes) -> str:
        value = await self.initialize_video_upload(owner, len(data))
        instructions = value["uploadInstructions"]
        etags = await self.upload_parts(instructions, data)
        await self.finalize_video_upload(value["video"], value.get("uploadToken", ""), etags)
        self.log.info(f"Video uploaded in {len(etags)} part(s): {value['video']}")
        return value["video"]

    async def upload_image(self, owner: str, data: bytes) -> str:
        resp = await self.client.post(
            f"{API_BASE}/rest/images",
            params={"action": "initializeUpload"},
            headers=self.headers,
            json={"initializeUploadRequest": {"owner": owner}},
        )
        raise_for_status(resp, "linkedin", "Image initializeUpload", code=ErrorCode.UPLOAD_FAILED)
        value = json_body(resp).get("value") or {}
        upload_url = value.get("uploadUrl")
        image_urn = value.get("image")
        if not upload_url or not image_urn:
            raise AdapterError("linkedin", "Image initializeUpload returned no upload URL", code=ErrorCode.UPLOAD_FAILED)

        put = await self.client.put(
            upload_url,
            content=data,
            headers={
                "Authorization": f"Bearer {self.credential.access_token}",
                "Content-Type": "application/octet-stream",
            },
        )
        raise_for_status(put, "linkedin", "Image upload", code=ErrorCode.UPLOAD_FAILED)
        return image_urn

    async def create_post(self, author: str, commentary: str, media_urn: Optional[str] = None) -> Optional[str]:
        body = {
            "author": author,
            "commentary": commentary,
            "visibility": "PUBLIC",
            "distribution": {
                "feedDistribution": "MAIN_FEED",
                "targetEntities": [],
                "thirdPartyDistributionChannels": [],
            },
            "lifecycleState": "PUBLISHED",
            "isReshareDisabledByAuthor": False,
        }
        if media_urn:
            body["content"] = {"media": {"id": media_urn}}

        resp = await self.client.post(f"{API_BASE}/rest/posts", headers=self.headers, json=body)
        raise_for_status(resp, "linkedin", "Post creation", code=ErrorCode.PUBLISH_FAILED)
        return resp.headers.get("x-restli-id")


async def publish_to_linkedin(ctx: PublishContext) -> PlatformResult:
    api = LinkedInApi(ctx.client, ctx.credential, ctx.settings, log=ctx.log)
    content = select_content(ctx.post)
    ctx.log.info(f"Content variant: {type(content).__name__}")

    author = await api.author_urn()
    media_urn = None

    if isinstance(content, PreuploadedVideo):
        media_urn = content.video_urn
    elif isinstance(content, ServerUploadVideo):
        data = await download_media(ctx, content.url)
        media_urn = await api.upload_video(author, data)
    elif isinstance(content, Image):
        data = await download_media(ctx, content.url)
        media_urn = await api.upload_image(author, data)

    post_id = await api.create_post(author, ctx.caption, media_urn)
    if not post_id:
        return PlatformResult.ok(note="LinkedIn accepted the post but returned no post id")
    return PlatformResult.ok(post_id=post_id, url=f"https://www.linkedin.com/feed/update/{post_id}")


async def init_video_upload(
    client: httpx.AsyncClient,
    credential: Credential,
    settings: PublishSettings,
    file_size: int,
) -> dict:
    """Browser-upload half: initialize the upload and hand back the instructions."""
    api = LinkedInApi(client, credential, settings)
    author = await api.author_urn()
    value = await api.initialize_video_upload(author, file_size)
    instructions = value["uploadInstructions"]
    return {
        "uploadUrl": instructions[0].get("uploadUrl"),
        "videoUrn": value["video"],
        "authorUrn": author,
        "uploadToken": value.get("uploadToken", ""),
        "uploadInstructions": instructions,
    }
