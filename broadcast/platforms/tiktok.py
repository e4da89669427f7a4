"""
TikTok publishing (inbox / drafts).

The upload itself happens in the browser: init_tiktok_upload() asks TikTok
for an upload URL and the client PUTs the chunks there, then stores the
returned publish_id (or the upload error) on the post under
platform_metadata.tiktok. The publish-time adapter only reads that back.
"""

import logging
import math
from dataclasses import dataclass

import httpx

from ..config import PublishSettings
from ..context import PublishContext
from ..errors import AdapterError, ErrorCode
from ..models import Credential, PlatformResult
from ..tokens import ensure_fresh_credential
from .base import error_detail, json_body

logger = logging.getLogger("broadcast")

INBOX_INIT_URL = "https://open.tiktokapis.com/v2/post/publish/inbox/video/init/"

MIN_CHUNK_SIZE = 5 * 1024 * 1024
MAX_CHUNK_SIZE = 64 * 1024 * 1024
DEFAULT_CHUNK_SIZE = 10 * 1024 * 1024

INBOX_NOTE = "Video sent to your TikTok inbox. Open the TikTok app to add a caption and post."


@dataclass(frozen=True)
class ChunkPlan:
    chunk_size: int
    total_chunk_count: int


def plan_chunks(file_size: int) -> ChunkPlan:
    """
    Files up to 64 MB go up as a single chunk of the file size (TikTok
    accepts a single chunk under the 5 MB minimum). Larger files use 10 MB
    chunks, the last of which carries the shorter remainder.
    """
    if file_size <= 0:
        raise ValueError("file_size must be positive")
    if file_size <= MAX_CHUNK_SIZE:
        return ChunkPlan(chunk_size=file_size, total_chunk_count=1)
    return ChunkPlan(
        chunk_size=DEFAULT_CHUNK_SIZE,
        total_chunk_count=math.ceil(file_size / DEFAULT_CHUNK_SIZE),
    )


async def publish_to_tiktok(ctx: PublishContext) -> PlatformResult:
    meta = ctx.metadata
    publish_id = meta.get("publish_id")
    if publish_id:
        ctx.log.info(f"Inbox upload already done: publish_id={publish_id}")
        return PlatformResult.ok(publish_id=str(publish_id), note=INBOX_NOTE)

    upload_error = meta.get("upload_error")
    if upload_error:
        raise AdapterError("tiktok", str(upload_error), code=ErrorCode.UPLOAD_FAILED)

    raise AdapterError(
        "tiktok",
        "TikTok video was not uploaded. Upload the video from the browser before publishing.",
        code=ErrorCode.UPLOAD_FAILED,
    )


async def init_tiktok_upload(
    client: httpx.AsyncClient,
    repository,
    credential: Credential,
    settings: PublishSettings,
    file_size: int,
) -> dict:
    credential = await ensure_fresh_credential(client, repository, credential, settings)
    plan = plan_chunks(file_size)
    logger.info(
        f"TikTok init: {file_size} bytes -> {plan.total_chunk_count} chunk(s) of {plan.chunk_size}"
    )

    resp = await client.post(
        INBOX_INIT_URL,
        headers={
            "Authorization": f"Bearer {credential.access_token}",
            "Content-Type": "application/json; charset=UTF-8",
        },
        json={
            "source_info": {
                "source": "FILE_UPLOAD",
                "video_size": file_size,
                "chunk_size": plan.chunk_size,
                "total_chunk_count": plan.total_chunk_count,
            }
        },
    )
    body = json_body(resp)
    err = body.get("error") or {}
    if not resp.is_success or (isinstance(err, dict) and err.get("code") not in (None, "ok")):
        raise AdapterError(
            "tiktok",
            f"TikTok upload init failed: {error_detail(resp)}",
            code=ErrorCode.UPLOAD_FAILED,
            http_status=resp.status_code,
        )

    data = body.get("data") or {}
    upload_url = data.get("upload_url")
    if not upload_url:
        raise AdapterError("tiktok", "No upload URL returned from TikTok", code=ErrorCode.UPLOAD_FAILED)

    return {
        "uploadUrl": upload_url,
        "publishId": data.get("publish_id"),
        "chunkSize": plan.chunk_size,
        "totalChunkCount": plan.total_chunk_count,
    }
