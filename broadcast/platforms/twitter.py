"""
Twitter/X publishing.

Media goes through the v1.1 chunked upload (INIT -> APPEND* -> FINALIZE ->
STATUS polling) and the tweet through v2. If the media upload fails the
tweet is still sent as text with a note: this is the only adapter that
degrades instead of failing.

The stored token is used as is here; Twitter refresh runs from the
account-refresh flow only.
"""

import base64
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import httpx

from ..context import PublishContext
from ..errors import AdapterError, ErrorCode
from ..models import PlatformResult
from ..polling import poll_until
from .base import download_media, json_body, media_mime, raise_for_status

UPLOAD_URL = "https://upload.twitter.com/1.1/media/upload.json"
TWEETS_URL = "https://api.twitter.com/2/tweets"
TWEET_MAX = 280


class ProcessingState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class ProcessingInfo:
    state: ProcessingState
    check_after_secs: float = 1.0
    error: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.state not in (ProcessingState.PENDING, ProcessingState.IN_PROGRESS)


def decode_processing_info(body: dict) -> Optional[ProcessingInfo]:
    """None when the upload needs no async processing (images, small clips)."""
    info = body.get("processing_info")
    if not isinstance(info, dict):
        return None
    try:
        state = ProcessingState(str(info.get("state", "")).lower())
    except ValueError:
        state = ProcessingState.FAILED
    err = info.get("error")
    if isinstance(err, dict):
        err = err.get("message") or err.get("name")
    return ProcessingInfo(
        state=state,
        check_after_secs=float(info.get("check_after_secs") or 1),
        error=err,
    )


def tweet_text(caption: str) -> str:
    return caption[:TWEET_MAX]


async def _upload_command(ctx: PublishContext, data: dict, what: str) -> httpx.Response:
    resp = await ctx.client.post(UPLOAD_URL, data=data, headers=ctx.auth_headers())
    raise_for_status(resp, "twitter", f"Media {what}", code=ErrorCode.UPLOAD_FAILED)
    return resp


async def upload_media(ctx: PublishContext) -> str:
    """Chunked media upload. Returns the media id string."""
    data = await download_media(ctx)
    settings = ctx.settings
    category = "tweet_video" if ctx.post.is_video else "tweet_image"

    init = await _upload_command(ctx, {
        "command": "INIT",
        "total_bytes": str(len(data)),
        "media_type": media_mime(ctx),
        "media_category": category,
    }, "INIT")
    media_id = json_body(init).get("media_id_string")
    if not media_id:
        raise AdapterError("twitter", "INIT returned no media id", code=ErrorCode.UPLOAD_FAILED)

    chunk = settings.twitter_chunk_size
    for index, offset in enumerate(range(0, len(data), chunk)):
        await _upload_command(ctx, {
            "command": "APPEND",
            "media_id": media_id,
            "segment_index": str(index),
            "media_data": base64.b64encode(data[offset:offset + chunk]).decode("ascii"),
        }, f"APPEND #{index}")

    finalize = await _upload_command(ctx, {"command": "FINALIZE", "media_id": media_id}, "FINALIZE")
    info = decode_processing_info(json_body(finalize))

    if info is not None and not info.done:
        async def check():
            resp = await ctx.client.get(
                UPLOAD_URL,
                params={"command": "STATUS", "media_id": media_id},
                headers=ctx.auth_headers(),
            )
            raise_for_status(resp, "twitter", "Media STATUS", code=ErrorCode.UPLOAD_FAILED)
            status = decode_processing_info(json_body(resp))
            if status is None:
                return True, None, None
            return status.done, status, status.check_after_secs

        polled = await poll_until(
            check,
            max_attempts=settings.twitter_poll_max_attempts,
            interval=min(info.check_after_secs, settings.twitter_max_poll_delay),
            max_delay=settings.twitter_max_poll_delay,
        )
        if not polled.completed:
            raise AdapterError("twitter", "Media processing did not finish in time", code=ErrorCode.TIMEOUT)
        info = polled.value

    if info is not None and info.state == ProcessingState.FAILED:
        raise AdapterError(
            "twitter",
            f"Media processing failed: {info.error or 'unknown error'}",
            code=ErrorCode.UPLOAD_FAILED,
        )

    ctx.log.info(f"Media uploaded: media_id={media_id}")
    return media_id


async def create_tweet(ctx: PublishContext, text: str, media_id: Optional[str] = None) -> str:
    body = {"text": text}
    if media_id:
        body["media"] = {"media_ids": [media_id]}
    resp = await ctx.client.post(TWEETS_URL, json=body, headers=ctx.auth_headers())
    raise_for_status(resp, "twitter", "Tweet", code=ErrorCode.PUBLISH_FAILED)
    tweet_id = (json_body(resp).get("data") or {}).get("id")
    if not tweet_id:
        raise AdapterError("twitter", "Tweet created but no id returned", code=ErrorCode.PUBLISH_FAILED)
    return str(tweet_id)


def tweet_url(tweet_id: str) -> str:
    return f"https://twitter.com/i/web/status/{tweet_id}"


async def publish_to_twitter(ctx: PublishContext) -> PlatformResult:
    text = tweet_text(ctx.caption)
    media_id = ctx.metadata.get("media_id")
    note = None

    if not media_id and ctx.post.has_media:
        try:
            media_id = await upload_media(ctx)
        except (AdapterError, httpx.HTTPError) as e:
            reason = e.message if isinstance(e, AdapterError) else str(e)
            ctx.log.warning(f"Media upload failed, posting text only: {reason}")
            note = f"Media upload failed ({reason}); posted as text only."
            media_id = None

    tweet_id = await create_tweet(ctx, text, str(media_id) if media_id else None)
    ctx.log.info(f"Tweet created: {tweet_id}")
    return PlatformResult.ok(post_id=tweet_id, url=tweet_url(tweet_id), note=note)
