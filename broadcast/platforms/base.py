"""
Shared helpers for platform adapters.

An adapter is an async callable taking a PublishContext and returning a
PlatformResult. It raises AdapterError / ReconnectRequired on failure; the
orchestrator turns those into error results.
"""

import logging
from typing import Awaitable, Callable, Optional

import httpx

from ..context import PublishContext
from ..errors import AdapterError, ErrorCode
from ..models import PlatformResult

logger = logging.getLogger("broadcast")

Publisher = Callable[[PublishContext], Awaitable[PlatformResult]]


def error_detail(resp: httpx.Response, limit: int = 300) -> str:
    """Best human-readable error from a platform response."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:limit]
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])[:limit]
        if isinstance(err, str) and err:
            return (body.get("error_description") or err)[:limit]
        if body.get("message"):
            return str(body["message"])[:limit]
        if body.get("detail"):
            return str(body["detail"])[:limit]
    return resp.text[:limit]


def raise_for_status(
    resp: httpx.Response,
    platform: str,
    what: str,
    code: ErrorCode = ErrorCode.PLATFORM_ERROR,
    ok: tuple = (),
):
    """Raise AdapterError unless the response is 2xx (or listed in ok)."""
    if resp.is_success or resp.status_code in ok:
        return
    raise AdapterError(
        platform,
        f"{what} failed ({resp.status_code}): {error_detail(resp)}",
        code=code,
        http_status=resp.status_code,
        retryable=resp.status_code >= 500,
    )


def json_body(resp: httpx.Response) -> dict:
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


async def download_media(ctx: PublishContext, url: Optional[str] = None) -> bytes:
    """Fetch the post's media into memory."""
    url = url or ctx.post.media_url
    if not url:
        raise AdapterError(ctx.platform, "No media attached to this post", code=ErrorCode.MEDIA_REQUIRED)
    try:
        resp = await ctx.client.get(url, follow_redirects=True)
    except httpx.HTTPError as e:
        raise AdapterError(
            ctx.platform,
            f"Media download failed: {e}",
            code=ErrorCode.MEDIA_DOWNLOAD_FAILED,
            retryable=True,
        ) from e
    raise_for_status(resp, ctx.platform, "Media download", code=ErrorCode.MEDIA_DOWNLOAD_FAILED)
    data = resp.content
    ctx.log.info(f"Downloaded media ({len(data)} bytes)")
    return data


def media_mime(ctx: PublishContext) -> str:
    if ctx.post.is_video:
        return "video/mp4"
    if ctx.post.is_image:
        url = (ctx.post.media_url or "").lower().split("?", 1)[0]
        if url.endswith(".png"):
            return "image/png"
        if url.endswith(".gif"):
            return "image/gif"
        if url.endswith(".webp"):
            return "image/webp"
        return "image/jpeg"
    return "application/octet-stream"


def require_media(ctx: PublishContext, video_only: bool = False, message: Optional[str] = None):
    post = ctx.post
    ok = post.is_video if video_only else post.has_media
    if not ok:
        kind = "Video" if video_only else "Media (image or video)"
        raise AdapterError(
            ctx.platform,
            message or f"{kind} is required for {ctx.platform}",
            code=ErrorCode.MEDIA_REQUIRED,
        )
