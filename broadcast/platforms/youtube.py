"""
YouTube Shorts publishing via resumable upload.

Flow: refresh token -> POST metadata (session URL in Location) -> PUT bytes -> video id
"""

from ..config import PublishSettings
from ..context import PublishContext
from ..errors import AdapterError, ErrorCode
from ..models import PlatformResult
from ..tokens import ensure_fresh_credential
from .base import download_media, json_body, raise_for_status, require_media

UPLOAD_INIT_URL = "https://www.googleapis.com/upload/youtube/v3/videos"


def build_title(caption: str, settings: PublishSettings) -> str:
    first_line = caption.strip().splitlines()[0].strip() if caption.strip() else ""
    return (first_line or settings.youtube_default_title)[:settings.youtube_title_max]


def build_description(caption: str, settings: PublishSettings) -> str:
    description = caption.strip()
    tag = settings.youtube_shorts_tag
    if settings.youtube_force_shorts_tag and tag.lower() not in description.lower():
        description = f"{description}\n\n{tag}" if description else tag
    return description[:5000]


def shorts_url(video_id: str) -> str:
    return f"https://youtube.com/shorts/{video_id}"


async def publish_to_youtube(ctx: PublishContext) -> PlatformResult:
    require_media(ctx, video_only=True, message="Video is required for YouTube")

    # Refreshed token is persisted before the upload starts
    ctx.credential = await ensure_fresh_credential(ctx.client, ctx.repository, ctx.credential, ctx.settings)

    settings = ctx.settings
    data = await download_media(ctx)

    metadata = {
        "snippet": {
            "title": build_title(ctx.caption, settings),
            "description": build_description(ctx.caption, settings),
            "categoryId": settings.youtube_category_id,
        },
        "status": {
            "privacyStatus": settings.youtube_privacy,
            "selfDeclaredMadeForKids": False,
        },
    }

    init_resp = await ctx.client.post(
        UPLOAD_INIT_URL,
        params={"uploadType": "resumable", "part": "snippet,status"},
        headers=ctx.auth_headers(**{
            "Content-Type": "application/json",
            "X-Upload-Content-Type": "video/mp4",
            "X-Upload-Content-Length": str(len(data)),
        }),
        json=metadata,
    )
    raise_for_status(init_resp, "youtube", "Upload init", code=ErrorCode.UPLOAD_FAILED)

    upload_url = init_resp.headers.get("location")
    if not upload_url:
        raise AdapterError("youtube", "No upload URL in response", code=ErrorCode.UPLOAD_FAILED)

    upload_resp = await ctx.client.put(upload_url, content=data, headers={"Content-Type": "video/mp4"})
    raise_for_status(upload_resp, "youtube", "Upload", code=ErrorCode.UPLOAD_FAILED)

    video_id = json_body(upload_resp).get("id")
    if not video_id:
        raise AdapterError("youtube", "Upload finished but no video id returned", code=ErrorCode.UPLOAD_FAILED)

    ctx.log.info(f"Published: video_id={video_id}")
    return PlatformResult.ok(post_id=video_id, url=shorts_url(video_id))
