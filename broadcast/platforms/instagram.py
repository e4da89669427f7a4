"""Instagram publishing via the Graph API container flow (images and Reels)."""

from ..context import PublishContext
from ..errors import AdapterError
from ..models import PlatformResult
from .base import require_media
from .meta import ContainerApi, create_container, publish_container, wait_for_container

GRAPH_BASE = "https://graph.facebook.com"
CAPTION_MAX = 2200


def instagram_url(media_id: str, is_video: bool) -> str:
    if is_video:
        return f"https://www.instagram.com/reel/{media_id}/"
    return f"https://www.instagram.com/p/{media_id}/"


async def publish_to_instagram(ctx: PublishContext) -> PlatformResult:
    """
    Requires:
      - an image or video reachable by URL (Meta pulls it)
      - the Instagram Business/Creator user id on the credential
    """
    require_media(ctx, message="Media (image or video) is required for Instagram")

    cred = ctx.credential
    ig_user_id = cred.platform_user_id or cred.metadata.get("ig_user_id")
    if not ig_user_id:
        raise AdapterError("instagram", "No Instagram user id on the connected account. Reconnect Instagram.")

    post = ctx.post
    settings = ctx.settings
    api = ContainerApi(
        platform="instagram",
        base_url=f"{GRAPH_BASE}/{settings.meta_api_version}",
        owner_id=ig_user_id,
        access_token=cred.access_token,
        create_edge="media",
        publish_edge="media_publish",
        status_fields="status_code,status",
    )

    params = {"caption": ctx.caption[:CAPTION_MAX]}
    if post.is_video:
        params.update({"media_type": "REELS", "video_url": post.media_url, "share_to_feed": "true"})
    else:
        params["image_url"] = post.media_url

    container_id = await create_container(ctx, api, params)

    polled = await wait_for_container(
        ctx, api, container_id,
        max_attempts=settings.ig_poll_max_attempts,
        interval=settings.ig_poll_interval,
    )
    if not polled.completed:
        return PlatformResult.pending(
            container_id=container_id,
            note="Media is still processing on Instagram. It has not been published yet.",
        )

    media_id = await publish_container(ctx, api, container_id)
    ctx.log.info(f"Published: media_id={media_id}")
    return PlatformResult.ok(post_id=media_id, url=instagram_url(media_id, post.is_video))
