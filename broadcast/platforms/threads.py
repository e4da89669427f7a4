"""Threads publishing (text, image or video) via the Threads container flow."""

from ..context import PublishContext
from ..errors import AdapterError
from ..models import PlatformResult
from .meta import ContainerApi, create_container, publish_container, wait_for_container

THREADS_BASE = "https://graph.threads.net"
TEXT_MAX = 500


def threads_handle(ctx: PublishContext) -> str:
    cred = ctx.credential
    return cred.metadata.get("username") or cred.account_name or cred.platform_user_id or "me"


def threads_url(handle: str, media_id: str) -> str:
    return f"https://www.threads.net/@{handle.lstrip('@')}/post/{media_id}"


async def publish_to_threads(ctx: PublishContext) -> PlatformResult:
    cred = ctx.credential
    post = ctx.post
    settings = ctx.settings

    if not post.has_media and not ctx.caption.strip():
        raise AdapterError("threads", "Threads posts need text or media")

    api = ContainerApi(
        platform="threads",
        base_url=f"{THREADS_BASE}/{settings.threads_api_version}",
        owner_id=cred.platform_user_id or "me",
        access_token=cred.access_token,
        create_edge="threads",
        publish_edge="threads_publish",
        status_fields="status,error_message",
    )

    params = {"text": ctx.caption[:TEXT_MAX]}
    if post.is_video:
        params.update({"media_type": "VIDEO", "video_url": post.media_url})
        max_attempts = settings.threads_video_poll_max_attempts
    elif post.is_image:
        params.update({"media_type": "IMAGE", "image_url": post.media_url})
        max_attempts = settings.threads_poll_max_attempts
    else:
        params["media_type"] = "TEXT"
        max_attempts = settings.threads_poll_max_attempts

    container_id = await create_container(ctx, api, params)

    polled = await wait_for_container(
        ctx, api, container_id,
        max_attempts=max_attempts,
        interval=settings.threads_poll_interval,
    )
    if not polled.completed:
        return PlatformResult.pending(
            container_id=container_id,
            note="Media is still processing on Threads. It has not been published yet.",
        )

    media_id = await publish_container(ctx, api, container_id)
    ctx.log.info(f"Published: media_id={media_id}")
    return PlatformResult.ok(post_id=media_id, url=threads_url(threads_handle(ctx), media_id))
