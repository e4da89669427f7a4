"""
Broadcast Scheduler
===================
Publishes scheduled posts whose time has come.

Each due post is claimed (scheduled -> publishing) before anything runs, so
overlapping ticks never publish the same post twice. Platforms without a
connected account become per-platform errors instead of blocking the post.
"""

import logging
from datetime import datetime, timezone
from typing import List, Mapping, Optional

import httpx

from .config import SCHEDULER_BATCH_SIZE, PublishSettings
from .context import post_logger
from .errors import ErrorCode
from .models import SUPPORTED_PLATFORMS, PlatformResult, PostStatus
from .platforms import Publisher
from .publish import http_client_scope, publish_claimed

logger = logging.getLogger("broadcast")


def _scheduled_platforms(raw) -> List[str]:
    out: List[str] = []
    for p in raw or []:
        key = str(p).strip().lower()
        if key and key not in out:
            out.append(key)
    return out


async def process_scheduled_posts(
    repository,
    media_store,
    *,
    now: Optional[datetime] = None,
    limit: int = SCHEDULER_BATCH_SIZE,
    client: Optional[httpx.AsyncClient] = None,
    settings: Optional[PublishSettings] = None,
    publishers: Optional[Mapping[str, Publisher]] = None,
) -> List[dict]:
    """Run one scheduler tick. Returns one summary per post it touched."""
    now = now or datetime.now(timezone.utc)
    settings = settings or PublishSettings.from_env()

    posts = await repository.fetch_due_posts(now, limit)
    if not posts:
        logger.debug("Scheduler: no posts due")
        return []

    logger.info(f"Scheduler: {len(posts)} post(s) due")
    summaries: List[dict] = []

    async with http_client_scope(client, settings) as http:
        for post in posts:
            log = post_logger(post.id)

            platforms = _scheduled_platforms(post.platforms)
            if not await repository.claim_post(post.id, (PostStatus.SCHEDULED.value,), platforms=platforms):
                log.info("Scheduler: already claimed by another run, skipping")
                continue

            try:
                known = [p for p in platforms if p in SUPPORTED_PLATFORMS]
                credentials = await repository.get_credentials(post.user_id, known) if known else {}

                preset = {}
                for p in platforms:
                    if p not in SUPPORTED_PLATFORMS:
                        preset[p] = PlatformResult.failed(f"Unsupported platform: {p}", ErrorCode.UNSUPPORTED.value)
                    elif p not in credentials:
                        preset[p] = PlatformResult.failed("Account not connected", ErrorCode.MISSING_ACCOUNTS.value)

                outcome = await publish_claimed(
                    repository, media_store, post, credentials, known,
                    client=http,
                    settings=settings,
                    publishers=publishers,
                    preset=preset,
                )
                summaries.append({
                    "post_id": post.id,
                    "status": outcome.status,
                    "platforms": {p: r.to_dict() for p, r in outcome.results.items()},
                })
            except Exception as e:
                log.exception(f"Scheduler: post failed: {e}")
                try:
                    await repository.mark_post_failed(post.id)
                except Exception as mark_err:
                    log.error(f"Could not mark post failed: {mark_err!r}")
                summaries.append({"post_id": post.id, "status": PostStatus.FAILED.value, "error": str(e)})

    return summaries
