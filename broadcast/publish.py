"""
Broadcast Publish Orchestrator
==============================
Drives one post through every requested platform adapter.

  1. Normalize the requested platforms
  2. Load the post (owned by the caller) and the caller's credentials
  3. Refuse when any requested platform is not connected (nothing dispatched)
  4. Claim the post (compare-and-swap to 'publishing')
  5. Run all adapters concurrently; persist each result as it settles
  6. Persist the aggregate status, published_at when anything succeeded
  7. Delete the source media when anything succeeded (best effort)

Per-platform error isolation: an adapter failure becomes that platform's
error result and never affects its siblings.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import httpx

from .config import PublishSettings
from .context import PublishContext, post_logger
from .errors import (
    BroadcastError,
    ErrorCode,
    InvalidRequest,
    MissingAccounts,
    NotFound,
    PublishInProgress,
    ReconnectRequired,
)
from .models import (
    CLAIMABLE_STATUSES,
    SUPPORTED_PLATFORMS,
    Credential,
    PlatformResult,
    Post,
    PostStatus,
    aggregate_status,
)
from .platforms import PUBLISHERS, Publisher

logger = logging.getLogger("broadcast")


@dataclass
class PublishOutcome:
    success: bool
    status: str
    results: Dict[str, PlatformResult]

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "status": self.status,
            "results": {p: r.to_dict() for p, r in self.results.items()},
        }


def normalize_platforms(platforms: Optional[Iterable[str]]) -> List[str]:
    """Lower-case, strip, de-duplicate (first occurrence wins) and validate."""
    seen: List[str] = []
    for p in platforms or []:
        if not isinstance(p, str):
            raise InvalidRequest(f"Invalid platform: {p!r}")
        key = p.strip().lower()
        if key and key not in seen:
            seen.append(key)

    if not seen:
        raise InvalidRequest("platforms must be a non-empty list")

    unknown = [p for p in seen if p not in SUPPORTED_PLATFORMS]
    if unknown:
        raise InvalidRequest(
            f"Unsupported platform(s): {', '.join(unknown)}",
            details={"unsupportedPlatforms": unknown},
        )
    return seen


def result_from_exception(platform: str, exc: BaseException, log: logging.LoggerAdapter) -> PlatformResult:
    if isinstance(exc, ReconnectRequired):
        log.warning(f"{platform}: reconnect required: {exc.message}")
        return PlatformResult.failed(exc.message, exc.code.value, reconnect_required=True)
    if isinstance(exc, BroadcastError):
        log.warning(f"{platform}: {exc.code.value}: {exc.message}")
        return PlatformResult.failed(exc.message, exc.code.value)
    if isinstance(exc, httpx.TimeoutException):
        log.warning(f"{platform}: request timed out: {exc}")
        return PlatformResult.failed(f"{platform} API request timed out", ErrorCode.TIMEOUT.value)
    if isinstance(exc, httpx.HTTPError):
        log.warning(f"{platform}: network error: {exc}")
        return PlatformResult.failed(f"{platform} network error: {exc}", ErrorCode.NETWORK_ERROR.value)
    log.error(f"{platform}: unexpected error: {exc!r}", exc_info=exc)
    return PlatformResult.failed(str(exc) or exc.__class__.__name__, ErrorCode.PUBLISH_EXCEPTION.value)


async def _invoke(publisher: Optional[Publisher], ctx: PublishContext) -> Tuple[str, PlatformResult]:
    platform = ctx.platform
    if publisher is None:
        return platform, PlatformResult.failed(f"Unsupported platform: {platform}", ErrorCode.UNSUPPORTED.value)
    try:
        result = await publisher(ctx)
    except Exception as e:
        result = result_from_exception(platform, e, ctx.log)
    return platform, result


@asynccontextmanager
async def http_client_scope(client: Optional[httpx.AsyncClient], settings: PublishSettings):
    """Use the caller's client, or own one for the duration of the run."""
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout, connect=10.0)) as owned:
        yield owned


async def dispatch_platforms(
    repository,
    post: Post,
    credentials: Mapping[str, Credential],
    platforms: List[str],
    *,
    client: httpx.AsyncClient,
    settings: PublishSettings,
    publishers: Mapping[str, Publisher],
    preset: Optional[Dict[str, PlatformResult]] = None,
) -> Dict[str, PlatformResult]:
    """
    Fan out to every platform with a credential and write each result as it
    settles. The post stays 'publishing' while anything is outstanding; the
    last write carries the aggregate status.
    """
    log = post_logger(post.id)
    results: Dict[str, PlatformResult] = dict(preset or {})

    tasks = []
    for platform in platforms:
        if platform not in credentials:
            continue
        ctx = PublishContext(
            platform=platform,
            post=post,
            credential=credentials[platform],
            client=client,
            repository=repository,
            settings=settings,
        )
        tasks.append(asyncio.ensure_future(_invoke(publishers.get(platform), ctx)))

    log.info(f"Dispatching to {len(tasks)} platform(s): {[p for p in platforms if p in credentials]}")

    outstanding = len(tasks)
    try:
        for fut in asyncio.as_completed(tasks):
            platform, result = await fut
            results[platform] = result
            outstanding -= 1

            status_icon = "OK" if result.success else result.status.upper()
            log.info(f"{platform} [{status_icon}] {result.post_id or result.error or result.note or ''}")

            transient = PostStatus.PUBLISHING.value if outstanding else aggregate_status(results)
            await repository.save_platform_result(post.id, platform, result.to_dict(), transient)
    except BaseException:
        for t in tasks:
            if not t.done():
                t.cancel()
        raise

    return results


async def cleanup_media(media_store, post: Post, log: logging.LoggerAdapter):
    """Delete the source media. Failures are logged and swallowed."""
    ref = post.media_key or post.media_url
    if media_store is None or not ref:
        return
    try:
        await media_store.delete(ref)
        log.info(f"Media cleaned up: {ref}")
    except Exception as e:
        log.warning(f"{ErrorCode.CLEANUP_FAILED.value}: could not delete media {ref}: {e}")


def resolve_media_url(media_store, post: Post, log: logging.LoggerAdapter):
    """Give a post stored with only an object key a URL the platforms can pull."""
    if post.media_url or not post.media_key or media_store is None:
        return
    post.media_url = media_store.resolve_url(post.media_key)
    log.info(f"Media resolved from key: {post.media_key}")


async def publish_claimed(
    repository,
    media_store,
    post: Post,
    credentials: Mapping[str, Credential],
    platforms: List[str],
    *,
    client: Optional[httpx.AsyncClient] = None,
    settings: Optional[PublishSettings] = None,
    publishers: Optional[Mapping[str, Publisher]] = None,
    preset: Optional[Dict[str, PlatformResult]] = None,
) -> PublishOutcome:
    """Run a post that is already claimed ('publishing'). Marks it failed if persistence breaks."""
    settings = settings or PublishSettings.from_env()
    publishers = PUBLISHERS if publishers is None else publishers
    log = post_logger(post.id)

    try:
        resolve_media_url(media_store, post, log)
        async with http_client_scope(client, settings) as http:
            results = await dispatch_platforms(
                repository, post, credentials, platforms,
                client=http,
                settings=settings,
                publishers=publishers,
                preset=preset,
            )

        status = aggregate_status(results)
        any_success = any(r.success for r in results.values())
        published_at = datetime.now(timezone.utc) if any_success else None
        await repository.finish_post(
            post.id,
            status,
            {p: r.to_dict() for p, r in results.items()},
            published_at,
        )
    except Exception as e:
        log.error(f"Publish run aborted after claim: {e!r}")
        try:
            await repository.mark_post_failed(post.id)
        except Exception as mark_err:
            log.error(f"Could not mark post failed: {mark_err!r}")
        raise

    succeeded = [p for p, r in results.items() if r.success]
    failed = [p for p, r in results.items() if not r.success]
    log.info(f"Publish complete: status={status} succeeded={succeeded} not_succeeded={failed}")

    if any_success and post.has_media:
        await cleanup_media(media_store, post, log)

    return PublishOutcome(success=any_success, status=status, results=results)


async def run_publish(
    repository,
    media_store,
    post_id: str,
    user_id: str,
    platforms: Iterable[str],
    *,
    client: Optional[httpx.AsyncClient] = None,
    settings: Optional[PublishSettings] = None,
    publishers: Optional[Mapping[str, Publisher]] = None,
) -> PublishOutcome:
    """
    Publish one post owned by user_id to the requested platforms.

    Raises InvalidRequest, NotFound, MissingAccounts or PublishInProgress
    before anything is dispatched.
    """
    requested = normalize_platforms(platforms)

    post = await repository.get_post(post_id, user_id)
    if post is None:
        raise NotFound()

    log = post_logger(post.id)
    credentials = await repository.get_credentials(user_id, requested)
    missing = [p for p in requested if p not in credentials]
    if missing:
        log.info(f"Refusing publish, not connected: {missing}")
        raise MissingAccounts(missing)

    if not await repository.claim_post(post.id, CLAIMABLE_STATUSES, platforms=requested):
        current = await repository.get_post(post.id)
        raise PublishInProgress(post.id, current.status if current else post.status)

    log.info(f"Claimed for publishing: {requested}")
    return await publish_claimed(
        repository, media_store, post, credentials, requested,
        client=client,
        settings=settings,
        publishers=publishers,
    )
