"""
Broadcast Worker Service - Scheduled Publishing
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

import asyncpg
import httpx

from broadcast import config
from broadcast import vault
from broadcast.config import PublishSettings
from broadcast.db import Repository, apply_migrations
from broadcast.r2 import R2MediaStore
from broadcast.scheduler import process_scheduled_posts

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s [worker] %(message)s")
logger = logging.getLogger("broadcast-worker")

db_pool: Optional[asyncpg.Pool] = None
shutdown_event: Optional[asyncio.Event] = None


def handle_shutdown(signum, frame):
    logger.info(f"Shutdown signal received ({signum})")
    if shutdown_event is not None:
        shutdown_event.set()


async def run_scheduler_loop(
    repository: Repository,
    media_store: R2MediaStore,
    stop: asyncio.Event,
    interval: float = config.SCHEDULER_INTERVAL_SECONDS,
    settings: Optional[PublishSettings] = None,
):
    """Tick every `interval` seconds until `stop` is set."""
    settings = settings or PublishSettings.from_env()
    logger.info(f"Scheduler started (interval={interval}s, batch={config.SCHEDULER_BATCH_SIZE})")

    async with httpx.AsyncClient(timeout=httpx.Timeout(settings.http_timeout, connect=10.0)) as client:
        while not stop.is_set():
            try:
                summaries = await process_scheduled_posts(
                    repository,
                    media_store,
                    limit=config.SCHEDULER_BATCH_SIZE,
                    client=client,
                    settings=settings,
                )
                if summaries:
                    statuses = {s["post_id"]: s["status"] for s in summaries}
                    logger.info(f"Scheduler tick processed {len(summaries)} post(s): {statuses}")
            except Exception as e:
                logger.exception(f"Scheduler tick failed: {e}")

            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    logger.info("Scheduler stopped")


async def main():
    global db_pool, shutdown_event

    shutdown_event = asyncio.Event()
    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    try:
        config.validate_env(require_jwt=False)
    except RuntimeError as e:
        logger.error(str(e))
        sys.exit(1)

    vault.init_enc_keys()

    db_pool = await asyncpg.create_pool(config.DATABASE_URL, min_size=1, max_size=5)
    async with db_pool.acquire() as conn:
        await apply_migrations(conn)
    logger.info("Database connected")

    try:
        await run_scheduler_loop(Repository(db_pool), R2MediaStore(), shutdown_event)
    finally:
        if db_pool:
            await db_pool.close()
        logger.info("Worker shut down")


if __name__ == "__main__":
    asyncio.run(main())
