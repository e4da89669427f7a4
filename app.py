"""
Broadcast API Service
=====================
FastAPI backend for multi-platform cross-posting
- Publish one post to LinkedIn, Instagram, TikTok, Twitter/X, Threads, YouTube
- Per-platform results written as each platform settles (poll GET /api/posts/{id})
- Browser upload initialization for TikTok (inbox) and LinkedIn (video)
- Connected account metadata refresh
- Scheduled publishing via cron endpoint (the worker runs the same tick)
- Schema migrations at startup + request IDs + JSON errors

Auth: bearer access JWT (HS256, iss/aud checked) issued by the auth service.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import List, Optional

import asyncpg
import httpx
import jwt
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from broadcast import config
from broadcast import vault
from broadcast.accounts import refresh_accounts
from broadcast.config import PublishSettings
from broadcast.db import Repository, apply_migrations
from broadcast.errors import BroadcastError, InvalidRequest, MissingAccounts, NotFound, get_http_status
from broadcast.models import SUPPORTED_PLATFORMS
from broadcast.platforms.linkedin import init_video_upload as init_linkedin_video_upload
from broadcast.platforms.tiktok import init_tiktok_upload
from broadcast.publish import run_publish
from broadcast.r2 import R2MediaStore
from broadcast.scheduler import process_scheduled_posts

# ============================================================
# Logging
# ============================================================

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger("broadcast-api")

APP_VERSION = "1.0.0"

# ============================================================
# Pydantic Models
# ============================================================

class PublishRequest(BaseModel):
    platforms: List[str] = Field(default_factory=list)

class VideoInitRequest(BaseModel):
    fileSizeBytes: int = Field(gt=0)

# ============================================================
# Database
# ============================================================

db_pool: Optional[asyncpg.Pool] = None
media_store: Optional[R2MediaStore] = None

async def init_db():
    global db_pool, media_store
    config.validate_env()
    vault.init_enc_keys()

    db_pool = await asyncpg.create_pool(
        config.DATABASE_URL,
        min_size=1,
        max_size=10,
        command_timeout=30,
        max_inactive_connection_lifetime=300,
    )

    async with db_pool.acquire() as conn:
        await apply_migrations(conn)

    media_store = R2MediaStore()
    logger.info("Database initialized and migrations applied")

async def close_db():
    global db_pool
    if db_pool:
        await db_pool.close()
        db_pool = None

# ============================================================
# Dependencies
# ============================================================

def verify_access_jwt(token: str) -> Optional[str]:
    try:
        payload = jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=["HS256"],
            issuer=config.JWT_ISSUER,
            audience=config.JWT_AUDIENCE,
        )
        if payload.get("typ") != "access":
            return None
        return payload.get("sub")
    except jwt.InvalidTokenError:
        return None

async def get_current_user(authorization: str = Header(None)) -> dict:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Missing authorization header")

    user_id = verify_access_jwt(authorization[len("Bearer "):])
    if not user_id:
        raise HTTPException(401, "Invalid or expired token")
    return {"id": str(user_id)}

def get_repository() -> Repository:
    if not db_pool:
        raise HTTPException(500, "Database not available")
    return Repository(db_pool)

def get_media_store() -> Optional[R2MediaStore]:
    return media_store

def get_settings() -> PublishSettings:
    return PublishSettings.from_env()

async def get_http_client():
    async with httpx.AsyncClient(timeout=httpx.Timeout(config.HTTP_TIMEOUT_SECONDS, connect=10.0)) as client:
        yield client

def require_cron_secret(authorization: str = Header(None)):
    if not config.CRON_SECRET:
        raise HTTPException(500, "CRON_SECRET not configured")
    if authorization != f"Bearer {config.CRON_SECRET}":
        raise HTTPException(401, "Unauthorized")
    return True

# ============================================================
# FastAPI App + Middleware
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()

app = FastAPI(title="Broadcast API", version=APP_VERSION, lifespan=lifespan)

origins = config.split_origins(config.ALLOWED_ORIGINS)
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID"],
)

@app.middleware("http")
async def request_id_and_logging(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid

    start = time.time()
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
    except Exception as e:
        logger.exception(f"[RID:{rid}] Unhandled exception: {e}")
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "request_id": rid},
            headers={"X-Request-ID": rid},
        )
    finally:
        duration_ms = int((time.time() - start) * 1000)
        ip = request.headers.get("CF-Connecting-IP") or (request.client.host if request.client else "unknown")
        logger.info(f"rid={rid} ip={ip} {request.method} {request.url.path} status={status_code} dur_ms={duration_ms}")

    response.headers["X-Request-ID"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    return response

def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)

@app.exception_handler(BroadcastError)
async def broadcast_error_handler(request: Request, exc: BroadcastError):
    status = get_http_status(exc.code)
    if status >= 500:
        logger.error(f"[RID:{_request_id(request)}] {exc}")
    content = {"error": exc.message, "code": exc.code.value, "request_id": _request_id(request)}
    content.update(exc.details)
    return JSONResponse(status_code=status, content=content)

@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "request_id": _request_id(request)},
        headers=getattr(exc, "headers", None),
    )

# ============================================================
# Health
# ============================================================

@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "version": APP_VERSION,
        "database": db_pool is not None,
        "allowed_origins": origins,
        "platforms": list(SUPPORTED_PLATFORMS),
    }

@app.get("/health")
async def health_alias():
    return {"status": "ok"}

# ============================================================
# Posts
# ============================================================

@app.post("/api/posts/{post_id}/publish")
async def publish_post(
    post_id: str,
    body: PublishRequest,
    user: dict = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
    store: Optional[R2MediaStore] = Depends(get_media_store),
    settings: PublishSettings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    outcome = await run_publish(
        repository,
        store,
        post_id,
        user["id"],
        body.platforms,
        client=client,
        settings=settings,
    )
    return outcome.to_dict()

@app.get("/api/posts/{post_id}")
async def get_post(
    post_id: str,
    user: dict = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
):
    post = await repository.get_post(post_id, user["id"])
    if not post:
        raise NotFound()
    return {"post": post.to_dict()}

# ============================================================
# Platforms + Accounts
# ============================================================

@app.get("/api/platforms")
async def list_platforms(
    user: dict = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
):
    connected = {c.platform: c for c in await repository.list_credentials(user["id"])}
    return {
        "platforms": [
            {
                "platform": p,
                "connected": p in connected,
                "account": connected[p].public_dict() if p in connected else None,
            }
            for p in SUPPORTED_PLATFORMS
        ]
    }

@app.post("/api/accounts/refresh")
async def refresh_connected_accounts(
    user: dict = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
    settings: PublishSettings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    accounts = await refresh_accounts(repository, user["id"], client=client, settings=settings)
    return {"accounts": accounts}

@app.post("/api/video/init")
async def init_video(
    body: VideoInitRequest,
    platform: str = Query(...),
    user: dict = Depends(get_current_user),
    repository: Repository = Depends(get_repository),
    settings: PublishSettings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    platform = platform.lower().strip()
    if platform not in ("tiktok", "linkedin"):
        raise InvalidRequest(f"Browser upload is not supported for {platform}")

    credential = await repository.get_credential(user["id"], platform)
    if not credential:
        raise MissingAccounts([platform])

    logger.info(f"Video init: platform={platform} user={user['id']} size={body.fileSizeBytes}")
    if platform == "tiktok":
        return await init_tiktok_upload(client, repository, credential, settings, body.fileSizeBytes)
    return await init_linkedin_video_upload(client, credential, settings, body.fileSizeBytes)

# ============================================================
# Cron
# ============================================================

@app.post("/api/cron/process-scheduled")
async def cron_process_scheduled(
    _: bool = Depends(require_cron_secret),
    repository: Repository = Depends(get_repository),
    store: Optional[R2MediaStore] = Depends(get_media_store),
    settings: PublishSettings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    results = await process_scheduled_posts(
        repository,
        store,
        limit=config.SCHEDULER_BATCH_SIZE,
        client=client,
        settings=settings,
    )
    if not results:
        return {"message": "No posts to process", "processed": 0, "results": []}
    return {"message": f"Processed {len(results)} posts", "processed": len(results), "results": results}
