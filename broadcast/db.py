"""
Broadcast Database Functions
============================
Schema migrations and the asyncpg-backed store used by the API, the
orchestrator and the scheduler.

Tokens live in connected_accounts.token_blob, AES-GCM encrypted through
broadcast.vault. Everything else on the account row is plaintext.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

import asyncpg

from . import vault
from .models import CLAIMABLE_STATUSES, Credential, Post, PostStatus

logger = logging.getLogger("broadcast")


MIGRATIONS: List[Tuple[int, str]] = [
    (1, """
        CREATE EXTENSION IF NOT EXISTS pgcrypto;
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            applied_at TIMESTAMPTZ DEFAULT NOW()
        );
    """),
    (2, """
        CREATE TABLE IF NOT EXISTS posts (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL,
            caption TEXT,
            media_url TEXT,
            media_type TEXT NOT NULL DEFAULT 'none',
            media_key TEXT,
            thumbnail_url TEXT,
            platforms TEXT[] NOT NULL DEFAULT '{}',
            platform_metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
            status TEXT NOT NULL DEFAULT 'draft',
            platform_results JSONB NOT NULL DEFAULT '{}'::jsonb,
            scheduled_at TIMESTAMPTZ,
            published_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        );

        CREATE INDEX IF NOT EXISTS idx_posts_user ON posts(user_id, created_at DESC);
        CREATE INDEX IF NOT EXISTS idx_posts_due ON posts(status, scheduled_at);
    """),
    (3, """
        CREATE TABLE IF NOT EXISTS connected_accounts (
            user_id UUID NOT NULL,
            platform TEXT NOT NULL,
            platform_user_id TEXT,
            account_name TEXT,
            token_blob JSONB NOT NULL,
            token_expires_at TIMESTAMPTZ,
            scopes TEXT[] NOT NULL DEFAULT '{}',
            metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW(),
            PRIMARY KEY (user_id, platform)
        );
    """),
    (4, """
        ALTER TABLE posts DROP CONSTRAINT IF EXISTS posts_status_check;
        ALTER TABLE posts ADD CONSTRAINT posts_status_check
            CHECK (status IN ('draft','scheduled','publishing','published','partial','failed'));
        ALTER TABLE posts DROP CONSTRAINT IF EXISTS posts_media_type_check;
        ALTER TABLE posts ADD CONSTRAINT posts_media_type_check
            CHECK (media_type IN ('none','image','video'));
    """),
]


async def apply_migrations(conn: asyncpg.Connection):
    await conn.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")
    await conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version INTEGER PRIMARY KEY,
            applied_at TIMESTAMPTZ DEFAULT NOW()
        );
    """)

    applied = await conn.fetch("SELECT version FROM schema_migrations")
    applied_set = {r["version"] for r in applied}

    for version, sql in MIGRATIONS:
        if version in applied_set:
            continue
        logger.info(f"[MIGRATION] Applying v{version}")
        async with conn.transaction():
            await conn.execute(sql)
            await conn.execute("INSERT INTO schema_migrations(version) VALUES($1)", version)
        logger.info(f"[MIGRATION] Applied v{version}")


def _credential_from_row(row) -> Optional[Credential]:
    try:
        tokens = vault.decrypt_blob(row["token_blob"])
    except Exception as e:
        logger.warning(f"Token decrypt failed for {row['platform']} (user={row['user_id']}): {e}")
        return None

    return Credential(
        user_id=str(row["user_id"]),
        platform=row["platform"],
        access_token=tokens.get("access_token") or "",
        refresh_token=tokens.get("refresh_token"),
        platform_user_id=row["platform_user_id"],
        account_name=row["account_name"],
        token_expires_at=row["token_expires_at"],
        scopes=list(row["scopes"] or []),
        metadata=json.loads(row["metadata"]) if isinstance(row["metadata"], str) else dict(row["metadata"] or {}),
        updated_at=row["updated_at"],
    )


def _token_blob(credential: Credential) -> str:
    return json.dumps(vault.encrypt_blob({
        "access_token": credential.access_token,
        "refresh_token": credential.refresh_token,
    }))


_ACCOUNT_COLUMNS = """user_id, platform, platform_user_id, account_name, token_blob,
                      token_expires_at, scopes, metadata, updated_at"""


class Repository:
    """Post + credential store over an asyncpg pool."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    # ------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------

    async def get_post(self, post_id: str, user_id: Optional[str] = None) -> Optional[Post]:
        """Load a post; with user_id, only if owned by that user."""
        async with self.pool.acquire() as conn:
            if user_id is None:
                row = await conn.fetchrow("SELECT * FROM posts WHERE id = $1", post_id)
            else:
                row = await conn.fetchrow(
                    "SELECT * FROM posts WHERE id = $1 AND user_id = $2", post_id, user_id
                )
        return Post.from_record(dict(row)) if row else None

    async def claim_post(
        self,
        post_id: str,
        from_statuses: Iterable[str] = CLAIMABLE_STATUSES,
        platforms: Iterable[str] = (),
    ) -> bool:
        """
        Compare-and-swap the post into 'publishing'. False if another run holds it.

        Results from an earlier run for the platforms about to be retried are
        dropped in the same statement; other platforms' results are kept.
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """UPDATE posts
                   SET status = 'publishing',
                       platform_results = COALESCE(platform_results, '{}'::jsonb) - $3::text[],
                       updated_at = NOW()
                   WHERE id = $1 AND status = ANY($2::text[])
                   RETURNING id""",
                post_id,
                list(from_statuses),
                list(platforms),
            )
        return row is not None

    async def save_platform_result(self, post_id: str, platform: str, result: dict, status: str):
        """Merge one platform's result into platform_results and set the transient status."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """UPDATE posts
                   SET platform_results = COALESCE(platform_results, '{}'::jsonb)
                                          || jsonb_build_object($2::text, $3::jsonb),
                       status = $4,
                       updated_at = NOW()
                   WHERE id = $1""",
                post_id,
                platform,
                json.dumps(result),
                status,
            )

    async def finish_post(
        self,
        post_id: str,
        status: str,
        results: Dict[str, dict],
        published_at: Optional[datetime] = None,
    ):
        async with self.pool.acquire() as conn:
            await conn.execute(
                """UPDATE posts
                   SET status = $2,
                       platform_results = COALESCE(platform_results, '{}'::jsonb) || $3::jsonb,
                       published_at = COALESCE($4, published_at),
                       updated_at = NOW()
                   WHERE id = $1""",
                post_id,
                status,
                json.dumps(results),
                published_at,
            )

    async def mark_post_failed(self, post_id: str):
        async with self.pool.acquire() as conn:
            await conn.execute(
                "UPDATE posts SET status = $2, updated_at = NOW() WHERE id = $1",
                post_id,
                PostStatus.FAILED.value,
            )

    async def fetch_due_posts(self, now: Optional[datetime] = None, limit: int = 10) -> List[Post]:
        now = now or datetime.now(timezone.utc)
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """SELECT * FROM posts
                   WHERE status = 'scheduled' AND scheduled_at <= $1
                   ORDER BY scheduled_at ASC
                   LIMIT $2""",
                now,
                limit,
            )
        return [Post.from_record(dict(r)) for r in rows]

    # ------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------

    async def get_credential(self, user_id: str, platform: str) -> Optional[Credential]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_ACCOUNT_COLUMNS} FROM connected_accounts WHERE user_id = $1 AND platform = $2",
                user_id,
                platform,
            )
        return _credential_from_row(row) if row else None

    async def get_credentials(self, user_id: str, platforms: Iterable[str]) -> Dict[str, Credential]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_ACCOUNT_COLUMNS} FROM connected_accounts WHERE user_id = $1 AND platform = ANY($2::text[])",
                user_id,
                list(platforms),
            )
        out: Dict[str, Credential] = {}
        for row in rows:
            cred = _credential_from_row(row)
            if cred:
                out[cred.platform] = cred
        return out

    async def list_credentials(self, user_id: str) -> List[Credential]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_ACCOUNT_COLUMNS} FROM connected_accounts WHERE user_id = $1 ORDER BY platform",
                user_id,
            )
        return [c for c in (_credential_from_row(r) for r in rows) if c]

    async def update_credential(self, user_id: str, platform: str, patch: dict) -> Optional[Credential]:
        """
        Refresh a stored credential in place.

        patch keys: access_token, refresh_token, token_expires_at. Missing keys
        keep their stored value.
        """
        current = await self.get_credential(user_id, platform)
        if current is None:
            return None

        if "access_token" in patch:
            current.access_token = patch["access_token"]
        if patch.get("refresh_token"):
            current.refresh_token = patch["refresh_token"]
        if "token_expires_at" in patch:
            current.token_expires_at = patch["token_expires_at"]

        async with self.pool.acquire() as conn:
            await conn.execute(
                """UPDATE connected_accounts
                   SET token_blob = $3::jsonb, token_expires_at = $4, updated_at = NOW()
                   WHERE user_id = $1 AND platform = $2""",
                user_id,
                platform,
                _token_blob(current),
                current.token_expires_at,
            )
        return current

    async def upsert_credential(self, credential: Credential):
        async with self.pool.acquire() as conn:
            await conn.execute(
                """INSERT INTO connected_accounts
                       (user_id, platform, platform_user_id, account_name, token_blob,
                        token_expires_at, scopes, metadata, updated_at)
                   VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8::jsonb, NOW())
                   ON CONFLICT (user_id, platform) DO UPDATE SET
                       platform_user_id = EXCLUDED.platform_user_id,
                       account_name = EXCLUDED.account_name,
                       token_blob = EXCLUDED.token_blob,
                       token_expires_at = EXCLUDED.token_expires_at,
                       scopes = EXCLUDED.scopes,
                       metadata = EXCLUDED.metadata,
                       updated_at = NOW()""",
                credential.user_id,
                credential.platform,
                credential.platform_user_id,
                credential.account_name,
                _token_blob(credential),
                credential.token_expires_at,
                list(credential.scopes or []),
                json.dumps(credential.metadata or {}),
            )

    async def update_credential_metadata(
        self,
        user_id: str,
        platform: str,
        account_name: Optional[str],
        metadata: dict,
    ):
        async with self.pool.acquire() as conn:
            await conn.execute(
                """UPDATE connected_accounts
                   SET account_name = COALESCE($3, account_name),
                       metadata = COALESCE(metadata, '{}'::jsonb) || $4::jsonb,
                       updated_at = NOW()
                   WHERE user_id = $1 AND platform = $2""",
                user_id,
                platform,
                account_name,
                json.dumps(metadata or {}),
            )
