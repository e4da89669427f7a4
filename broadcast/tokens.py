"""
Broadcast Token Refresh Policy
==============================
Decides when a stored credential must be refreshed and performs the refresh.

  TikTok   - refreshed on the publish path (access tokens live 24h)
  YouTube  - refreshed on the publish path (access tokens live 1h)
  Twitter  - refreshed only from the account-refresh flow
  LinkedIn / Instagram / Threads - no silent refresh, stored token used as is

Failures:
  - no refresh token, grant rejected, malformed response -> ReconnectRequired
  - transport errors and provider 5xx                     -> AdapterError (retryable)

Refreshes for one (user, platform) are serialized in-process; the credential
is re-read once the lock is held so a second caller sees the first caller's
token instead of spending the refresh token again.
"""

import asyncio
import logging
import weakref
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, FrozenSet, Optional, Tuple

import httpx

from .config import PublishSettings
from .errors import AdapterError, ErrorCode, ReconnectRequired
from .models import Credential

logger = logging.getLogger("broadcast")

TIKTOK_TOKEN_URL = "https://open.tiktokapis.com/v2/oauth/token/"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
TWITTER_TOKEN_URL = "https://api.twitter.com/2/oauth2/token"

PUBLISH_REFRESH_PLATFORMS: FrozenSet[str] = frozenset({"tiktok", "youtube"})
ACCOUNT_REFRESH_PLATFORMS: FrozenSet[str] = frozenset({"tiktok", "youtube", "twitter"})

# entries vanish once no run holds or waits on the lock
_refresh_locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = weakref.WeakValueDictionary()


def _lock_for(user_id: str, platform: str) -> asyncio.Lock:
    key = (user_id, platform)
    lock = _refresh_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _refresh_locks[key] = lock
    return lock


def needs_refresh(credential: Credential, skew_sec: int, now: Optional[datetime] = None) -> bool:
    """Expired, or expiring within skew_sec. No recorded expiry means never."""
    return credential.expires_within(skew_sec, now=now)


def _expiry_from(payload: dict) -> Optional[datetime]:
    try:
        expires_in = float(payload.get("expires_in") or 0)
    except (TypeError, ValueError):
        return None
    if expires_in <= 0:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=expires_in)


async def _post_token_request(
    client: httpx.AsyncClient,
    platform: str,
    url: str,
    data: dict,
    auth: Optional[Tuple[str, str]] = None,
) -> dict:
    try:
        resp = await client.post(
            url,
            data=data,
            auth=auth,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
    except httpx.HTTPError as e:
        raise AdapterError(
            platform,
            f"{platform} token refresh request failed: {e}",
            code=ErrorCode.NETWORK_ERROR,
            retryable=True,
        ) from e

    if resp.status_code >= 500:
        raise AdapterError(
            platform,
            f"{platform} token endpoint unavailable: {resp.status_code} {resp.text[:200]}",
            http_status=resp.status_code,
            retryable=True,
        )
    if resp.status_code >= 400:
        logger.warning(f"{platform}: token refresh rejected: {resp.status_code} {resp.text[:200]}")
        raise ReconnectRequired(platform)

    try:
        payload = resp.json()
    except ValueError:
        raise ReconnectRequired(platform, f"{platform} token refresh returned an unreadable response")

    # TikTok wraps tokens under "data" on some responses
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        payload = payload["data"]

    if not isinstance(payload, dict) or not payload.get("access_token"):
        logger.warning(f"{platform}: token refresh response missing access_token")
        raise ReconnectRequired(platform)
    return payload


def _require_refresh_token(credential: Credential):
    if not credential.refresh_token:
        logger.warning(f"{credential.platform}: no refresh_token stored, user must reconnect")
        raise ReconnectRequired(credential.platform)


def _require_app_config(platform: str, *values: str):
    if not all(values):
        raise AdapterError(platform, f"{platform} app credentials are not configured")


async def refresh_tiktok_token(client: httpx.AsyncClient, credential: Credential, settings: PublishSettings) -> dict:
    _require_refresh_token(credential)
    _require_app_config("tiktok", settings.tiktok_client_key, settings.tiktok_client_secret)
    payload = await _post_token_request(
        client,
        "tiktok",
        TIKTOK_TOKEN_URL,
        {
            "client_key": settings.tiktok_client_key,
            "client_secret": settings.tiktok_client_secret,
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh_token,
        },
    )
    return {
        "access_token": payload["access_token"],
        "refresh_token": payload.get("refresh_token") or credential.refresh_token,
        "token_expires_at": _expiry_from(payload),
    }


async def refresh_google_token(client: httpx.AsyncClient, credential: Credential, settings: PublishSettings) -> dict:
    _require_refresh_token(credential)
    _require_app_config("youtube", settings.google_client_id, settings.google_client_secret)
    payload = await _post_token_request(
        client,
        "youtube",
        GOOGLE_TOKEN_URL,
        {
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh_token,
        },
    )
    # Google does not rotate refresh tokens on refresh
    return {
        "access_token": payload["access_token"],
        "refresh_token": payload.get("refresh_token") or credential.refresh_token,
        "token_expires_at": _expiry_from(payload),
    }


async def refresh_twitter_token(client: httpx.AsyncClient, credential: Credential, settings: PublishSettings) -> dict:
    _require_refresh_token(credential)
    _require_app_config("twitter", settings.twitter_client_id, settings.twitter_client_secret)
    payload = await _post_token_request(
        client,
        "twitter",
        TWITTER_TOKEN_URL,
        {
            "grant_type": "refresh_token",
            "refresh_token": credential.refresh_token,
            "client_id": settings.twitter_client_id,
        },
        auth=(settings.twitter_client_id, settings.twitter_client_secret),
    )
    return {
        "access_token": payload["access_token"],
        "refresh_token": payload.get("refresh_token") or credential.refresh_token,
        "token_expires_at": _expiry_from(payload),
    }


Refresher = Callable[[httpx.AsyncClient, Credential, PublishSettings], Awaitable[dict]]

REFRESHERS: Dict[str, Refresher] = {
    "tiktok": refresh_tiktok_token,
    "youtube": refresh_google_token,
    "twitter": refresh_twitter_token,
}


def _apply_patch(credential: Credential, patch: dict) -> Credential:
    credential.access_token = patch.get("access_token", credential.access_token)
    if patch.get("refresh_token"):
        credential.refresh_token = patch["refresh_token"]
    if "token_expires_at" in patch:
        credential.token_expires_at = patch["token_expires_at"]
    return credential


async def ensure_fresh_credential(
    client: httpx.AsyncClient,
    repository,
    credential: Credential,
    settings: PublishSettings,
    platforms: FrozenSet[str] = PUBLISH_REFRESH_PLATFORMS,
) -> Credential:
    """
    Return a credential that is safe to use right now.

    Platforms outside `platforms` are returned untouched. A refreshed token is
    persisted through repository.update_credential before it is returned.
    """
    platform = credential.platform
    if platform not in platforms or platform not in REFRESHERS:
        return credential
    if not needs_refresh(credential, settings.token_refresh_skew_sec):
        return credential

    async with _lock_for(credential.user_id, platform):
        latest = await repository.get_credential(credential.user_id, platform) or credential
        if not needs_refresh(latest, settings.token_refresh_skew_sec):
            logger.info(f"{platform}: token already refreshed by a concurrent run")
            return latest

        logger.info(f"{platform}: refreshing access token (user={credential.user_id})")
        patch = await REFRESHERS[platform](client, latest, settings)
        updated = await repository.update_credential(credential.user_id, platform, patch)
        logger.info(f"{platform}: token refreshed, expires_at={patch.get('token_expires_at')}")
        return updated or _apply_patch(latest, patch)
