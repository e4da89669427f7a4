"""
Connected account maintenance: profile metadata refresh.

Pulls display name, picture and audience counts for each connected account.
A failing account is logged and returned unchanged; it never fails the
whole refresh. Expired tokens are refreshed first where the platform allows
it (this is the only place Twitter tokens are refreshed).
"""

import logging
from typing import Awaitable, Callable, Dict, List, Optional

import httpx

from .config import PublishSettings
from .models import Credential
from .tokens import ACCOUNT_REFRESH_PLATFORMS, ensure_fresh_credential

logger = logging.getLogger("broadcast")


async def _linkedin_profile(client: httpx.AsyncClient, cred: Credential, settings: PublishSettings) -> dict:
    resp = await client.get(
        "https://api.linkedin.com/v2/userinfo",
        headers={"Authorization": f"Bearer {cred.access_token}"},
    )
    resp.raise_for_status()
    profile = resp.json()
    return {
        "display_name": profile.get("name"),
        "profile_picture": profile.get("picture"),
        "email": profile.get("email"),
    }


async def _tiktok_profile(client: httpx.AsyncClient, cred: Credential, settings: PublishSettings) -> dict:
    resp = await client.get(
        "https://open.tiktokapis.com/v2/user/info/",
        params={"fields": "open_id,avatar_url,display_name,follower_count,following_count,likes_count,video_count"},
        headers={"Authorization": f"Bearer {cred.access_token}"},
    )
    resp.raise_for_status()
    user = (resp.json().get("data") or {}).get("user") or {}
    return {
        "display_name": user.get("display_name"),
        "profile_picture": user.get("avatar_url"),
        "followers_count": user.get("follower_count"),
        "following_count": user.get("following_count"),
        "likes_count": user.get("likes_count"),
        "video_count": user.get("video_count"),
    }


async def _twitter_profile(client: httpx.AsyncClient, cred: Credential, settings: PublishSettings) -> dict:
    resp = await client.get(
        "https://api.twitter.com/2/users/me",
        params={"user.fields": "profile_image_url,public_metrics,description,verified"},
        headers={"Authorization": f"Bearer {cred.access_token}"},
    )
    resp.raise_for_status()
    user = resp.json().get("data") or {}
    metrics = user.get("public_metrics") or {}
    picture = user.get("profile_image_url")
    return {
        "display_name": user.get("name"),
        "username": user.get("username"),
        "profile_picture": picture.replace("_normal", "") if picture else None,
        "followers_count": metrics.get("followers_count"),
        "following_count": metrics.get("following_count"),
        "tweet_count": metrics.get("tweet_count"),
        "verified": user.get("verified"),
        "bio": user.get("description"),
    }


async def _youtube_profile(client: httpx.AsyncClient, cred: Credential, settings: PublishSettings) -> dict:
    params = {"part": "snippet,statistics"}
    if cred.platform_user_id:
        params["id"] = cred.platform_user_id
    else:
        params["mine"] = "true"
    resp = await client.get(
        "https://www.googleapis.com/youtube/v3/channels",
        params=params,
        headers={"Authorization": f"Bearer {cred.access_token}"},
    )
    resp.raise_for_status()
    items = resp.json().get("items") or []
    if not items:
        return {}
    snippet = items[0].get("snippet") or {}
    stats = items[0].get("statistics") or {}

    def _int(v) -> int:
        try:
            return int(v)
        except (TypeError, ValueError):
            return 0

    return {
        "channel_title": snippet.get("title"),
        "display_name": snippet.get("title"),
        "profile_picture": ((snippet.get("thumbnails") or {}).get("default") or {}).get("url"),
        "subscribers_count": _int(stats.get("subscriberCount")),
        "video_count": _int(stats.get("videoCount")),
        "view_count": _int(stats.get("viewCount")),
    }


ProfileFetcher = Callable[[httpx.AsyncClient, Credential, PublishSettings], Awaitable[dict]]

# Instagram and Threads insights need app review; their metadata comes from the connect flow
PROFILE_FETCHERS: Dict[str, ProfileFetcher] = {
    "linkedin": _linkedin_profile,
    "tiktok": _tiktok_profile,
    "twitter": _twitter_profile,
    "youtube": _youtube_profile,
}


async def refresh_account(
    client: httpx.AsyncClient,
    repository,
    credential: Credential,
    settings: PublishSettings,
) -> Credential:
    fetcher = PROFILE_FETCHERS.get(credential.platform)
    if fetcher is None:
        return credential

    credential = await ensure_fresh_credential(
        client, repository, credential, settings, platforms=ACCOUNT_REFRESH_PLATFORMS
    )
    fresh = {k: v for k, v in (await fetcher(client, credential, settings)).items() if v is not None}
    if not fresh:
        return credential

    credential.metadata = {**(credential.metadata or {}), **fresh}
    account_name = fresh.get("display_name")
    if account_name:
        credential.account_name = account_name
    await repository.update_credential_metadata(credential.user_id, credential.platform, account_name, fresh)
    logger.info(f"Account refreshed: {credential.platform} (user={credential.user_id})")
    return credential


async def refresh_accounts(
    repository,
    user_id: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    settings: Optional[PublishSettings] = None,
) -> List[dict]:
    """Refresh every connected account of a user; returns the public account views."""
    settings = settings or PublishSettings.from_env()
    credentials = await repository.list_credentials(user_id)

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0))
    out: List[dict] = []
    try:
        for cred in credentials:
            try:
                cred = await refresh_account(client, repository, cred, settings)
            except Exception as e:
                logger.warning(f"Account refresh failed for {cred.platform} (user={user_id}): {e}")
            out.append(cred.public_dict())
    finally:
        if owns_client:
            await client.aclose()
    return out
