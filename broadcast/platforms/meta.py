"""
Meta container protocol (Instagram Graph API, Threads API).

Flow:
  1. POST /{owner_id}/<create edge>  -> container id
  2. Poll GET /{container_id} until FINISHED (ERROR / EXPIRED abort)
  3. POST /{owner_id}/<publish edge> (creation_id) -> media id

Polling budget exhausted -> the caller reports `pending` with the container
id; the container keeps processing on Meta's side.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..context import PublishContext
from ..errors import AdapterError, ErrorCode
from ..polling import poll_until
from .base import json_body, raise_for_status


class ContainerState(str, Enum):
    PROCESSING = "IN_PROGRESS"
    FINISHED = "FINISHED"
    PUBLISHED = "PUBLISHED"
    ERROR = "ERROR"
    EXPIRED = "EXPIRED"
    UNKNOWN = "UNKNOWN"


@dataclass
class ContainerStatus:
    state: ContainerState
    detail: Optional[str] = None

    @property
    def ready(self) -> bool:
        return self.state in (ContainerState.FINISHED, ContainerState.PUBLISHED)


def decode_container_status(body: dict) -> ContainerStatus:
    """
    Instagram reports `status_code` (with a free-text `status`); Threads
    reports `status` (with `error_message`).
    """
    raw = body.get("status_code") or body.get("status") or ""
    try:
        state = ContainerState(str(raw).upper())
    except ValueError:
        state = ContainerState.UNKNOWN
    detail = body.get("error_message")
    if not detail and body.get("status_code"):
        detail = body.get("status")
    return ContainerStatus(state=state, detail=detail)


@dataclass
class ContainerApi:
    platform: str
    base_url: str
    owner_id: str
    access_token: str
    create_edge: str
    publish_edge: str
    status_fields: str


async def create_container(ctx: PublishContext, api: ContainerApi, params: dict) -> str:
    resp = await ctx.client.post(
        f"{api.base_url}/{api.owner_id}/{api.create_edge}",
        params={"access_token": api.access_token, **params},
    )
    raise_for_status(resp, api.platform, "Container creation", code=ErrorCode.CONTAINER_FAILED)
    container_id = json_body(resp).get("id")
    if not container_id:
        raise AdapterError(api.platform, "No container id returned", code=ErrorCode.CONTAINER_FAILED)
    ctx.log.info(f"Container created: {container_id}")
    return str(container_id)


async def wait_for_container(
    ctx: PublishContext,
    api: ContainerApi,
    container_id: str,
    max_attempts: int,
    interval: float,
):
    """Poll the container. Returns the PollResult; raises on ERROR/EXPIRED."""

    async def check():
        resp = await ctx.client.get(
            f"{api.base_url}/{container_id}",
            params={"access_token": api.access_token, "fields": api.status_fields},
        )
        if not resp.is_success:
            ctx.log.warning(f"Status poll failed: {resp.status_code}")
            return False, None, None

        status = decode_container_status(json_body(resp))
        if status.state == ContainerState.ERROR:
            raise AdapterError(
                api.platform,
                f"Container processing failed: {status.detail or 'Unknown error'}",
                code=ErrorCode.CONTAINER_ERROR,
            )
        if status.state == ContainerState.EXPIRED:
            raise AdapterError(
                api.platform,
                "Container expired before publishing",
                code=ErrorCode.CONTAINER_EXPIRED,
            )
        return status.ready, status, None

    result = await poll_until(check, max_attempts=max_attempts, interval=interval)
    if result.completed:
        ctx.log.info(f"Container {container_id} ready after {result.attempts} poll(s)")
    else:
        last = result.value.state.value if result.value else "UNKNOWN"
        ctx.log.info(f"Container {container_id} still processing after {result.attempts} poll(s) (last={last})")
    return result


async def publish_container(ctx: PublishContext, api: ContainerApi, container_id: str) -> str:
    resp = await ctx.client.post(
        f"{api.base_url}/{api.owner_id}/{api.publish_edge}",
        params={"access_token": api.access_token, "creation_id": container_id},
    )
    raise_for_status(resp, api.platform, "Publish", code=ErrorCode.PUBLISH_FAILED)
    media_id = json_body(resp).get("id")
    if not media_id:
        raise AdapterError(api.platform, "No media id returned from publish", code=ErrorCode.PUBLISH_FAILED)
    return str(media_id)
