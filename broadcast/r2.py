"""
Broadcast R2 Media Store
========================
Cloudflare R2 object storage for post media.

Posts stored with only an object key get a fetchable URL from resolve_url
before dispatch; the media is deleted once anything has published it.
"""

import asyncio
import logging
import os
from typing import Optional

logger = logging.getLogger("broadcast")

R2_ACCOUNT_ID = os.environ.get("R2_ACCOUNT_ID", "")
R2_ACCESS_KEY_ID = os.environ.get("R2_ACCESS_KEY_ID", "")
R2_SECRET_ACCESS_KEY = os.environ.get("R2_SECRET_ACCESS_KEY", "")
R2_BUCKET_NAME = os.environ.get("R2_BUCKET_NAME", "broadcast-media")
R2_ENDPOINT = os.environ.get("R2_ENDPOINT", "")
R2_PUBLIC_URL = os.environ.get("R2_PUBLIC_URL", "")


class R2MediaStore:
    """boto3 S3 client against R2; the client is created on first use."""

    def __init__(
        self,
        bucket: str = R2_BUCKET_NAME,
        public_url: str = R2_PUBLIC_URL,
        client=None,
    ):
        self.bucket = bucket
        self.public_url = public_url.rstrip("/") if public_url else ""
        self._client = client

    def _get_s3_client(self):
        if self._client is not None:
            return self._client

        import boto3
        from botocore.config import Config

        endpoint = R2_ENDPOINT or f"https://{R2_ACCOUNT_ID}.r2.cloudflarestorage.com"

        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint,
            aws_access_key_id=R2_ACCESS_KEY_ID,
            aws_secret_access_key=R2_SECRET_ACCESS_KEY,
            config=Config(
                signature_version="s3v4",
                retries={"max_attempts": 3, "mode": "adaptive"},
            ),
            region_name="auto",
        )
        return self._client

    def key_for(self, media_ref: str) -> Optional[str]:
        """
        Resolve a media reference to an object key.

        Accepts a bare key or a URL under R2_PUBLIC_URL. URLs anywhere else
        are not ours to delete.
        """
        if not media_ref:
            return None
        if media_ref.startswith(("http://", "https://")):
            if self.public_url and media_ref.startswith(self.public_url + "/"):
                return media_ref[len(self.public_url) + 1:].split("?", 1)[0]
            return None
        return media_ref.lstrip("/")

    async def delete(self, media_ref: str) -> bool:
        """Delete an object. Returns False when the reference is not in this bucket."""
        key = self.key_for(media_ref)
        if not key:
            logger.info(f"R2 delete skipped (not a bucket object): {media_ref}")
            return False

        logger.info(f"R2 delete: {key}")

        def _delete():
            self._get_s3_client().delete_object(Bucket=self.bucket, Key=key)

        await asyncio.get_running_loop().run_in_executor(None, _delete)
        return True

    def generate_presigned_url(self, key: str, expires: int = 3600) -> str:
        return self._get_s3_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=expires,
        )

    def get_public_url(self, key: str) -> Optional[str]:
        if not self.public_url:
            return None
        return f"{self.public_url}/{key}"

    def resolve_url(self, key: str, expires: int = 3600) -> str:
        """Public URL when R2_PUBLIC_URL is configured, otherwise a presigned one."""
        return self.get_public_url(key) or self.generate_presigned_url(key, expires)
