"""S3 durable store.

Stores every object of a run in one bucket using the layout from
``shardrun_core.layout``. boto3 is synchronous, so each call is moved off the
event loop with ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from shardrun_core.errors import ObjectNotFoundError, StoreError
from shardrun_core.store import BaseStore

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NotFound", "404"})

# us-east-1 rejects an explicit LocationConstraint
_DEFAULT_REGION = "us-east-1"


def _error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


def _is_not_found(err: ClientError) -> bool:
    status = err.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return _error_code(err) in _NOT_FOUND_CODES or status == 404


def create_client(service: str, region: str) -> Any:
    """Create a boto3 client with adaptive retries."""
    session = boto3.session.Session()
    config = BotoConfig(retries={"max_attempts": 3, "mode": "adaptive"})
    return session.client(service, region_name=region, config=config)


class S3Store(BaseStore):
    """DurableStore implementation over an S3 bucket.

    Args:
        bucket: Bucket name, handed to workers as the store location.
        region: Bucket region.
        client: Optional pre-built S3 client (used by tests).
    """

    def __init__(self, bucket: str, region: str, client: Any | None = None) -> None:
        if not bucket:
            raise ValueError("bucket must be non-empty")
        self._bucket = bucket
        self._region = region
        self._client = client if client is not None else create_client("s3", region)

    @property
    def location(self) -> str:
        return self._bucket

    @property
    def region(self) -> str:
        """Return the bucket region."""
        return self._region

    async def ensure_container_exists(self) -> None:
        try:
            await asyncio.to_thread(self._client.head_bucket, Bucket=self._bucket)
            return
        except ClientError as e:
            if not _is_not_found(e):
                raise StoreError(f"Failed to check bucket {self._bucket}: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"Failed to check bucket {self._bucket}: {e}") from e

        logger.info("Creating bucket %s in %s", self._bucket, self._region)
        params: dict[str, Any] = {"Bucket": self._bucket}
        if self._region != _DEFAULT_REGION:
            params["CreateBucketConfiguration"] = {"LocationConstraint": self._region}
        try:
            await asyncio.to_thread(self._client.create_bucket, **params)
        except ClientError as e:
            # Lost a race with a concurrent run creating the same bucket
            if _error_code(e) == "BucketAlreadyOwnedByYou":
                return
            raise StoreError(f"Failed to create bucket {self._bucket}: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"Failed to create bucket {self._bucket}: {e}") from e

    async def put_blob(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        params: dict[str, Any] = {"Bucket": self._bucket, "Key": key, "Body": data}
        if content_type:
            params["ContentType"] = content_type
        if metadata:
            params["Metadata"] = dict(metadata)
        try:
            await asyncio.to_thread(self._client.put_object, **params)
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"Failed to upload s3://{self._bucket}/{key}: {e}") from e
        logger.debug("Uploaded s3://%s/%s (%d bytes)", self._bucket, key, len(data))

    async def get_blob(self, key: str) -> bytes:
        try:
            return await asyncio.to_thread(self._read, key)
        except ClientError as e:
            if _is_not_found(e):
                raise ObjectNotFoundError(key) from e
            raise StoreError(f"Failed to download s3://{self._bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"Failed to download s3://{self._bucket}/{key}: {e}") from e

    def _read(self, key: str) -> bytes:
        response = self._client.get_object(Bucket=self._bucket, Key=key)
        body = response["Body"]
        try:
            return body.read()
        finally:
            body.close()

    async def list_keys(self, prefix: str) -> list[str]:
        try:
            return await asyncio.to_thread(self._list, prefix)
        except (ClientError, BotoCoreError) as e:
            raise StoreError(f"Failed to list s3://{self._bucket}/{prefix}: {e}") from e

    def _list(self, prefix: str) -> list[str]:
        paginator = self._client.get_paginator("list_objects_v2")
        keys = []
        for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
            keys.extend(obj["Key"] for obj in page.get("Contents", []))
        return sorted(keys)

    async def get_metadata(self, key: str) -> dict[str, str]:
        try:
            response = await asyncio.to_thread(
                self._client.head_object, Bucket=self._bucket, Key=key
            )
        except ClientError as e:
            if _is_not_found(e):
                raise ObjectNotFoundError(key) from e
            raise StoreError(f"Failed to read metadata of s3://{self._bucket}/{key}: {e}") from e
        except BotoCoreError as e:
            raise StoreError(f"Failed to read metadata of s3://{self._bucket}/{key}: {e}") from e
        return dict(response.get("Metadata", {}))
