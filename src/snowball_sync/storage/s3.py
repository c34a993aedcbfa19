"""S3 and Snowball object storage."""

import asyncio
import logging
from typing import Any, AsyncIterator, BinaryIO, Dict, Optional, Tuple

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from snowball_sync.config import Config, OneMb
from snowball_sync.storage.base import FileInfo, StorageBackend, WriteData

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = ("404", "NoSuchKey", "NotFound")

# Lots of small parts (<100Mb) take too long on high speed networks
S3_TRANSFER_CONFIG = TransferConfig(
    multipart_threshold=105 * OneMb,
    multipart_chunksize=105 * OneMb,
)


def parse_s3_path(s3_path: str) -> Tuple[str, str]:
    """Parse ``s3://bucket/key`` into bucket and key."""
    if not s3_path.startswith("s3://"):
        raise ValueError("S3 path must start with s3://")

    path_parts = s3_path[5:].split("/", 1)
    bucket = path_parts[0]
    if not bucket.strip():
        raise ValueError(f"S3 path is missing a bucket: {s3_path}")
    key = path_parts[1] if len(path_parts) > 1 else ""

    return bucket, key


def is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in NOT_FOUND_CODES


class S3Storage(StorageBackend):
    """Storage backed by an S3 compatible object store."""

    def __init__(self, config: Config, client: Optional[Any] = None):
        self.config = config
        self._s3_client = client

    @property
    def s3_client(self) -> Any:
        """Get S3 client, creating it lazily with current config."""
        if self._s3_client is None:
            session = boto3.Session(**self.config.get_aws_session_kwargs())
            client_kwargs = self.config.get_s3_client_kwargs()
            if self.config.aws.endpoint_url:
                # Snowball devices only understand path style addressing
                client_kwargs["config"] = BotoConfig(s3={"addressing_style": "path"})
                logger.info("S3:Endpoint endpoint=%s", self.config.aws.endpoint_url)
            self._s3_client = session.client("s3", **client_kwargs)
        return self._s3_client

    def _reset_aws_clients(self) -> None:
        """Reset AWS clients to pick up config changes."""
        self._s3_client = None

    async def list(self, prefix: str) -> AsyncIterator[FileInfo]:
        bucket, key = parse_s3_path(prefix)
        key_prefix = key.rstrip("/") + "/" if key else ""
        paginator = self.s3_client.get_paginator("list_objects_v2")
        pages = iter(paginator.paginate(Bucket=bucket, Prefix=key_prefix, PaginationConfig={"PageSize": 1000}))

        while True:
            page = await asyncio.to_thread(next, pages, None)
            if page is None:
                break
            for obj in page.get("Contents", []):
                # The prefix's own folder marker is not an entry under it
                if obj["Key"] == key_prefix:
                    continue
                yield FileInfo(path=obj["Key"][len(key_prefix):], size=obj["Size"])

    async def read(self, path: str) -> bytes:
        stream = await self.read_stream(path)
        try:
            return await asyncio.to_thread(stream.read)
        finally:
            stream.close()

    async def read_stream(self, path: str) -> BinaryIO:
        bucket, key = parse_s3_path(path)
        client = self.s3_client
        try:
            response = await asyncio.to_thread(client.get_object, Bucket=bucket, Key=key)
        except ClientError as e:
            if is_not_found(e):
                raise FileNotFoundError(path) from e
            raise
        return response["Body"]

    async def write(self, path: str, data: WriteData, metadata: Optional[Dict[str, str]] = None) -> None:
        bucket, key = parse_s3_path(path)
        client = self.s3_client
        if isinstance(data, (bytes, bytearray)):
            await asyncio.to_thread(
                client.put_object, Bucket=bucket, Key=key, Body=bytes(data), Metadata=metadata or {}
            )
            return

        await asyncio.to_thread(
            client.upload_fileobj,
            data,
            bucket,
            key,
            ExtraArgs={"Metadata": metadata or {}},
            Config=S3_TRANSFER_CONFIG,
        )

    async def head(self, path: str) -> Optional[FileInfo]:
        bucket, key = parse_s3_path(path)
        client = self.s3_client
        try:
            response = await asyncio.to_thread(client.head_object, Bucket=bucket, Key=key)
        except ClientError as e:
            if is_not_found(e):
                return None
            raise
        return FileInfo(path=path, size=response["ContentLength"], metadata=response.get("Metadata", {}))

    async def rename(self, source: str, target: str) -> None:
        source_bucket, source_key = parse_s3_path(source)
        target_bucket, target_key = parse_s3_path(target)
        client = self.s3_client
        await asyncio.to_thread(
            client.copy_object,
            Bucket=target_bucket,
            Key=target_key,
            CopySource={"Bucket": source_bucket, "Key": source_key},
        )
        await asyncio.to_thread(client.delete_object, Bucket=source_bucket, Key=source_key)

    def join(self, *segments: str) -> str:
        parts = [segments[0].rstrip("/")]
        parts.extend(s.strip("/") for s in segments[1:] if s.strip("/"))
        return "/".join(parts)
