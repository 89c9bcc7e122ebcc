"""
S3 object-store client for VM archive operations.

Archives are stored flat: ``s3://<bucket>/<identity>/<file>``. boto3 is
blocking, so every call runs in the default executor.
"""

import asyncio
from functools import partial
from pathlib import Path
from typing import Any, List, Optional

import boto3
from boto3.exceptions import S3UploadFailedError
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import TransferError
from .logging import logger


ARCHIVE_STORAGE_CLASSES = {"GLACIER", "DEEP_ARCHIVE"}


class S3ObjectStore:
    """Uploads and downloads staging directories to one bucket."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        region: Optional[str] = None,
        restore_days: int = 7,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.region = region
        self.restore_days = restore_days
        self._client = client

    @property
    def client(self) -> Any:
        """Get or create the S3 client."""
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url,
                region_name=self.region,
                config=BotoConfig(signature_version="s3v4"),
            )
        return self._client

    def url(self, prefix: str) -> str:
        return f"s3://{self.bucket}/{prefix.strip('/')}/"

    async def _call(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, partial(func, *args, **kwargs))

    async def upload_tree(self, local_dir: Path, prefix: str) -> int:
        """Upload every file directly under ``local_dir`` to ``<prefix>/``.

        Returns the number of files uploaded.
        """
        destination = self.url(prefix)
        files = sorted(p for p in Path(local_dir).iterdir() if p.is_file())
        for path in files:
            key = f"{prefix.strip('/')}/{path.name}"
            try:
                await self._call(self.client.upload_file, str(path), self.bucket, key)
            except (ClientError, BotoCoreError, S3UploadFailedError, OSError) as e:
                raise TransferError(str(e), str(path), destination) from e
            logger.debug(f"Uploaded {path.name}", key=key, bucket=self.bucket)
        return len(files)

    async def list_objects(self, prefix: str) -> List[dict]:
        paginator = self.client.get_paginator("list_objects_v2")

        def collect() -> List[dict]:
            objects: List[dict] = []
            for page in paginator.paginate(Bucket=self.bucket, Prefix=f"{prefix.strip('/')}/"):
                objects.extend(page.get("Contents", []))
            return objects

        return await self._call(collect)

    async def download_tree(
        self, prefix: str, local_dir: Path, force_retrieval: bool = True
    ) -> int:
        """Download every object under ``<prefix>/`` into ``local_dir``.

        Objects in an archive storage class are skipped unless
        ``force_retrieval`` is set. An archived object that has not been
        restored yet gets a restore request and the transfer fails so the
        operator can retry once the retrieval has completed.

        Returns the number of files downloaded.
        """
        source = self.url(prefix)
        try:
            objects = await self.list_objects(prefix)
        except (ClientError, BotoCoreError) as e:
            raise TransferError(str(e), source, str(local_dir)) from e

        downloaded = 0
        pending: List[str] = []
        for obj in objects:
            key = obj["Key"]
            name = key.rsplit("/", 1)[-1]
            if not name:
                continue
            if obj.get("StorageClass") in ARCHIVE_STORAGE_CLASSES and not force_retrieval:
                logger.warning(f"Skipping archived object {key}", key=key)
                continue
            try:
                await self._call(
                    self.client.download_file, self.bucket, key, str(Path(local_dir) / name)
                )
            except ClientError as e:
                if e.response.get("Error", {}).get("Code") == "InvalidObjectState":
                    await self._request_restore(key)
                    pending.append(key)
                    continue
                raise TransferError(str(e), source, str(local_dir)) from e
            except (BotoCoreError, OSError) as e:
                raise TransferError(str(e), source, str(local_dir)) from e
            downloaded += 1

        if pending:
            raise TransferError(
                f"Retrieval requested for {len(pending)} archived object(s), retry once it completes",
                source,
                str(local_dir),
            )
        return downloaded

    async def _request_restore(self, key: str) -> None:
        try:
            await self._call(
                self.client.restore_object,
                Bucket=self.bucket,
                Key=key,
                RestoreRequest={"Days": self.restore_days},
            )
            logger.info(f"Requested retrieval of archived object {key}", key=key)
        except ClientError as e:
            # RestoreAlreadyInProgress is the expected answer on a retry
            if e.response.get("Error", {}).get("Code") != "RestoreAlreadyInProgress":
                raise TransferError(str(e), self.url(key), "retrieval") from e

    async def list_prefixes(self) -> List[str]:
        """Return the archive names present at the top of the bucket."""
        paginator = self.client.get_paginator("list_objects_v2")

        def collect() -> List[str]:
            names: List[str] = []
            for page in paginator.paginate(Bucket=self.bucket, Delimiter="/"):
                for entry in page.get("CommonPrefixes", []):
                    names.append(entry["Prefix"].rstrip("/"))
            return names

        try:
            return await self._call(collect)
        except (ClientError, BotoCoreError) as e:
            raise TransferError(str(e), f"s3://{self.bucket}/", "listing") from e
