"""
Transfer of staging directories to and from the object store.
"""

from pathlib import Path
from typing import Optional

from .exceptions import ConfigurationError, NothingToRestoreError, TransferError
from .logging import logger
from .object_store import S3ObjectStore
from .staging import StagingArea


class TransferEngine:
    """Pushes and pulls one staging directory per identity."""

    def __init__(self, store: Optional[S3ObjectStore], staging: StagingArea) -> None:
        self.store = store
        self.staging = staging

    def _require_store(self) -> S3ObjectStore:
        if self.store is None or not self.store.bucket:
            raise ConfigurationError(
                "Missing required configuration: s3_bucket", missing=["s3_bucket"]
            )
        return self.store

    async def push(self, remote_name: str, local_dir: Path) -> int:
        """
        Upload ``local_dir`` to ``<bucket>/<remote_name>/`` and clean it on success.

        Local files are kept when the upload fails so it can be retried.

        Raises:
            ConfigurationError: If no bucket is configured
            TransferError: If ``local_dir`` is empty or the upload fails
        """
        store = self._require_store()
        destination = store.url(remote_name)
        if self.staging.is_empty(local_dir):
            raise TransferError("nothing to push, staging directory is empty", str(local_dir), destination)

        logger.info(f"Pushing {local_dir} to {destination}", source=str(local_dir), destination=destination)
        try:
            count = await store.upload_tree(local_dir, remote_name)
        except TransferError:
            logger.error(
                f"Push to {destination} failed, local files kept in {local_dir}",
                source=str(local_dir),
                destination=destination,
            )
            raise

        logger.info(f"Pushed {count} file(s) to {destination}", destination=destination, files=count)
        self.staging.clean(local_dir)
        return count

    async def pull(self, remote_name: str, local_dir: Path) -> int:
        """
        Download ``<bucket>/<remote_name>/`` into ``local_dir``.

        Raises:
            ConfigurationError: If no bucket is configured
            TransferError: If the download fails (``local_dir`` is cleaned)
            NothingToRestoreError: If nothing was downloaded, even when
                ``local_dir`` held files from an earlier run (``local_dir`` is cleaned)
        """
        store = self._require_store()
        source = store.url(remote_name)
        self.staging.ensure(local_dir)

        logger.info(f"Pulling {source} into {local_dir}", source=source, destination=str(local_dir))
        try:
            count = await store.download_tree(remote_name, local_dir, force_retrieval=True)
        except TransferError:
            logger.error(f"Pull from {source} failed", source=source)
            self.staging.clean(local_dir)
            raise

        if count == 0:
            self.staging.clean(local_dir)
            raise NothingToRestoreError(remote_name, store.bucket)

        logger.info(f"Pulled {count} file(s) from {source}", source=source, files=count)
        return count
