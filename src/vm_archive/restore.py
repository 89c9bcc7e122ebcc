"""
Import and restore-proof operations.

A restore proof imports an image into a storage repository and deletes the
resulting VM straight away. The imported VM is never started.
"""

from pathlib import Path
from typing import Union

from .exceptions import ControlPlaneError, ImportFailedError, OrphanVMLeftError
from .logging import logger
from .models import RestoreProof
from .xo_client import XOClient


class RestoreValidator:
    """Imports images and proves they are restorable."""

    def __init__(self, xo: XOClient) -> None:
        self.xo = xo

    async def import_image(self, sr_id: str, image_path: Union[str, Path]) -> str:
        """
        Import ``image_path`` into ``sr_id``.

        Returns:
            str: Id of the imported VM

        Raises:
            ImportFailedError: If the control plane rejects the import
        """
        logger.info(f"Importing {image_path} into SR {sr_id}", sr_id=sr_id, image=str(image_path))
        try:
            vm_id = await self.xo.import_vm(sr_id, str(image_path))
        except ControlPlaneError as e:
            logger.error(f"Import of {image_path} failed", sr_id=sr_id, error=e.message)
            raise ImportFailedError(e.message, str(image_path), sr_id) from e

        logger.info(f"Imported VM {vm_id}", vm_id=vm_id, sr_id=sr_id)
        return vm_id

    async def validate(self, sr_id: str, image_path: Union[str, Path]) -> RestoreProof:
        """
        Prove ``image_path`` is restorable by importing then deleting it.

        Raises:
            ImportFailedError: If the import fails (no delete is attempted)
            OrphanVMLeftError: If the import succeeded but the imported VM
                could not be deleted
        """
        vm_id = await self.import_image(sr_id, image_path)

        try:
            await self.xo.delete_vm(vm_id, delete_disks=True)
        except ControlPlaneError as e:
            logger.error(
                f"Restore proof of {image_path} succeeded but VM {vm_id} was left behind",
                vm_id=vm_id,
                sr_id=sr_id,
                error=e.message,
            )
            raise OrphanVMLeftError(vm_id, e.message) from e

        logger.info(f"Restore proof of {image_path} succeeded", sr_id=sr_id, vm_id=vm_id)
        return RestoreProof(
            sr_id=sr_id, image_path=str(image_path), imported_vm_id=vm_id, deleted=True
        )
