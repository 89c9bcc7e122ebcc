"""
VM export and metadata extraction.

This module produces the artifacts of a staging directory: the compressed
image, the VM metadata document and the storage repository id derived by
walking the VM's block devices (VBD -> VDI -> SR).
"""

import json
from pathlib import Path
from typing import List, Tuple

from .exceptions import (
    ControlPlaneError,
    ExportFailedError,
    MetadataExportError,
    StorageLocationUnresolvedError,
)
from .logging import logger
from .security import SecurityValidator
from .staging import StagingArea
from .xo_client import XOClient


class VMExporter:
    """Exports VM images and metadata into the staging area."""

    def __init__(self, xo: XOClient, staging: StagingArea) -> None:
        self.xo = xo
        self.staging = staging

    async def export_image(self, vm_id: str) -> Path:
        """
        Export a compressed image of ``vm_id`` into its staging directory.

        Any stale image is removed first; a partial image is removed on failure.

        Raises:
            ExportFailedError: If the control plane export fails
        """
        directory = self.staging.ensure(self.staging.path_for(vm_id))
        image_path = StagingArea.image_path(directory, vm_id)
        StagingArea.remove_file(image_path)

        logger.info(f"Exporting VM {vm_id}", vm_id=vm_id, path=str(image_path))
        try:
            await self.xo.export_vm(vm_id, str(image_path), compress=True)
        except ControlPlaneError as e:
            StagingArea.remove_file(image_path)
            logger.error(f"Export of VM {vm_id} failed", vm_id=vm_id, error=e.message)
            raise ExportFailedError(e.message, vm_id) from e

        if not image_path.is_file() or image_path.stat().st_size == 0:
            StagingArea.remove_file(image_path)
            raise ExportFailedError("export produced no image", vm_id)

        logger.info(
            f"Exported VM {vm_id}",
            vm_id=vm_id,
            path=str(image_path),
            size=image_path.stat().st_size,
        )
        return image_path

    async def export_metadata(self, vm_id: str) -> Tuple[str, Path]:
        """
        Write the VM metadata document and the storage repository id.

        Returns:
            Tuple of (sr_id, metadata_path)

        Raises:
            MetadataExportError: If the metadata document cannot be written
            StorageLocationUnresolvedError: If no well-formed SR id is found
        """
        directory = self.staging.ensure(self.staging.path_for(vm_id))
        metadata_path = StagingArea.metadata_path(directory)
        sr_id_path = StagingArea.sr_id_path(directory)
        StagingArea.remove_file(metadata_path)
        StagingArea.remove_file(sr_id_path)

        try:
            records = await self.xo.list_objects(type="VM", id=vm_id)
            if len(records) != 1:
                raise MetadataExportError(f"expected one VM record, got {len(records)}", vm_id)
            metadata_path.write_text(json.dumps(records[0], indent=2, sort_keys=True))
        except (ControlPlaneError, OSError) as e:
            StagingArea.remove_file(metadata_path)
            raise MetadataExportError(str(e), vm_id) from e
        except MetadataExportError:
            StagingArea.remove_file(metadata_path)
            raise

        try:
            candidates = await self.storage_repositories(vm_id)
        except ControlPlaneError as e:
            StagingArea.remove_file(metadata_path)
            raise MetadataExportError(e.message, vm_id) from e

        sr_id = next((c for c in candidates if SecurityValidator.is_well_formed_id(c)), None)
        if sr_id is None:
            StagingArea.remove_file(metadata_path)
            StagingArea.remove_file(sr_id_path)
            logger.error(f"No storage repository found for VM {vm_id}", vm_id=vm_id)
            raise StorageLocationUnresolvedError(vm_id)

        sr_id = sr_id.strip()
        if len(set(c for c in candidates if SecurityValidator.is_well_formed_id(c))) > 1:
            logger.warning(
                f"VM {vm_id} has disks on several storage repositories, using {sr_id}",
                vm_id=vm_id,
                sr_ids=candidates,
            )
        try:
            sr_id_path.write_text(f"{sr_id}\n")
        except OSError as e:
            StagingArea.remove_file(metadata_path)
            StagingArea.remove_file(sr_id_path)
            raise MetadataExportError(str(e), vm_id) from e

        logger.info(f"Exported metadata of VM {vm_id}", vm_id=vm_id, sr_id=sr_id)
        return sr_id, metadata_path

    async def storage_repositories(self, vm_id: str) -> List[str]:
        """Return the SR of every disk attached to ``vm_id``, in discovery order."""
        candidates: List[str] = []
        for vbd in await self.xo.list_objects(type="VBD", VM=vm_id):
            vdi_id = vbd.get("VDI")
            if not SecurityValidator.is_well_formed_id(vdi_id):
                continue
            for vdi in await self.xo.list_objects(type="VDI", id=vdi_id):
                sr = vdi.get("$SR")
                if sr:
                    candidates.append(str(sr))
        return candidates
