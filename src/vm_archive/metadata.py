"""
Validation of staged metadata before it drives an import.
"""

import json
import os
from pathlib import Path
from typing import Optional

from .exceptions import LocalMetadataInvalidError
from .logging import logger
from .models import ExportRecord
from .security import SecurityValidator
from .staging import StagingArea


def read_sr_id(directory: Path) -> str:
    path = StagingArea.sr_id_path(directory)
    try:
        sr_id = path.read_text().strip()
    except OSError as e:
        raise LocalMetadataInvalidError(f"cannot read {path.name}: {e.strerror}", str(directory))
    if not SecurityValidator.is_well_formed_id(sr_id):
        raise LocalMetadataInvalidError(f"{path.name} holds no valid SR id", str(directory))
    return sr_id


def read_vm_id(directory: Path) -> str:
    path = StagingArea.metadata_path(directory)
    try:
        document = json.loads(path.read_text())
    except OSError as e:
        raise LocalMetadataInvalidError(f"cannot read {path.name}: {e.strerror}", str(directory))
    except json.JSONDecodeError as e:
        raise LocalMetadataInvalidError(f"{path.name} is not valid JSON: {e}", str(directory))

    if not isinstance(document, dict):
        raise LocalMetadataInvalidError(f"{path.name} is not a JSON object", str(directory))
    vm_id = document.get("id")
    if not isinstance(vm_id, str) or not SecurityValidator.is_well_formed_id(vm_id):
        raise LocalMetadataInvalidError(f"{path.name} has no valid 'id' field", str(directory))
    return vm_id


def validate_local_metadata(directory: Path, owner_vm_id: Optional[str] = None) -> ExportRecord:
    """
    Check a staging directory can drive an import.

    Reads the SR id and the metadata document, then checks the image named
    after the archived VM id exists and is readable. Nothing is repaired.
    When the directory belongs to a VM id, the metadata must describe that VM.

    Raises:
        LocalMetadataInvalidError: On any missing or malformed piece
    """
    if not directory.is_dir():
        raise LocalMetadataInvalidError("staging directory does not exist", str(directory))

    sr_id = read_sr_id(directory)
    vm_id = read_vm_id(directory)
    if owner_vm_id and vm_id != owner_vm_id:
        raise LocalMetadataInvalidError(
            f"VM.json describes VM {vm_id}, not {owner_vm_id}", str(directory)
        )
    image_path = StagingArea.image_path(directory, vm_id)
    if not image_path.is_file():
        raise LocalMetadataInvalidError(f"image {image_path.name} is missing", str(directory))
    if not os.access(image_path, os.R_OK):
        raise LocalMetadataInvalidError(f"image {image_path.name} is not readable", str(directory))

    logger.info(
        f"Local metadata in {directory} is valid",
        directory=str(directory),
        sr_id=sr_id,
        vm_id=vm_id,
    )
    return ExportRecord(
        image_path=image_path,
        sr_id=sr_id,
        metadata_path=StagingArea.metadata_path(directory),
    )
