"""
Local staging area for VM archive operations.

Each identity (VM id or archive name) owns exactly one directory,
``<local_root>/<identity>``, holding at most the exported image, the
storage repository id and the VM metadata document.
"""

import shutil
from pathlib import Path
from typing import Union

from .logging import logger
from .models import IMAGE_SUFFIX, METADATA_FILE, SR_ID_FILE
from .security import SecurityValidator


class StagingArea:
    """Owns the lifecycle of per-identity staging directories."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root).expanduser()

    def path_for(self, identity: str) -> Path:
        """Return ``<root>/<identity>``; identities are never freeform paths."""
        SecurityValidator.validate_identity(identity)
        SecurityValidator.sanitize_path(identity, str(self.root))
        return self.root / identity

    def ensure(self, path: Path) -> Path:
        path.mkdir(parents=True, exist_ok=True)
        return path

    def clean(self, path: Path) -> None:
        """Remove ``path`` recursively. Does nothing when it is already gone."""
        if not path.exists():
            logger.debug(f"Staging directory {path} already absent", path=str(path))
            return
        shutil.rmtree(path)
        logger.info(f"Removed staging directory {path}", path=str(path))

    def is_empty(self, path: Path) -> bool:
        """True when ``path`` is missing, not a directory, or has no entries."""
        if not path.is_dir():
            return True
        return not any(path.iterdir())

    @staticmethod
    def image_path(path: Path, vm_id: str) -> Path:
        return path / f"{vm_id}{IMAGE_SUFFIX}"

    @staticmethod
    def sr_id_path(path: Path) -> Path:
        return path / SR_ID_FILE

    @staticmethod
    def metadata_path(path: Path) -> Path:
        return path / METADATA_FILE

    @staticmethod
    def remove_file(path: Path) -> None:
        path.unlink(missing_ok=True)
