"""
Selector resolution for VM archive operations.

Turns ``--vm-id``, ``--vm-name``, ``--archived-vm-name`` or
``--sr-id``/``--xva-file`` into the identity every other step works with.
Resolution is read-only against the control plane.
"""

from pathlib import Path
from typing import List, Union

from .exceptions import ControlPlaneError, SelectorError
from .logging import logger
from .models import ById, ByArchiveName, ByName, BySrAndFile, ExportRecord, Identity, Selector
from .security import SecurityValidator
from .xo_client import XOClient


class SelectorResolver:
    """Resolves selectors against the control plane."""

    def __init__(self, xo: XOClient) -> None:
        self.xo = xo

    async def resolve(self, selector: Selector) -> Union[Identity, ExportRecord]:
        """
        Resolve a selector into a working identity.

        Args:
            selector: The active selector of the invocation

        Returns:
            Identity for VM and archive selectors, ExportRecord for
            ``BySrAndFile`` (file existence is left to the caller)

        Raises:
            SelectorError: If a name matches zero or several VMs
        """
        if isinstance(selector, ById):
            vm_id = SecurityValidator.validate_identity(selector.vm_id)
            return Identity(key=vm_id, vm_id=vm_id)

        if isinstance(selector, ByName):
            vm_id = await self.vm_id_for_name(selector.vm_name)
            return Identity(key=vm_id, vm_id=vm_id, vm_name=selector.vm_name)

        if isinstance(selector, ByArchiveName):
            name = SecurityValidator.validate_identity(selector.archive_name)
            return Identity(key=name, archive_name=name)

        if isinstance(selector, BySrAndFile):
            return ExportRecord(image_path=Path(selector.xva_path), sr_id=selector.sr_id)

        raise SelectorError(f"Unsupported selector {selector!r}")

    async def vm_id_for_name(self, vm_name: str) -> str:
        records = await self._lookup(vm_name, type="VM", name_label=vm_name)
        if len(records) != 1:
            logger.error(
                f"VM name '{vm_name}' matched {len(records)} VMs",
                vm_name=vm_name,
                matches=len(records),
            )
            if not records:
                raise SelectorError(f"No VM named '{vm_name}'", vm_name)
            raise SelectorError(
                f"{len(records)} VMs are named '{vm_name}', use --vm-id instead", vm_name
            )
        vm_id = records[0].get("id") or records[0].get("uuid")
        if not SecurityValidator.is_well_formed_id(vm_id):
            raise SelectorError(f"VM '{vm_name}' has no usable id", vm_name)
        return vm_id

    async def remote_name(self, identity: Identity) -> str:
        """Return the name keying the remote prefix of ``identity``."""
        if identity.remote_name:
            return SecurityValidator.validate_identity(identity.remote_name)

        records = await self._lookup(identity.vm_id, type="VM", id=identity.vm_id)
        if len(records) != 1:
            raise SelectorError(f"No VM with id '{identity.vm_id}'", identity.vm_id or "")
        name = records[0].get("name_label")
        if not name:
            raise SelectorError(f"VM '{identity.vm_id}' has no name", identity.vm_id or "")
        return SecurityValidator.validate_identity(name)

    async def _lookup(self, selector: str, **filters: str) -> List[dict]:
        try:
            return await self.xo.list_objects(**filters)
        except ControlPlaneError as e:
            raise SelectorError(f"Lookup failed: {e.message}", selector) from e
