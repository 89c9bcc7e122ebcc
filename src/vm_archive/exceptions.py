"""
Custom exceptions for VM archive operations.

This module defines all custom exceptions used throughout the archiving system.
Every exception carries a stable ``error_code`` and the process ``exit_code``
the CLI terminates with.
"""

from typing import Optional


class VMArchiveError(Exception):
    """Base exception for VM archive operations."""

    exit_code = 16

    def __init__(self, message: str, error_code: int = 1000) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class ConfigurationError(VMArchiveError):
    """Configuration-related errors."""

    exit_code = 2

    def __init__(self, message: str, missing: Optional[list] = None) -> None:
        super().__init__(message, error_code=1001)
        self.missing = missing or []


class SelectorError(VMArchiveError):
    """A VM name resolved to zero or several VMs, or no selector was given."""

    exit_code = 3

    def __init__(self, message: str, selector: str = "") -> None:
        super().__init__(f"Selector error: {message}", error_code=1002)
        self.selector = selector


class SessionError(VMArchiveError):
    """Control-plane session registration or renewal failed."""

    exit_code = 4

    def __init__(self, message: str, host: str = "") -> None:
        super().__init__(f"Session error on {host or 'control plane'}: {message}", error_code=1003)
        self.host = host


class ExportFailedError(VMArchiveError):
    """VM image export failed."""

    exit_code = 5

    def __init__(self, message: str, vm_id: str) -> None:
        super().__init__(f"Export of VM {vm_id} failed: {message}", error_code=1004)
        self.vm_id = vm_id


class MetadataExportError(VMArchiveError):
    """VM metadata document could not be fetched or written."""

    exit_code = 6

    def __init__(self, message: str, vm_id: str) -> None:
        super().__init__(
            f"Metadata export of VM {vm_id} failed: {message}", error_code=1005
        )
        self.vm_id = vm_id


class StorageLocationUnresolvedError(VMArchiveError):
    """No well-formed storage repository id could be derived for a VM."""

    exit_code = 7

    def __init__(self, vm_id: str) -> None:
        super().__init__(
            f"Could not resolve a storage repository for VM {vm_id}", error_code=1006
        )
        self.vm_id = vm_id


class TransferError(VMArchiveError):
    """Object-store transfer errors."""

    exit_code = 8

    def __init__(self, message: str, source: str, destination: str) -> None:
        super().__init__(
            f"Transfer error from {source} to {destination}: {message}", error_code=1007
        )
        self.source = source
        self.destination = destination


class NothingToRestoreError(VMArchiveError):
    """A pull produced no files."""

    exit_code = 9

    def __init__(self, identity: str, bucket: str) -> None:
        super().__init__(
            f"Nothing to restore for '{identity}' in bucket '{bucket}'", error_code=1008
        )
        self.identity = identity
        self.bucket = bucket


class ImportFailedError(VMArchiveError):
    """Importing an image into a storage repository failed."""

    exit_code = 10

    def __init__(self, message: str, image_path: str, sr_id: str) -> None:
        super().__init__(
            f"Import of {image_path} into SR {sr_id} failed: {message}", error_code=1009
        )
        self.image_path = image_path
        self.sr_id = sr_id


class OrphanVMLeftError(VMArchiveError):
    """A restore proof imported a VM that could not be deleted afterwards."""

    exit_code = 11

    def __init__(self, vm_id: str, reason: str = "") -> None:
        message = f"VM {vm_id} was imported but could not be deleted, remove it manually"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, error_code=1010)
        self.vm_id = vm_id
        self.restorable = True


class LocalMetadataInvalidError(VMArchiveError):
    """Staged metadata is missing or malformed."""

    exit_code = 12

    def __init__(self, message: str, path: str) -> None:
        super().__init__(f"Invalid local metadata in {path}: {message}", error_code=1011)
        self.path = path


class DeleteFailedError(VMArchiveError):
    """Deleting a VM failed."""

    exit_code = 13

    def __init__(self, message: str, vm_id: str) -> None:
        super().__init__(f"Delete of VM {vm_id} failed: {message}", error_code=1012)
        self.vm_id = vm_id


class ValidationError(VMArchiveError):
    """Validation errors."""

    exit_code = 14

    def __init__(self, message: str, validation_type: str = "general") -> None:
        super().__init__(
            f"Validation error ({validation_type}): {message}", error_code=1013
        )
        self.validation_type = validation_type


class ControlPlaneError(VMArchiveError):
    """An xo-cli call failed."""

    exit_code = 15

    def __init__(self, message: str, operation: str = "unknown") -> None:
        super().__init__(
            f"Control-plane error during {operation}: {message}", error_code=1014
        )
        self.operation = operation
