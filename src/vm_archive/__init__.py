"""VM Archive - Archive Xen Orchestra virtual machines to S3 and restore them."""

__version__ = "0.1.0"
__description__ = "Xen Orchestra VM archiving utility"

# Import main classes for easy access
from .client import VMArchiveClient
from .models import (
    ById,
    ByName,
    ByArchiveName,
    BySrAndFile,
    ExportRecord,
    Identity,
    Operation,
    WorkflowLog,
)
from .exceptions import (
    VMArchiveError,
    ConfigurationError,
    SelectorError,
    SessionError,
    ExportFailedError,
    MetadataExportError,
    StorageLocationUnresolvedError,
    TransferError,
    NothingToRestoreError,
    ImportFailedError,
    OrphanVMLeftError,
    LocalMetadataInvalidError,
    DeleteFailedError,
    ValidationError,
    ControlPlaneError,
)

__all__ = [
    "__version__",
    "__description__",
    "VMArchiveClient",
    "ById",
    "ByName",
    "ByArchiveName",
    "BySrAndFile",
    "ExportRecord",
    "Identity",
    "Operation",
    "WorkflowLog",
    "VMArchiveError",
    "ConfigurationError",
    "SelectorError",
    "SessionError",
    "ExportFailedError",
    "MetadataExportError",
    "StorageLocationUnresolvedError",
    "TransferError",
    "NothingToRestoreError",
    "ImportFailedError",
    "OrphanVMLeftError",
    "LocalMetadataInvalidError",
    "DeleteFailedError",
    "ValidationError",
    "ControlPlaneError",
]
