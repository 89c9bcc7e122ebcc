"""
Data models for VM archive operations.

This module defines the data structures used throughout the archiving system.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict, Any, Union


IMAGE_SUFFIX = ".xva"
SR_ID_FILE = "SR-ID.txt"
METADATA_FILE = "VM.json"


class Operation(Enum):
    """Operations the orchestrator knows how to run."""

    EXPORT = "export"
    PUSH = "push"
    PULL = "pull"
    DELETE = "delete"
    ARCHIVE = "archive"
    IMPORT = "import"
    TEMPORARILY_RESTORE_XVA = "temporarily-restores-xva"
    RESTORE = "restore"
    GET_METADATA_FROM_LOCAL_FILES = "get-metadata-from-local-files"
    CLEAN = "clean"


class StepStatus(Enum):
    """Step status values."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ById:
    vm_id: str


@dataclass(frozen=True)
class ByName:
    vm_name: str


@dataclass(frozen=True)
class ByArchiveName:
    archive_name: str


@dataclass(frozen=True)
class BySrAndFile:
    sr_id: str
    xva_path: str


Selector = Union[ById, ByName, ByArchiveName, BySrAndFile]


def build_selector(
    vm_id: Optional[str] = None,
    vm_name: Optional[str] = None,
    archived_vm_name: Optional[str] = None,
    sr_id: Optional[str] = None,
    xva_file: Optional[str] = None,
) -> Optional[Selector]:
    """Pick the active selector out of the command-line options.

    ``vm_id`` wins over ``vm_name``, which wins over ``archived_vm_name``.
    ``sr_id`` and ``xva_file`` only form a selector together.
    """
    if vm_id:
        return ById(vm_id)
    if vm_name:
        return ByName(vm_name)
    if archived_vm_name:
        return ByArchiveName(archived_vm_name)
    if sr_id and xva_file:
        return BySrAndFile(sr_id, xva_file)
    return None


@dataclass(frozen=True)
class Identity:
    """Resolved working identity of one invocation.

    ``key`` names the staging directory. ``vm_id`` is set when the VM lives
    in the control plane; it is None for archives.
    """

    key: str
    vm_id: Optional[str] = None
    archive_name: Optional[str] = None
    vm_name: Optional[str] = None

    @property
    def is_archive(self) -> bool:
        return self.vm_id is None

    @property
    def remote_name(self) -> Optional[str]:
        """Name keying the remote prefix, when already known."""
        return self.archive_name or self.vm_name


@dataclass(frozen=True)
class ExportRecord:
    """Image file and storage repository needed to import a VM."""

    image_path: Path
    sr_id: str
    metadata_path: Optional[Path] = None


@dataclass
class RestoreProof:
    """Outcome of an import-then-delete check."""

    sr_id: str
    image_path: str
    imported_vm_id: str
    deleted: bool


@dataclass
class StepRecord:
    """One step of a workflow run."""

    name: str
    status: StepStatus = StepStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def duration(self) -> float:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return 0.0


@dataclass
class WorkflowLog:
    """Log of one orchestrated command."""

    operation: Operation
    identity: Optional[str] = None
    steps: List[StepRecord] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    success: bool = False
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        result = asdict(self)
        result["operation"] = self.operation.value
        result["started_at"] = self.started_at.isoformat()
        result["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        for step, raw in zip(self.steps, result["steps"]):
            raw["status"] = step.status.value
            raw["started_at"] = step.started_at.isoformat() if step.started_at else None
            raw["completed_at"] = step.completed_at.isoformat() if step.completed_at else None
            raw["duration"] = step.duration
        return result
