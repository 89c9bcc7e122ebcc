"""
Command orchestration for VM archive operations.

Every operation is a fixed sequence of named steps run strictly in order.
The first failing step aborts the run; later steps are recorded as skipped
and never executed. Steps exchange results through a ``WorkflowContext``.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .exceptions import (
    ControlPlaneError,
    DeleteFailedError,
    SelectorError,
    ValidationError,
)
from .exporter import VMExporter
from .logging import logger
from .metadata import validate_local_metadata
from .models import (
    ById,
    ByArchiveName,
    ByName,
    BySrAndFile,
    ExportRecord,
    Identity,
    Operation,
    RestoreProof,
    Selector,
    StepRecord,
    StepStatus,
    WorkflowLog,
)
from .restore import RestoreValidator
from .security import SecurityValidator
from .selector import SelectorResolver
from .staging import StagingArea
from .transfer import TransferEngine
from .xo_client import XOClient


SEQUENCES: Dict[Operation, Tuple[str, ...]] = {
    Operation.EXPORT: ("export_image", "export_metadata"),
    Operation.PUSH: ("push",),
    Operation.PULL: ("pull", "validate_local_metadata"),
    Operation.DELETE: ("delete",),
    Operation.ARCHIVE: ("export_image", "export_metadata", "restore_proof", "push", "delete"),
    Operation.IMPORT: ("import",),
    Operation.TEMPORARILY_RESTORE_XVA: ("restore_proof",),
    Operation.RESTORE: ("pull", "validate_local_metadata", "import", "clean"),
    Operation.GET_METADATA_FROM_LOCAL_FILES: ("validate_local_metadata",),
    Operation.CLEAN: ("clean",),
}

VM_SELECTORS = (ById, ByName)
IDENTITY_SELECTORS = (ById, ByName, ByArchiveName)

ACCEPTED_SELECTORS: Dict[Operation, tuple] = {
    Operation.EXPORT: VM_SELECTORS,
    Operation.PUSH: IDENTITY_SELECTORS,
    Operation.PULL: IDENTITY_SELECTORS,
    Operation.DELETE: VM_SELECTORS,
    Operation.ARCHIVE: VM_SELECTORS,
    Operation.IMPORT: IDENTITY_SELECTORS + (BySrAndFile,),
    Operation.TEMPORARILY_RESTORE_XVA: (BySrAndFile,),
    Operation.RESTORE: IDENTITY_SELECTORS,
    Operation.GET_METADATA_FROM_LOCAL_FILES: IDENTITY_SELECTORS,
    Operation.CLEAN: IDENTITY_SELECTORS,
}

CONTROL_PLANE_OPERATIONS = {
    Operation.EXPORT,
    Operation.DELETE,
    Operation.ARCHIVE,
    Operation.IMPORT,
    Operation.TEMPORARILY_RESTORE_XVA,
    Operation.RESTORE,
}

BUCKET_OPERATIONS = {Operation.PUSH, Operation.PULL, Operation.ARCHIVE, Operation.RESTORE}


def requires_control_plane(operation: Operation, selector: Optional[Selector]) -> bool:
    """True when ``operation`` on ``selector`` makes any control-plane call."""
    if operation in CONTROL_PLANE_OPERATIONS or isinstance(selector, ByName):
        return True
    # The remote prefix of a VM is its name, which only the control plane knows
    return isinstance(selector, ById) and operation in (Operation.PUSH, Operation.PULL)


def requires_bucket(operation: Operation) -> bool:
    return operation in BUCKET_OPERATIONS


@dataclass
class WorkflowContext:
    """Results threaded from one step to the next."""

    operation: Operation
    selector: Optional[Selector]
    identity: Optional[Identity] = None
    directory: Optional[Path] = None
    image_path: Optional[Path] = None
    sr_id: Optional[str] = None
    metadata_path: Optional[Path] = None
    record: Optional[ExportRecord] = None
    proof: Optional[RestoreProof] = None
    imported_vm_id: Optional[str] = None
    files_transferred: int = 0

    def export_record(self) -> ExportRecord:
        """Return the (image, SR) pair produced by an earlier step."""
        if self.record is not None:
            return self.record
        if self.image_path is not None and self.sr_id:
            return ExportRecord(self.image_path, self.sr_id, self.metadata_path)
        raise ValidationError("no image and storage repository available", "export_record")


Step = Callable[[WorkflowContext], Awaitable[None]]


async def run_steps(
    log: WorkflowLog, context: WorkflowContext, steps: Sequence[Tuple[str, Step]]
) -> WorkflowContext:
    """
    Run ``steps`` in order, stopping at the first failure.

    The failing step is recorded as failed, every later step as skipped, and
    the exception is re-raised unchanged.
    """
    records = [StepRecord(name=name) for name, _ in steps]
    log.steps.extend(records)

    for record, (name, step) in zip(records, steps):
        record.status = StepStatus.RUNNING
        record.started_at = datetime.now()
        logger.debug(f"Step {name} started", operation=log.operation.value, step=name)
        try:
            await step(context)
        except Exception as e:
            record.status = StepStatus.FAILED
            record.completed_at = datetime.now()
            record.error = str(e)
            for later in records[records.index(record) + 1:]:
                later.status = StepStatus.SKIPPED
            logger.error(
                f"Step {name} of {log.operation.value} failed",
                operation=log.operation.value,
                step=name,
                error=str(e),
            )
            raise
        record.status = StepStatus.COMPLETED
        record.completed_at = datetime.now()
        logger.info(
            f"Step {name} of {log.operation.value} completed",
            operation=log.operation.value,
            step=name,
            duration=record.duration,
        )
    return context


class Orchestrator:
    """Composes resolver, staging, exporter, transfer and restore steps."""

    def __init__(
        self,
        xo: XOClient,
        resolver: SelectorResolver,
        staging: StagingArea,
        exporter: VMExporter,
        transfer: TransferEngine,
        validator: RestoreValidator,
    ) -> None:
        self.xo = xo
        self.resolver = resolver
        self.staging = staging
        self.exporter = exporter
        self.transfer = transfer
        self.validator = validator

    def steps_for(self, operation: Operation) -> List[Tuple[str, Step]]:
        return [(name, getattr(self, f"_step_{name}")) for name in SEQUENCES[operation]]

    async def run(self, operation: Operation, selector: Optional[Selector]) -> WorkflowLog:
        """
        Run ``operation`` for ``selector``.

        Every line logged during the run carries the operation and, once
        resolved, the identity.

        Returns:
            WorkflowLog: Log of the completed run

        Raises:
            VMArchiveError: The error of the first failing step
        """
        log = WorkflowLog(operation=operation)
        context = WorkflowContext(operation=operation, selector=selector)

        with logger.bound(operation=operation.value):
            logger.info(f"Starting {operation.value}", selector=repr(selector))
            try:
                await self._prepare(context)
            except Exception as e:
                logger.error(f"{operation.value} could not start", error=str(e))
                self._finish(log, e)
                raise

            log.identity = context.identity.key if context.identity else None
            if log.identity:
                logger.bind(identity=log.identity)
            try:
                await run_steps(log, context, self.steps_for(operation))
            except Exception as e:
                self._finish(log, e)
                raise

            self._finish(log)
            logger.info(
                f"Completed {operation.value}",
                steps=[step.name for step in log.steps],
                duration=(log.completed_at - log.started_at).total_seconds(),
            )
        return log

    async def _prepare(self, context: WorkflowContext) -> None:
        self._check_selector(context.operation, context.selector)
        if requires_control_plane(context.operation, context.selector):
            await self.xo.session.init()
        await self._resolve(context)

    @staticmethod
    def _finish(log: WorkflowLog, error: Optional[Exception] = None) -> None:
        log.success = error is None
        log.error = str(error) if error else None
        log.completed_at = datetime.now()

    def _check_selector(self, operation: Operation, selector: Optional[Selector]) -> None:
        accepted = ACCEPTED_SELECTORS[operation]
        if selector is None or not isinstance(selector, accepted):
            options = {
                ById: "--vm-id",
                ByName: "--vm-name",
                ByArchiveName: "--archived-vm-name",
                BySrAndFile: "--sr-id with --xva-file",
            }
            expected = ", ".join(options[kind] for kind in accepted)
            raise SelectorError(f"{operation.value} requires one of: {expected}")

    async def _resolve(self, context: WorkflowContext) -> None:
        resolved = await self.resolver.resolve(context.selector)
        if isinstance(resolved, ExportRecord):
            context.record = resolved
            return
        context.identity = resolved
        context.directory = self.staging.path_for(resolved.key)

    async def _step_export_image(self, context: WorkflowContext) -> None:
        context.image_path = await self.exporter.export_image(context.identity.vm_id)

    async def _step_export_metadata(self, context: WorkflowContext) -> None:
        context.sr_id, context.metadata_path = await self.exporter.export_metadata(
            context.identity.vm_id
        )

    @staticmethod
    def _checked(record: ExportRecord) -> ExportRecord:
        SecurityValidator.validate_object_id(record.sr_id, "sr")
        if not record.image_path.is_file():
            raise ValidationError(f"image {record.image_path} does not exist", "xva_file")
        return record

    async def _step_restore_proof(self, context: WorkflowContext) -> None:
        record = self._checked(context.export_record())
        context.proof = await self.validator.validate(record.sr_id, record.image_path)

    async def _step_push(self, context: WorkflowContext) -> None:
        remote_name = await self.resolver.remote_name(context.identity)
        context.files_transferred = await self.transfer.push(remote_name, context.directory)

    async def _step_pull(self, context: WorkflowContext) -> None:
        remote_name = await self.resolver.remote_name(context.identity)
        context.files_transferred = await self.transfer.pull(remote_name, context.directory)

    @staticmethod
    def _owner(context: WorkflowContext) -> Optional[str]:
        return context.identity.vm_id if context.identity else None

    async def _step_validate_local_metadata(self, context: WorkflowContext) -> None:
        context.record = validate_local_metadata(context.directory, self._owner(context))

    async def _step_delete(self, context: WorkflowContext) -> None:
        vm_id = context.identity.vm_id
        logger.info(f"Deleting VM {vm_id}", vm_id=vm_id)
        try:
            await self.xo.delete_vm(vm_id, delete_disks=True)
        except ControlPlaneError as e:
            raise DeleteFailedError(e.message, vm_id) from e
        logger.info(f"Deleted VM {vm_id}", vm_id=vm_id)

    async def _step_import(self, context: WorkflowContext) -> None:
        if context.record is None:
            context.record = validate_local_metadata(context.directory, self._owner(context))
        record = self._checked(context.record)
        context.imported_vm_id = await self.validator.import_image(record.sr_id, record.image_path)

    async def _step_clean(self, context: WorkflowContext) -> None:
        self.staging.clean(context.directory)
