"""
Main client class for VM archive operations.

This module wires the control-plane client, the object store and the
staging area into an orchestrator and exposes one entry point per command.
"""

from typing import List, Optional

from .config import AppConfig
from .exporter import VMExporter
from .models import Operation, Selector, WorkflowLog
from .object_store import S3ObjectStore
from .restore import RestoreValidator
from .selector import SelectorResolver
from .staging import StagingArea
from .transfer import TransferEngine
from .workflow import Orchestrator, requires_bucket, requires_control_plane
from .xo_client import XOClient


class VMArchiveClient:
    """
    Main client for VM archive operations.

    Args:
        config (Optional[AppConfig]): Loaded configuration
        xo (Optional[XOClient]): Control-plane client, built from config if omitted
        store (Optional[S3ObjectStore]): Object store, built from config if omitted

    Raises:
        ConfigurationError: When an operation needs a setting that is unset
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        xo: Optional[XOClient] = None,
        store: Optional[S3ObjectStore] = None,
    ) -> None:
        self.config = config or AppConfig()
        self.xo = xo or XOClient(
            host=self.config.xo_host,
            user=self.config.xo_user,
            password=self.config.xo_password,
            session_ttl=self.config.session_ttl,
            xo_cli=self.config.xo_cli,
        )
        if store is None and self.config.s3_bucket:
            store = S3ObjectStore(
                bucket=self.config.s3_bucket,
                endpoint_url=self.config.s3_endpoint_url,
                region=self.config.s3_region,
                restore_days=self.config.restore_days,
            )
        self.store = store

        self.staging = StagingArea(self.config.local_root)
        self.orchestrator = Orchestrator(
            xo=self.xo,
            resolver=SelectorResolver(self.xo),
            staging=self.staging,
            exporter=VMExporter(self.xo, self.staging),
            transfer=TransferEngine(self.store, self.staging),
            validator=RestoreValidator(self.xo),
        )

    def check_requirements(self, operation: Operation, selector: Optional[Selector]) -> None:
        """Raise ConfigurationError when ``operation`` needs unset settings."""
        required = []
        if requires_control_plane(operation, selector):
            required.extend(["xo_host", "xo_user"])
        if requires_bucket(operation) and self.store is None:
            required.append("s3_bucket")
        self.config.require(*required)

    async def run(self, operation: Operation, selector: Optional[Selector]) -> WorkflowLog:
        """
        Run one command.

        Args:
            operation: Command to run
            selector: Active selector of the invocation

        Returns:
            WorkflowLog: Log of the completed run
        """
        self.check_requirements(operation, selector)
        return await self.orchestrator.run(operation, selector)

    async def list_archives(self) -> List[str]:
        """List the archive names present in the bucket."""
        if self.store is None:
            self.config.require("s3_bucket")
        return sorted(await self.store.list_prefixes())
