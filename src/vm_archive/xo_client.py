"""
Xen Orchestra client for VM archive operations.

This module drives the control plane through ``xo-cli``. Every call is a
blocking subprocess from the caller's point of view; no timeout is imposed.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import ControlPlaneError, SessionError
from .logging import logger
from .security import CommandBuilder


class XOSession:
    """Process-wide xo-cli session state.

    ``init`` renews or registers once at the top of a run. ``revalidate``
    is called before calls that do not go through the shared renewal path
    so a token that expires mid-run is renewed instead of failing the call.
    """

    def __init__(self, client: "XOClient") -> None:
        self.client = client
        self.initialized = False

    async def init(self) -> None:
        if not await self.client.is_connected():
            await self.client.register()
        self.initialized = True

    async def revalidate(self) -> None:
        if not self.initialized:
            await self.init()
            return
        if not await self.client.is_connected():
            logger.warning(
                "Control-plane session expired, renewing", host=self.client.host
            )
            await self.client.register()


class XOClient:
    """Thin async wrapper around xo-cli."""

    def __init__(
        self,
        host: Optional[str],
        user: Optional[str],
        password: Optional[str] = None,
        session_ttl: str = "1d",
        xo_cli: str = "xo-cli",
    ) -> None:
        self.host = host
        self.user = user
        self.password = password
        self.session_ttl = session_ttl
        self.xo_cli = xo_cli
        self.session = XOSession(self)

    async def execute(self, argv: List[str], redacted: Optional[List[str]] = None) -> Tuple[str, str, int]:
        """Run one xo-cli command and return (stdout, stderr, exit_code)."""
        logger.debug("Running xo-cli", command=" ".join(redacted or argv))
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ControlPlaneError(f"Cannot run {argv[0]}: {e}", argv[1])
        stdout, stderr = await process.communicate()
        return (
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            process.returncode,
        )

    async def register(self) -> None:
        """Register a new session token against the configured host."""
        if not self.host or not self.user:
            raise SessionError("host and user must be configured", self.host or "")

        argv = [self.xo_cli, "--register", "--expiresIn", self.session_ttl, self.host, self.user]
        redacted = list(argv)
        if self.password:
            argv.append(self.password)
            redacted.append("********")

        try:
            _, stderr, exit_code = await self.execute(argv, redacted)
        except ControlPlaneError as e:
            raise SessionError(e.message, self.host)
        if exit_code != 0:
            logger.error(
                f"Registration against {self.host} failed",
                host=self.host,
                user=self.user,
                stderr=stderr.strip(),
            )
            raise SessionError(stderr.strip() or f"xo-cli exited with {exit_code}", self.host)

        logger.info(f"Registered control-plane session on {self.host}", host=self.host, ttl=self.session_ttl)

    async def is_connected(self) -> bool:
        try:
            _, _, exit_code = await self.execute([self.xo_cli, "--list-commands"])
        except ControlPlaneError:
            return False
        return exit_code == 0

    async def list_objects(self, **filters: Any) -> List[Dict[str, Any]]:
        """Return the records matching ``filters`` in control-plane order."""
        argv = CommandBuilder.build_list_objects_command(self.xo_cli, **filters)
        stdout, stderr, exit_code = await self.execute(argv)
        if exit_code != 0:
            raise ControlPlaneError(stderr.strip() or f"exit code {exit_code}", "list-objects")
        try:
            records = json.loads(stdout or "[]")
        except json.JSONDecodeError as e:
            raise ControlPlaneError(f"Unparseable output: {e}", "list-objects")
        if not isinstance(records, list):
            raise ControlPlaneError("Expected a JSON array", "list-objects")
        return records

    async def export_vm(self, vm_id: str, dest_path: str, compress: bool = True) -> None:
        await self.session.revalidate()
        argv = CommandBuilder.build_xo_command(
            self.xo_cli, "vm.export", vm=vm_id, compress=compress, at=dest_path
        )
        _, stderr, exit_code = await self.execute(argv)
        if exit_code != 0:
            raise ControlPlaneError(stderr.strip() or f"exit code {exit_code}", "vm.export")

    async def import_vm(self, sr_id: str, src_path: str) -> str:
        """Import an image into ``sr_id`` and return the new VM id."""
        await self.session.revalidate()
        argv = CommandBuilder.build_xo_command(self.xo_cli, "vm.import", sr=sr_id, at=src_path)
        stdout, stderr, exit_code = await self.execute(argv)
        if exit_code != 0:
            raise ControlPlaneError(stderr.strip() or f"exit code {exit_code}", "vm.import")

        output = stdout.strip()
        try:
            parsed = json.loads(output)
        except json.JSONDecodeError:
            parsed = output
        if not isinstance(parsed, str) or not parsed:
            raise ControlPlaneError(f"No VM id in output: {output!r}", "vm.import")
        return parsed

    async def delete_vm(self, vm_id: str, delete_disks: bool = True) -> None:
        await self.session.revalidate()
        argv = CommandBuilder.build_xo_command(
            self.xo_cli, "vm.delete", id=vm_id, deleteDisks=delete_disks
        )
        _, stderr, exit_code = await self.execute(argv)
        if exit_code != 0:
            raise ControlPlaneError(stderr.strip() or f"exit code {exit_code}", "vm.delete")
