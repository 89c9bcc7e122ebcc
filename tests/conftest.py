"""Test configuration and fixtures for vm-archive."""

import shutil
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from vm_archive.config import AppConfig  # noqa: E402
from vm_archive.exceptions import ControlPlaneError, TransferError  # noqa: E402
from vm_archive.object_store import S3ObjectStore  # noqa: E402
from vm_archive.xo_client import XOClient  # noqa: E402


VM_ID = "0f3c2a9e-1b7d-4e5a-9c1f-2d8e6b4a7c10"
VM_NAME = "foo-bar-01"
SR_ID = "5e1b9a4c-7d2f-4c8e-b6a1-93f0d2e8c4b7"
OTHER_SR_ID = "a7c4e2d9-3b1f-4f6a-8e5d-0c9b2a1f7e63"
VDI_ID = "c2d8e4f6-9a1b-4c3d-8e7f-6a5b4c3d2e1f"


class FakeXOClient(XOClient):
    """Control plane kept in memory; every call is recorded in ``calls``."""

    def __init__(self) -> None:
        super().__init__(host="https://xo.example.com", user="admin")
        self.objects: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []
        self.connected = True
        self.fail: Dict[str, str] = {}
        self.imported_vm_id = "9d8c7b6a-5e4f-4a3b-8c2d-1e0f9a8b7c6d"

    def add_vm(self, vm_id: str, name: str, sr_ids: Optional[List[str]] = None) -> None:
        self.objects.append({"type": "VM", "id": vm_id, "name_label": name, "power_state": "Halted"})
        for index, sr_id in enumerate(sr_ids or []):
            vdi_id = f"{vm_id[:8]}-vdi-{index}"
            self.objects.append({"type": "VBD", "id": f"{vm_id[:8]}-vbd-{index}", "VM": vm_id, "VDI": vdi_id})
            self.objects.append({"type": "VDI", "id": vdi_id, "$SR": sr_id})

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail:
            raise ControlPlaneError(self.fail[operation], operation)

    async def register(self) -> None:
        self.calls.append(("register",))
        self.connected = True

    async def is_connected(self) -> bool:
        return self.connected

    async def list_objects(self, **filters: Any) -> List[Dict[str, Any]]:
        self.calls.append(("list_objects", filters))
        self._maybe_fail("list-objects")
        return [
            dict(record)
            for record in self.objects
            if all(str(record.get(key)) == str(value) for key, value in filters.items())
        ]

    async def export_vm(self, vm_id: str, dest_path: str, compress: bool = True) -> None:
        await self.session.revalidate()
        self.calls.append(("export", vm_id, compress))
        Path(dest_path).write_bytes(b"partial")
        self._maybe_fail("vm.export")
        Path(dest_path).write_bytes(f"xva:{vm_id}".encode())

    async def import_vm(self, sr_id: str, src_path: str) -> str:
        await self.session.revalidate()
        self.calls.append(("import", sr_id, Path(src_path).name))
        self._maybe_fail("vm.import")
        return self.imported_vm_id

    async def delete_vm(self, vm_id: str, delete_disks: bool = True) -> None:
        await self.session.revalidate()
        self.calls.append(("delete", vm_id, delete_disks))
        self._maybe_fail(f"vm.delete:{vm_id}")
        self._maybe_fail("vm.delete")

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls if call[0] != "list_objects"]


class FakeObjectStore(S3ObjectStore):
    """Bucket backed by a local directory."""

    def __init__(self, remote_root: Path) -> None:
        super().__init__(bucket="test-bucket", client=object())
        self.remote_root = remote_root
        self.calls: List[tuple] = []
        self.fail_upload = False
        self.fail_download = False

    async def upload_tree(self, local_dir: Path, prefix: str) -> int:
        self.calls.append(("upload", prefix))
        if self.fail_upload:
            raise TransferError("simulated upload failure", str(local_dir), self.url(prefix))
        target = self.remote_root / prefix
        target.mkdir(parents=True, exist_ok=True)
        files = [p for p in Path(local_dir).iterdir() if p.is_file()]
        for path in files:
            shutil.copy2(path, target / path.name)
        return len(files)

    async def download_tree(self, prefix: str, local_dir: Path, force_retrieval: bool = True) -> int:
        self.calls.append(("download", prefix, force_retrieval))
        if self.fail_download:
            Path(local_dir, "partial").write_bytes(b"x")
            raise TransferError("simulated download failure", self.url(prefix), str(local_dir))
        source = self.remote_root / prefix
        if not source.is_dir():
            return 0
        count = 0
        for path in source.iterdir():
            shutil.copy2(path, Path(local_dir) / path.name)
            count += 1
        return count

    async def list_prefixes(self) -> List[str]:
        if not self.remote_root.exists():
            return []
        return [p.name for p in self.remote_root.iterdir() if p.is_dir()]


@pytest.fixture
def xo():
    """Control plane with one VM whose disk lives on SR_ID."""
    client = FakeXOClient()
    client.add_vm(VM_ID, VM_NAME, [SR_ID])
    return client


@pytest.fixture
def store(tmp_path):
    return FakeObjectStore(tmp_path / "bucket")


@pytest.fixture
def app_config(tmp_path):
    return AppConfig(
        xo_host="https://xo.example.com",
        xo_user="admin",
        s3_bucket="test-bucket",
        local_root=str(tmp_path / "staging"),
    )


@pytest.fixture
def staged_archive(tmp_path):
    """Write a valid staging directory for VM_NAME and return it."""

    def make(root: Path = tmp_path / "staging", key: str = VM_NAME, vm_id: str = VM_ID) -> Path:
        directory = root / key
        directory.mkdir(parents=True, exist_ok=True)
        (directory / "SR-ID.txt").write_text(f"{SR_ID}\n")
        (directory / "VM.json").write_text(f'{{"id": "{vm_id}", "name_label": "{VM_NAME}"}}')
        (directory / f"{vm_id}.xva").write_bytes(b"xva-image")
        return directory

    return make
