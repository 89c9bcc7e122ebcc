"""Unit tests for image and metadata export."""

import json

import pytest

from conftest import VM_ID, VM_NAME, SR_ID, OTHER_SR_ID
from vm_archive.exceptions import (
    ExportFailedError,
    MetadataExportError,
    StorageLocationUnresolvedError,
)
from vm_archive.exporter import VMExporter
from vm_archive.staging import StagingArea


@pytest.fixture
def staging(tmp_path):
    return StagingArea(tmp_path / "staging")


@pytest.fixture
def exporter(xo, staging):
    return VMExporter(xo, staging)


class TestExportImage:
    @pytest.mark.asyncio
    async def test_export_writes_compressed_image(self, xo, exporter, staging):
        image_path = await exporter.export_image(VM_ID)
        assert image_path == staging.path_for(VM_ID) / f"{VM_ID}.xva"
        assert image_path.read_bytes() == f"xva:{VM_ID}".encode()
        assert ("export", VM_ID, True) in xo.calls

    @pytest.mark.asyncio
    async def test_stale_image_is_replaced(self, exporter, staging):
        directory = staging.ensure(staging.path_for(VM_ID))
        (directory / f"{VM_ID}.xva").write_bytes(b"stale")
        image_path = await exporter.export_image(VM_ID)
        assert image_path.read_bytes() != b"stale"

    @pytest.mark.asyncio
    async def test_failed_export_removes_partial_file(self, xo, exporter, staging):
        xo.fail["vm.export"] = "disk busy"
        with pytest.raises(ExportFailedError, match="disk busy"):
            await exporter.export_image(VM_ID)
        assert not (staging.path_for(VM_ID) / f"{VM_ID}.xva").exists()

    @pytest.mark.asyncio
    async def test_export_revalidates_session(self, xo, exporter):
        xo.session.initialized = True
        xo.connected = False
        await exporter.export_image(VM_ID)
        assert xo.call_names()[:2] == ["register", "export"]


class TestExportMetadata:
    @pytest.mark.asyncio
    async def test_metadata_and_sr_are_written(self, exporter, staging):
        sr_id, metadata_path = await exporter.export_metadata(VM_ID)
        directory = staging.path_for(VM_ID)
        assert sr_id == SR_ID
        assert (directory / "SR-ID.txt").read_text().strip() == SR_ID
        document = json.loads(metadata_path.read_text())
        assert document["id"] == VM_ID
        assert document["name_label"] == VM_NAME

    @pytest.mark.asyncio
    async def test_first_storage_repository_wins(self, xo, staging):
        vm_id = "3c2b1a09-8f7e-4d6c-9b5a-4f3e2d1c0b9a"
        xo.add_vm(vm_id, "split-disks", [OTHER_SR_ID, SR_ID])
        exporter = VMExporter(xo, staging)
        first, _ = await exporter.export_metadata(vm_id)
        second, _ = await exporter.export_metadata(vm_id)
        assert first == second == OTHER_SR_ID

    @pytest.mark.asyncio
    async def test_cd_drive_without_disk_is_skipped(self, xo, staging):
        vm_id = "4d3c2b1a-0f9e-4d8c-8b7a-6f5e4d3c2b1a"
        xo.add_vm(vm_id, "with-cd")
        xo.objects.append({"type": "VBD", "id": "cd-vbd", "VM": vm_id, "VDI": None, "is_cd_drive": True})
        xo.objects.append({"type": "VBD", "id": "disk-vbd", "VM": vm_id, "VDI": "disk-vdi"})
        xo.objects.append({"type": "VDI", "id": "disk-vdi", "$SR": SR_ID})
        sr_id, _ = await VMExporter(xo, staging).export_metadata(vm_id)
        assert sr_id == SR_ID

    @pytest.mark.asyncio
    async def test_no_storage_repository_cleans_artifacts(self, xo, staging):
        vm_id = "5e4d3c2b-1a0f-4e9d-8c7b-6a5f4e3d2c1b"
        xo.add_vm(vm_id, "diskless")
        with pytest.raises(StorageLocationUnresolvedError):
            await VMExporter(xo, staging).export_metadata(vm_id)
        directory = staging.path_for(vm_id)
        assert not (directory / "VM.json").exists()
        assert not (directory / "SR-ID.txt").exists()

    @pytest.mark.asyncio
    async def test_malformed_storage_repository_is_ignored(self, xo, staging):
        vm_id = "6f5e4d3c-2b1a-4f0e-9d8c-7b6a5f4e3d2c"
        xo.add_vm(vm_id, "bad-sr", ["   "])
        with pytest.raises(StorageLocationUnresolvedError):
            await VMExporter(xo, staging).export_metadata(vm_id)

    @pytest.mark.asyncio
    async def test_unknown_vm_is_a_metadata_error(self, exporter, staging):
        with pytest.raises(MetadataExportError, match="expected one VM record"):
            await exporter.export_metadata("00000000-0000-4000-8000-000000000000")
        assert not (staging.path_for("00000000-0000-4000-8000-000000000000") / "VM.json").exists()

    @pytest.mark.asyncio
    async def test_control_plane_failure_is_a_metadata_error(self, xo, exporter, staging):
        xo.fail["list-objects"] = "unreachable"
        with pytest.raises(MetadataExportError, match="unreachable"):
            await exporter.export_metadata(VM_ID)
        assert not (staging.path_for(VM_ID) / "VM.json").exists()
