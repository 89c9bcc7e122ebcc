"""Unit tests for data models."""

import json
from datetime import datetime, timedelta

from vm_archive.models import (
    ById, ByName, ByArchiveName, BySrAndFile, Identity, Operation,
    StepRecord, StepStatus, WorkflowLog, build_selector,
)


class TestBuildSelector:
    def test_vm_id_takes_precedence_over_name(self):
        assert build_selector(vm_id="abc", vm_name="web") == ById("abc")

    def test_name(self):
        assert build_selector(vm_name="web") == ByName("web")

    def test_archive_name(self):
        assert build_selector(archived_vm_name="web-old") == ByArchiveName("web-old")

    def test_sr_and_file_need_both(self):
        assert build_selector(sr_id="sr") is None
        assert build_selector(xva_file="/tmp/a.xva") is None
        assert build_selector(sr_id="sr", xva_file="/tmp/a.xva") == BySrAndFile("sr", "/tmp/a.xva")

    def test_nothing_given(self):
        assert build_selector() is None


class TestIdentity:
    def test_vm_identity(self):
        identity = Identity(key="abc", vm_id="abc")
        assert not identity.is_archive
        assert identity.remote_name is None

    def test_archive_identity(self):
        identity = Identity(key="web-old", archive_name="web-old")
        assert identity.is_archive
        assert identity.remote_name == "web-old"

    def test_named_vm_identity(self):
        assert Identity(key="abc", vm_id="abc", vm_name="web").remote_name == "web"


class TestWorkflowLog:
    def test_operation_values_match_commands(self):
        assert Operation("temporarily-restores-xva") is Operation.TEMPORARILY_RESTORE_XVA
        assert Operation("get-metadata-from-local-files") is Operation.GET_METADATA_FROM_LOCAL_FILES
        assert len(Operation) == 10

    def test_step_duration(self):
        start = datetime(2024, 1, 1, 12, 0, 0)
        step = StepRecord(name="push", started_at=start, completed_at=start + timedelta(seconds=3))
        assert step.duration == 3.0
        assert StepRecord(name="push").duration == 0.0

    def test_to_dict_is_json_serializable(self):
        log = WorkflowLog(operation=Operation.ARCHIVE, identity="abc")
        log.steps.append(StepRecord(name="export_image", status=StepStatus.COMPLETED))
        data = log.to_dict()
        assert data["operation"] == "archive"
        assert data["steps"][0]["status"] == "completed"
        json.dumps(data)
