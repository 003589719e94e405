"""
RuleBench Smoke Tests
Basic import and schema validation tests for core functionality.
"""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from rulebench.core.schemas import (UNKNOWN_PROCESS_ID, ConditionResult, MalformedRecordInfo, ProcessEvent,
                                    RiskScore, ThreatEvent, ValidationScope, ValidationVerdict)


def test_imports() -> None:
    """Verify the public API can be imported without errors."""
    import rulebench

    for name in rulebench.__all__:
        assert hasattr(rulebench, name), f"rulebench.{name} missing"


def test_schema_validation() -> None:
    """Verify the canonical schema derives names and fills unknown markers."""
    event = ProcessEvent(
        timestamp=datetime(2020, 9, 21, 19, 3, 47),
        device_name="WORKSTATION5",
        folder_path="C:\\Windows\\System32\\cmd.exe",
        process_id=1234,
    )
    assert event.file_name == "cmd.exe"
    assert event.timestamp.tzinfo == timezone.utc
    assert event.initiating_process_id == UNKNOWN_PROCESS_ID
    assert event.initiating_process_file_name == ""
    assert event.has_parent is False


def test_schema_accepts_canonical_names() -> None:
    event = ProcessEvent(**{
        "timestamp": "2020-09-21T19:03:47Z",
        "deviceName": "HOST1",
        "folderPath": "/usr/bin/bash",
        "processId": 7,
        "initiatingProcessFolderPath": "/usr/sbin/sshd",
        "initiatingProcessId": 1,
    })
    assert event.file_name == "bash"
    assert event.initiating_process_file_name == "sshd"
    dumped = event.model_dump(by_alias=True)
    assert dumped["initiatingProcessFileName"] == "sshd"


def test_schema_rejects_inconsistent_file_name() -> None:
    with pytest.raises(ValidationError):
        ProcessEvent(
            timestamp=datetime(2020, 1, 1, tzinfo=timezone.utc),
            device_name="HOST1",
            folder_path="C:\\Windows\\System32\\cmd.exe",
            file_name="powershell.exe",
            process_id=1,
        )


def test_models_are_immutable() -> None:
    risk = RiskScore(score=10, matched_indicators=("a",))
    with pytest.raises(ValidationError):
        risk.score = 20

    event = ProcessEvent(timestamp=datetime(2021, 1, 1, tzinfo=timezone.utc), device_name="HOST1",
                         folder_path="C:\\Windows\\cmd.exe", process_id=1)
    threat = ThreatEvent(record_index=0, event=event, score=60, matched_indicators=("a",))
    verdict = ValidationVerdict(
        critical_threshold=50,
        malformed_details=[MalformedRecordInfo(record_index=1, reason="bad")],
        threat_events=[threat],
        false_positives=[threat],
        conditions=[ConditionResult(name="results_returned", passed=True)],
        passed=True,
    )
    for name in ("malformed_details", "threat_events", "false_positives", "conditions"):
        value = getattr(verdict, name)
        assert isinstance(value, tuple), name
        assert not hasattr(value, "append")
    with pytest.raises(ValidationError):
        verdict.passed = False
    assert verdict.failed_conditions == ()


def test_scope_rejects_inverted_window() -> None:
    with pytest.raises(ValidationError):
        ValidationScope(start=datetime(2021, 1, 2, tzinfo=timezone.utc),
                        end=datetime(2021, 1, 1, tzinfo=timezone.utc))
