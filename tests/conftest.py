import os
import sys
import tempfile

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
# Keep the audit log out of the working tree during tests
os.environ.setdefault("RULEBENCH_LOG_FILE", os.path.join(tempfile.gettempdir(), "rulebench_tests.log"))

from rulebench.modules.indicators import Indicator  # noqa: E402

SAMPLE_INDICATORS = os.path.abspath(
    os.path.join(os.path.dirname(__file__), '..', 'indicators', 'process_creation.yaml'))


def _sysmon_record(**overrides):
    record = {
        "Channel": "Microsoft-Windows-Sysmon/Operational",
        "SourceName": "Microsoft-Windows-Sysmon",
        "EventID": 1,
        "Hostname": "WORKSTATION5.theshire.local",
        "UtcTime": "2020-09-21 19:03:47.123",
        "@timestamp": "2020-09-21T19:03:48.390Z",
        "Image": "C:\\Windows\\System32\\wbem\\wmiprvse.exe",
        "CommandLine": "C:\\Windows\\system32\\wbem\\wmiprvse.exe -secured -Embedding",
        "ProcessId": 4120,
        "ParentImage": "C:\\Windows\\System32\\WindowsPowerShell\\v1.0\\powershell.exe",
        "ParentCommandLine": "powershell.exe -nop -w hidden",
        "ParentProcessId": 3044,
    }
    record.update(overrides)
    return {k: v for k, v in record.items() if v is not None}


@pytest.fixture
def make_sysmon():
    """Factory for Sysmon Event ID 1 records; pass Field=None to drop a field."""
    return _sysmon_record


@pytest.fixture
def wmi_indicator():
    return Indicator(
        label="WMI Spawning PowerShell",
        weight=60,
        predicate='fileName contains "wmiprvse" AND initiatingProcessFileName contains "powershell"',
    )


@pytest.fixture
def sample_indicators_path():
    return SAMPLE_INDICATORS
