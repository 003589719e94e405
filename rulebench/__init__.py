"""
RuleBench - offline validation of detection indicators against replayed telemetry.
"""
from rulebench.core.exceptions import (
    EmptyDatasetError,
    InvalidIndicatorDefinition,
    MalformedRecord,
    RuleBenchError,
    RunSetupError,
    UnsupportedRecordKind,
)
from rulebench.core.raw_event import RawEvent
from rulebench.core.schemas import (
    UNKNOWN_PROCESS_ID,
    ProcessEvent,
    RiskScore,
    ThreatEvent,
    ValidationScope,
    ValidationVerdict,
)
from rulebench.modules.event_source import EventSource
from rulebench.modules.harness import ValidationHarness, validate
from rulebench.modules.indicators import Indicator, load_indicators
from rulebench.modules.schema_bridge import SchemaBridge, normalize
from rulebench.modules.scoring_engine import ScoringEngine, score

__version__ = "1.0.0"

__all__ = [
    "EmptyDatasetError", "InvalidIndicatorDefinition", "MalformedRecord", "RuleBenchError",
    "RunSetupError", "UnsupportedRecordKind",
    "RawEvent", "UNKNOWN_PROCESS_ID", "ProcessEvent", "RiskScore", "ThreatEvent",
    "ValidationScope", "ValidationVerdict",
    "EventSource", "SchemaBridge", "normalize",
    "Indicator", "load_indicators", "ScoringEngine", "score",
    "ValidationHarness", "validate",
]
