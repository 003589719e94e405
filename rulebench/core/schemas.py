"""
RuleBench Data Contracts
Defines the strict structure of the canonical process event and of every
result object shared across modules. All models are immutable; the wire
names are the camelCase canonical schema names.
"""
import re
from datetime import datetime, timezone
from typing import Any, Optional, Tuple

from pydantic import BaseModel, ConfigDict, computed_field, field_validator, model_validator
from pydantic.alias_generators import to_camel

UNKNOWN_PROCESS_ID = -1

_PATH_SEPARATORS = re.compile(r"[\\/]")

# (name field, path field) pairs where the name is derived from the path
_DERIVED_PAIRS = (
    ("file_name", "folder_path"),
    ("initiating_process_file_name", "initiating_process_folder_path"),
)


def basename(path: str) -> str:
    """Last path segment, split on either Windows or POSIX separators. Case preserved."""
    return _PATH_SEPARATORS.split(path)[-1]


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CanonicalModel(BaseModel):
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class ProcessEvent(CanonicalModel):
    """Normalized process-creation event. Parent fields use explicit unknown markers."""
    timestamp: datetime
    device_name: str
    process_id: int
    file_name: str = ""
    folder_path: str = ""
    command_line: str = ""
    initiating_process_file_name: str = ""
    initiating_process_folder_path: str = ""
    initiating_process_command_line: str = ""
    initiating_process_id: int = UNKNOWN_PROCESS_ID

    @model_validator(mode="before")
    @classmethod
    def _derive_file_names(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for name_field, path_field in _DERIVED_PAIRS:
            name_given = name_field in data or to_camel(name_field) in data
            path = data.get(path_field, data.get(to_camel(path_field)))
            if not name_given and isinstance(path, str) and path:
                data[name_field] = basename(path)
        return data

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return to_utc(value)

    @model_validator(mode="after")
    def _check_derivation(self) -> "ProcessEvent":
        for name_field, path_field in _DERIVED_PAIRS:
            path = getattr(self, path_field)
            if path and getattr(self, name_field) != basename(path):
                raise ValueError(
                    f"{to_camel(name_field)} must be the last segment of {to_camel(path_field)}")
        return self

    @property
    def has_parent(self) -> bool:
        return self.initiating_process_id != UNKNOWN_PROCESS_ID or bool(self.initiating_process_folder_path)

    def summary(self) -> str:
        parent = self.initiating_process_file_name or "<unknown>"
        return (f"{self.timestamp.isoformat()} {self.device_name} "
                f"{parent} -> {self.file_name} (PID {self.process_id}) {self.command_line}").rstrip()


# Canonical camelCase field name -> python attribute
CANONICAL_FIELDS = {to_camel(name): name for name in ProcessEvent.model_fields}


class RiskScore(CanonicalModel):
    score: int = 0
    matched_indicators: Tuple[str, ...] = ()


class ThreatEvent(CanonicalModel):
    """A scored event retained in the verdict (threshold crossing or false positive)."""
    record_index: int
    event: ProcessEvent
    score: int
    matched_indicators: Tuple[str, ...] = ()
    in_scope: bool = True

    def summary(self) -> str:
        labels = ", ".join(self.matched_indicators) or "-"
        return f"#{self.record_index} score={self.score} [{labels}] {self.event.summary()}"


class MalformedRecordInfo(CanonicalModel):
    record_index: int
    reason: str


class ConditionResult(CanonicalModel):
    name: str
    passed: bool
    detail: str = ""


class ValidationScope(CanonicalModel):
    """Expected attack scope. An empty device list accepts any device."""
    devices: Tuple[str, ...] = ()
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @field_validator("start", "end")
    @classmethod
    def _utc_bounds(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_window(self) -> "ValidationScope":
        if self.start and self.end and self.start > self.end:
            raise ValueError("scope start must not be after scope end")
        return self

    def contains(self, event: ProcessEvent) -> bool:
        if self.devices and event.device_name.lower() not in {d.lower() for d in self.devices}:
            return False
        if self.start and event.timestamp < self.start:
            return False
        if self.end and event.timestamp > self.end:
            return False
        return True


class ValidationVerdict(CanonicalModel):
    """Aggregate result of one validation run. Read-only once built."""
    critical_threshold: int
    expected_labels: Tuple[str, ...] = ()
    total_records: int = 0
    normalized_events: int = 0
    skipped_records: int = 0
    malformed_records: int = 0
    malformed_details: Tuple[MalformedRecordInfo, ...] = ()
    matching_events: int = 0
    max_score: int = 0
    median_score: float = 0.0
    top_event: Optional[ThreatEvent] = None
    threat_events: Tuple[ThreatEvent, ...] = ()
    false_positives: Tuple[ThreatEvent, ...] = ()
    conditions: Tuple[ConditionResult, ...] = ()
    passed: bool = False

    @computed_field(alias="falsePositiveCount")
    @property
    def false_positive_count(self) -> int:
        return len(self.false_positives)

    @computed_field(alias="failedConditions")
    @property
    def failed_conditions(self) -> Tuple[str, ...]:
        return tuple(c.name for c in self.conditions if not c.passed)

    def condition(self, name: str) -> Optional[ConditionResult]:
        for cond in self.conditions:
            if cond.name == name:
                return cond
        return None

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)

    def to_json(self, indent: Optional[int] = 2) -> str:
        return self.model_dump_json(by_alias=True, indent=indent)
