"""
RuleBench Error Taxonomy

Per-record conditions (MalformedRecord, UnsupportedRecordKind) are recovered
by the harness and folded into the verdict. Run setup errors (RunSetupError
and its subclasses) abort a validation run before a verdict exists, so a
caller can tell "the rule did not detect the attack" apart from
"the validation could not run".
"""
from typing import Optional


class RuleBenchError(Exception):
    """Base class for every error raised by rulebench."""


class MalformedRecord(RuleBenchError):
    """A raw record cannot be decoded or lacks a field required for normalization."""

    def __init__(self, reason: str, record_index: Optional[int] = None,
                 field: Optional[str] = None) -> None:
        self.reason = reason
        self.record_index = record_index
        self.field = field
        location = f"record #{record_index}" if record_index is not None else "record"
        super().__init__(f"Malformed {location}: {reason}")


class UnsupportedRecordKind(RuleBenchError):
    """A well-formed record that is not a process-creation event (normal skip)."""

    def __init__(self, record_index: Optional[int] = None) -> None:
        self.record_index = record_index
        super().__init__(f"Record #{record_index} is not a process-creation event")


class RunSetupError(RuleBenchError):
    """A validation run could not start or produced nothing to judge."""


class InvalidIndicatorDefinition(RunSetupError):
    """An indicator definition is structurally invalid. Fatal for the run."""

    def __init__(self, reason: str, label: Optional[str] = None) -> None:
        self.reason = reason
        self.label = label
        prefix = f"Indicator '{label}': " if label else "Indicator set: "
        super().__init__(prefix + reason)


class EmptyDatasetError(RunSetupError):
    """Zero process events were available to score."""

    def __init__(self, total_records: int = 0, skipped: int = 0, malformed: int = 0) -> None:
        self.total_records = total_records
        self.skipped = skipped
        self.malformed = malformed
        if total_records == 0:
            msg = "Dataset is empty: the event source produced no records"
        else:
            msg = (f"Dataset produced no process events: {total_records} records read, "
                   f"{skipped} skipped (unsupported kind), {malformed} malformed")
        super().__init__(msg)
