# rulebench/modules/schema_bridge.py
"""
RuleBench - Schema Bridge
Normalizes collector-native records into the canonical ProcessEvent schema.

Each supported collector is described by a SourceProfile: how to recognise
its process-creation records and where each canonical attribute lives.
Records of any other kind are skipped; records of the right kind that lack
a required field are rejected as MalformedRecord.
"""
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional, Tuple

from pydantic import ValidationError

from rulebench.core.exceptions import MalformedRecord, UnsupportedRecordKind
from rulebench.core.raw_event import RawEvent, parse_int
from rulebench.core.schemas import UNKNOWN_PROCESS_ID, ProcessEvent, basename
from rulebench.utils.logger import Logger

_ISO_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[T ](\d{2}):(\d{2}):(\d{2})(?:[.,](\d+))?"
    r"\s*(Z|z|[+-]\d{2}:?\d{2})?$"
)
# Epoch values above this are milliseconds (year 5138 in seconds)
_EPOCH_MS_CUTOFF = 100_000_000_000


def parse_timestamp(value: Any, field: str = "timestamp",
                    record_index: Optional[int] = None) -> datetime:
    """Parse an ISO-8601 string or epoch number into an aware UTC datetime."""
    if isinstance(value, bool):
        raise MalformedRecord(f"unparseable timestamp in {field}: {value!r}",
                              record_index=record_index, field=field)
    if isinstance(value, (int, float)):
        seconds = value / 1000.0 if abs(value) > _EPOCH_MS_CUTOFF else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise MalformedRecord(f"timestamp out of range in {field}: {value!r}",
                                  record_index=record_index, field=field) from None
    if not isinstance(value, str):
        raise MalformedRecord(f"unparseable timestamp in {field}: {value!r}",
                              record_index=record_index, field=field)

    match = _ISO_RE.match(value.strip())
    if not match:
        raise MalformedRecord(f"unparseable timestamp in {field}: {value!r}",
                              record_index=record_index, field=field)
    year, month, day, hour, minute, second, fraction, offset = match.groups()
    micros = int((fraction or "0")[:6].ljust(6, "0"))
    tz = timezone.utc
    try:
        if offset and offset not in ("Z", "z"):
            sign = -1 if offset[0] == "-" else 1
            digits = offset[1:].replace(":", "")
            tz = timezone(sign * timedelta(hours=int(digits[:2]), minutes=int(digits[2:])))
        parsed = datetime(int(year), int(month), int(day), int(hour), int(minute),
                          int(second), micros, tzinfo=tz)
    except ValueError:
        raise MalformedRecord(f"unparseable timestamp in {field}: {value!r}",
                              record_index=record_index, field=field) from None
    return parsed.astimezone(timezone.utc)


class SourceProfile:
    """Field layout of one collector's process-creation records."""

    def __init__(self, name: str, matcher: Callable[[RawEvent], bool],
                 timestamp: Tuple[str, ...], device: Tuple[str, ...],
                 image: Tuple[str, ...], command_line: Tuple[str, ...],
                 process_id: Tuple[str, ...], parent_image: Tuple[str, ...],
                 parent_command_line: Tuple[str, ...], parent_process_id: Tuple[str, ...]) -> None:
        self.name = name
        self.matcher = matcher
        self.timestamp = timestamp
        self.device = device
        self.image = image
        self.command_line = command_line
        self.process_id = process_id
        self.parent_image = parent_image
        self.parent_command_line = parent_command_line
        self.parent_process_id = parent_process_id

    def matches(self, raw: RawEvent) -> bool:
        return self.matcher(raw)

    def __repr__(self) -> str:
        return f"SourceProfile({self.name})"


# --- Record kind detection ---

def _event_id(raw: RawEvent) -> Optional[int]:
    _, value = raw.first_present(("EventID", "EventId", "event_id", "winlog.event_id"))
    if value is None:
        return None
    try:
        return parse_int(value, field="EventID", record_index=raw.index)
    except MalformedRecord:
        return None


def _text(raw: RawEvent, paths: Tuple[str, ...]) -> str:
    _, value = raw.first_present(paths)
    return value if isinstance(value, str) else ""


def _is_defender_process(raw: RawEvent) -> bool:
    return _text(raw, ("ActionType",)) == "ProcessCreated" and raw.has("FolderPath")


def _is_sysmon_process(raw: RawEvent) -> bool:
    if _event_id(raw) != 1:
        return False
    origin = " ".join((
        _text(raw, ("Channel", "winlog.channel")),
        _text(raw, ("SourceName", "ProviderName", "Provider_Name", "winlog.provider_name")),
    ))
    return "sysmon" in origin.lower()


def _is_security_process(raw: RawEvent) -> bool:
    if _event_id(raw) != 4688:
        return False
    channel = _text(raw, ("Channel", "winlog.channel"))
    provider = _text(raw, ("SourceName", "ProviderName", "Provider_Name", "winlog.provider_name"))
    return channel.lower() == "security" or provider == "Microsoft-Windows-Security-Auditing"


def _winlog(*names: str) -> Tuple[str, ...]:
    """Flat names followed by their winlogbeat / EventData nested variants."""
    paths = list(names)
    for name in names:
        paths.append(f"winlog.event_data.{name}")
        paths.append(f"EventData.{name}")
    return tuple(paths)


DEFENDER_PROFILE = SourceProfile(
    name="defender",
    matcher=_is_defender_process,
    timestamp=("Timestamp", "TimeGenerated"),
    device=("DeviceName",),
    image=("FolderPath",),
    command_line=("ProcessCommandLine",),
    process_id=("ProcessId",),
    parent_image=("InitiatingProcessFolderPath",),
    parent_command_line=("InitiatingProcessCommandLine",),
    parent_process_id=("InitiatingProcessId",),
)

SYSMON_PROFILE = SourceProfile(
    name="sysmon",
    matcher=_is_sysmon_process,
    timestamp=_winlog("UtcTime") + ("@timestamp", "TimeCreated", "EventTime"),
    device=("Hostname", "Computer", "computer_name", "winlog.computer_name", "host.name"),
    image=_winlog("Image"),
    command_line=_winlog("CommandLine"),
    process_id=_winlog("ProcessId"),
    parent_image=_winlog("ParentImage"),
    parent_command_line=_winlog("ParentCommandLine"),
    parent_process_id=_winlog("ParentProcessId"),
)

SECURITY_PROFILE = SourceProfile(
    name="security-4688",
    matcher=_is_security_process,
    timestamp=("@timestamp", "TimeCreated", "EventTime", "TimeGenerated"),
    device=("Hostname", "Computer", "computer_name", "winlog.computer_name", "host.name"),
    image=_winlog("NewProcessName"),
    command_line=_winlog("CommandLine"),
    process_id=_winlog("NewProcessId"),
    parent_image=_winlog("ParentProcessName"),
    # 4688 never carries the parent's command line
    parent_command_line=(),
    parent_process_id=_winlog("ProcessId"),
)

DEFAULT_PROFILES = (DEFENDER_PROFILE, SYSMON_PROFILE, SECURITY_PROFILE)


class SchemaBridge:
    """
    Stateless normalizer. Pure per record apart from a warning log line
    for every malformed record.
    """

    def __init__(self, profiles: Tuple[SourceProfile, ...] = DEFAULT_PROFILES) -> None:
        self.profiles = profiles
        self.logger = Logger()

    def profile_for(self, raw: RawEvent) -> Optional[SourceProfile]:
        if raw.decode_error:
            return None
        for profile in self.profiles:
            if profile.matches(raw):
                return profile
        return None

    def normalize(self, raw: RawEvent) -> Optional[ProcessEvent]:
        """
        Convert one raw record.

        Returns None for records that are not process-creation events.
        Raises MalformedRecord when a relevant record cannot be normalized.
        """
        try:
            return self.normalize_strict(raw)
        except UnsupportedRecordKind:
            return None

    def normalize_strict(self, raw: RawEvent) -> ProcessEvent:
        """Like normalize(), but signals skipped records with UnsupportedRecordKind."""
        try:
            if raw.decode_error:
                raise MalformedRecord(raw.decode_error, record_index=raw.index)
            profile = self.profile_for(raw)
            if profile is None:
                raise UnsupportedRecordKind(record_index=raw.index)
            return self._convert(raw, profile)
        except MalformedRecord as e:
            self.logger.warning(f"Skipping malformed record #{raw.index}: {e.reason}")
            raise

    def _convert(self, raw: RawEvent, profile: SourceProfile) -> ProcessEvent:
        ts_path, ts_value = raw.first_present(profile.timestamp)
        if ts_path is None:
            raise MalformedRecord(f"missing required field {profile.timestamp[0]}",
                                  record_index=raw.index, field=profile.timestamp[0])
        timestamp = parse_timestamp(ts_value, field=ts_path, record_index=raw.index)

        folder_path = raw.get_str(profile.image)
        if not folder_path.strip():
            raise MalformedRecord(f"empty process image path in {profile.image[0]}",
                                  record_index=raw.index, field=profile.image[0])
        parent_path = raw.get_str(profile.parent_image, required=False) if profile.parent_image else ""
        parent_cmd = raw.get_str(profile.parent_command_line, required=False) if profile.parent_command_line else ""
        parent_pid = UNKNOWN_PROCESS_ID
        if profile.parent_process_id:
            parent_pid = raw.get_int(profile.parent_process_id, required=False,
                                     default=UNKNOWN_PROCESS_ID)

        try:
            return ProcessEvent(
                timestamp=timestamp,
                device_name=raw.get_str(profile.device),
                folder_path=folder_path,
                file_name=basename(folder_path),
                command_line=raw.get_str(profile.command_line, required=False),
                process_id=raw.get_int(profile.process_id),
                initiating_process_folder_path=parent_path,
                initiating_process_file_name=basename(parent_path) if parent_path else "",
                initiating_process_command_line=parent_cmd,
                initiating_process_id=parent_pid,
            )
        except ValidationError as e:
            raise MalformedRecord(f"invalid canonical event: {e.errors()[0]['msg']}",
                                  record_index=raw.index) from None


_default_bridge: Optional[SchemaBridge] = None


def normalize(raw: RawEvent) -> Optional[ProcessEvent]:
    """Module-level shortcut over a shared stateless SchemaBridge."""
    global _default_bridge
    if _default_bridge is None:
        _default_bridge = SchemaBridge()
    return _default_bridge.normalize(raw)
