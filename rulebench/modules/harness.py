# rulebench/modules/harness.py
"""
RuleBench - Validation Harness

Runs Schema Bridge + Scoring Engine over one dataset and judges the result.

Run lifecycle (RunState):
    LOADING -> NORMALIZING -> SCORING -> AGGREGATING -> DONE

Records are pulled lazily in batches. Each batch is normalized and scored
independently (optionally on a thread pool) and returns a BatchResult; a
single combiner folds the batch results in submission order, so the verdict
does not depend on worker completion order.
"""
import statistics
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import timedelta
from enum import Enum
from itertools import islice
from typing import Any, Deque, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from rulebench.core.config import Config
from rulebench.core.exceptions import (
    EmptyDatasetError, MalformedRecord, RunSetupError, UnsupportedRecordKind,
)
from rulebench.core.raw_event import RawEvent
from rulebench.core.schemas import (
    MalformedRecordInfo, ProcessEvent, RiskScore, ThreatEvent, ValidationScope, ValidationVerdict,
)
from rulebench.modules.indicators import Indicator, IndicatorSource, load_indicators
from rulebench.modules.schema_bridge import SchemaBridge
from rulebench.modules.scoring_engine import ScoringEngine
from rulebench.modules.verdict_policy import evaluate_conditions, is_passed
from rulebench.utils.logger import Logger

RawInput = Union[RawEvent, Mapping[str, Any]]


class RunState(Enum):
    LOADING = "loading"
    NORMALIZING = "normalizing"
    SCORING = "scoring"
    AGGREGATING = "aggregating"
    DONE = "done"


class BatchResult:
    """Partial result of one batch. Produced by a worker, consumed by the combiner only."""

    def __init__(self) -> None:
        self.records = 0
        self.skipped = 0
        self.malformed: List[MalformedRecordInfo] = []
        self.scores: List[int] = []
        self.threats: List[ThreatEvent] = []
        self.top: Optional[ThreatEvent] = None


def _rank(threat: ThreatEvent) -> Tuple[int, Any, int]:
    # Highest score first, then earliest timestamp, then lowest record index
    return -threat.score, threat.event.timestamp, threat.record_index


def _better(candidate: ThreatEvent, current: Optional[ThreatEvent]) -> bool:
    return current is None or _rank(candidate) < _rank(current)


class ValidationRun:
    """State of one validation run. Created per validate() call, never reused."""

    def __init__(self, bridge: SchemaBridge, engine: ScoringEngine, critical_threshold: int,
                 expected_labels: Tuple[str, ...], scope: Optional[ValidationScope],
                 max_workers: int, batch_size: int, logger: Logger) -> None:
        self.bridge = bridge
        self.engine = engine
        self.critical_threshold = critical_threshold
        self.expected_labels = expected_labels
        self.scope = scope
        self.max_workers = max_workers
        self.batch_size = batch_size
        self.logger = logger
        self.state = RunState.LOADING

        self.total_records = 0
        self.skipped_records = 0
        self.malformed: List[MalformedRecordInfo] = []
        self.scores: List[int] = []
        self.threats: List[ThreatEvent] = []
        self.top_event: Optional[ThreatEvent] = None

    def _transition(self, state: RunState) -> None:
        if state is not self.state:
            self.logger.debug(f"Validation run: {self.state.value} -> {state.value}")
            self.state = state

    # --- Worker side ---

    def _process_batch(self, batch: Sequence[RawEvent]) -> BatchResult:
        result = BatchResult()
        self._score_batch(self._normalize_batch(batch, result), result)
        return result

    def _normalize_batch(self, batch: Sequence[RawEvent], result: BatchResult) -> List[Tuple[int, ProcessEvent]]:
        events = []
        for raw in batch:
            result.records += 1
            try:
                events.append((raw.index, self.bridge.normalize_strict(raw)))
            except UnsupportedRecordKind:
                result.skipped += 1
            except MalformedRecord as e:
                # Excluded for the rest of this run, never retried
                result.malformed.append(MalformedRecordInfo(record_index=raw.index, reason=e.reason))
        return events

    def _score_batch(self, events: Sequence[Tuple[int, ProcessEvent]], result: BatchResult) -> None:
        for index, event in events:
            self._score_event(index, event, result)

    def _score_event(self, index: int, event: ProcessEvent, result: BatchResult) -> None:
        risk: RiskScore = self.engine.score(event)
        result.scores.append(risk.score)
        if risk.score <= 0:
            return
        threat = ThreatEvent(
            record_index=index,
            event=event,
            score=risk.score,
            matched_indicators=risk.matched_indicators,
            in_scope=self.scope.contains(event) if self.scope else True,
        )
        if _better(threat, result.top):
            result.top = threat
        if risk.score >= self.critical_threshold:
            result.threats.append(threat)

    # --- Combiner side ---

    def _merge(self, result: BatchResult) -> None:
        self._transition(RunState.AGGREGATING)
        self.total_records += result.records
        self.skipped_records += result.skipped
        self.malformed.extend(result.malformed)
        self.scores.extend(result.scores)
        self.threats.extend(result.threats)
        if result.top is not None and _better(result.top, self.top_event):
            self.top_event = result.top

    # --- Driver ---

    def _batches(self, records: Iterable[RawInput]) -> Iterator[List[RawEvent]]:
        iterator = self._as_raw_events(records)
        while True:
            self._transition(RunState.LOADING)
            batch = list(islice(iterator, self.batch_size))
            if not batch:
                return
            yield batch

    @staticmethod
    def _as_raw_events(records: Iterable[RawInput]) -> Iterator[RawEvent]:
        # Record indices are always stream positions
        for index, record in enumerate(records):
            if isinstance(record, RawEvent):
                if record.index == index:
                    yield record
                else:
                    yield RawEvent(record.data, index=index, decode_error=record.decode_error)
            elif isinstance(record, Mapping):
                yield RawEvent(record, index=index)
            else:
                yield RawEvent.undecodable(index, f"expected a mapping, got {type(record).__name__}")

    def execute(self, records: Iterable[RawInput]) -> ValidationVerdict:
        if self.max_workers <= 1:
            for batch in self._batches(records):
                result = BatchResult()
                self._transition(RunState.NORMALIZING)
                events = self._normalize_batch(batch, result)
                self._transition(RunState.SCORING)
                self._score_batch(events, result)
                self._merge(result)
        else:
            self._execute_parallel(records)
        return self._finalize()

    def _execute_parallel(self, records: Iterable[RawInput]) -> None:
        in_flight: Deque[Future] = deque()
        with ThreadPoolExecutor(max_workers=self.max_workers,
                                thread_name_prefix="ReplayWorker") as executor:
            for batch in self._batches(records):
                self._transition(RunState.NORMALIZING)
                in_flight.append(executor.submit(self._process_batch, batch))
                # Bounded in-flight work; results are folded in submission order
                if len(in_flight) >= 2 * self.max_workers:
                    self._transition(RunState.SCORING)
                    self._merge(in_flight.popleft().result())
            while in_flight:
                self._transition(RunState.SCORING)
                self._merge(in_flight.popleft().result())

    def _finalize(self) -> ValidationVerdict:
        self._transition(RunState.AGGREGATING)
        normalized = len(self.scores)
        if normalized == 0:
            raise EmptyDatasetError(self.total_records, self.skipped_records, len(self.malformed))

        matching = [s for s in self.scores if s > 0]
        threats = sorted(self.threats, key=lambda t: t.record_index)
        false_positives = [t for t in threats if not t.in_scope]
        conditions = evaluate_conditions(len(matching), threats, self.critical_threshold,
                                         self.expected_labels)
        verdict = ValidationVerdict(
            critical_threshold=self.critical_threshold,
            expected_labels=self.expected_labels,
            total_records=self.total_records,
            normalized_events=normalized,
            skipped_records=self.skipped_records,
            malformed_records=len(self.malformed),
            malformed_details=sorted(self.malformed, key=lambda m: m.record_index),
            matching_events=len(matching),
            max_score=max(matching, default=0),
            median_score=float(statistics.median(matching)) if matching else 0.0,
            top_event=self.top_event,
            threat_events=threats,
            false_positives=false_positives,
            conditions=conditions,
            passed=is_passed(conditions),
        )
        # The verdict holds everything callers need; drop the per-event buffers
        self.scores, self.threats, self.malformed = [], [], []
        self._transition(RunState.DONE)
        return verdict


class ValidationHarness:
    """
    Orchestrates validation runs. Holds configuration only: every call to
    validate() builds a fresh ValidationRun, so nothing leaks across runs.
    """

    def __init__(self, config: Optional[Config] = None, bridge: Optional[SchemaBridge] = None) -> None:
        self.config = config or Config()
        self.bridge = bridge or SchemaBridge()
        self.logger = Logger()
        # Most recent run (state, engine, counters) for inspection; replaced on every call
        self.last_run: Optional[ValidationRun] = None

    def validate(self, raw_events: Iterable[RawInput],
                 indicators: Union[IndicatorSource, Sequence[Indicator]],
                 critical_threshold: Optional[int] = None,
                 expected_labels: Iterable[str] = (),
                 scope: Optional[ValidationScope] = None,
                 max_workers: Optional[int] = None,
                 batch_size: Optional[int] = None) -> ValidationVerdict:
        """
        Validate an indicator set against one dataset.

        Raises:
            InvalidIndicatorDefinition: the indicator set is broken (before any record is read).
            RunSetupError: invalid threshold or expected labels unknown to the indicator set.
            EmptyDatasetError: no process event was available to score.
        """
        indicator_set = load_indicators(indicators)
        threshold = self.config.critical_threshold if critical_threshold is None else critical_threshold
        if isinstance(threshold, bool) or not isinstance(threshold, int) or threshold <= 0:
            raise RunSetupError(f"critical threshold must be a positive integer, got {threshold!r}")
        expected = tuple(expected_labels)
        unknown = [label for label in expected if label not in {i.label for i in indicator_set}]
        if unknown:
            raise RunSetupError(f"expected labels not defined in the indicator set: {unknown}")

        run = ValidationRun(
            bridge=self.bridge,
            engine=ScoringEngine(indicator_set,
                                 timedelta(seconds=self.config.correlation_window_seconds)),
            critical_threshold=threshold,
            expected_labels=expected,
            scope=scope,
            max_workers=max_workers if max_workers is not None else self.config.max_workers,
            batch_size=max(1, batch_size if batch_size is not None else self.config.batch_size),
            logger=self.logger,
        )
        self.logger.info(f"🔍 Validating {len(indicator_set)} indicators "
                         f"(threshold={threshold}, workers={run.max_workers})...")
        self.last_run = run
        try:
            verdict = run.execute(raw_events)
        except EmptyDatasetError as e:
            self.logger.error(f"Validation aborted: {e}")
            raise

        for fp in verdict.false_positives:
            self.logger.warning(f"False positive: {fp.summary()}")
        summary = (f"{verdict.normalized_events} events, {verdict.matching_events} matching, "
                   f"max score {verdict.max_score}, {verdict.malformed_records} malformed, "
                   f"{verdict.false_positive_count} false positives")
        if verdict.passed:
            self.logger.success(f"Validation PASSED: {summary}")
        else:
            self.logger.warning(f"Validation FAILED {verdict.failed_conditions}: {summary}")
        return verdict


def validate(raw_events: Iterable[RawInput],
             indicators: Union[IndicatorSource, Sequence[Indicator]],
             critical_threshold: Optional[int] = None,
             expected_labels: Iterable[str] = (),
             scope: Optional[ValidationScope] = None,
             **options: Any) -> ValidationVerdict:
    """One-shot validation with default configuration."""
    return ValidationHarness().validate(raw_events, indicators, critical_threshold,
                                        expected_labels, scope, **options)
