# rulebench/modules/scoring_engine.py
"""
RuleBench - Composite Risk Scoring Engine

Scores a ProcessEvent against an ordered indicator set. Every indicator is
evaluated (no first-match exit): the risk score is the sum of the weights
of all matches, and the matched labels keep definition order.

Correlation over several events (same device, same initiating process,
same time bucket) is provided as an extension point through
group_events() / score_group(); the validation harness scores one event at
a time.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

from rulebench.core.schemas import ProcessEvent, RiskScore
from rulebench.modules.indicators import Indicator

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

CorrelationKey = Tuple[str, int, int]


def score(event: ProcessEvent, indicators: Sequence[Indicator]) -> RiskScore:
    """Sum of weights of every indicator matching the event."""
    total = 0
    matched: List[str] = []
    for indicator in indicators:
        if indicator.evaluate(event):
            total += indicator.weight
            matched.append(indicator.label)
    return RiskScore(score=total, matched_indicators=tuple(matched))


class ScoringEngine:
    """Binds an ordered indicator set for repeated scoring."""

    def __init__(self, indicators: Sequence[Indicator],
                 correlation_window: timedelta = timedelta(seconds=300)) -> None:
        self.indicators: Tuple[Indicator, ...] = tuple(indicators)
        self.correlation_window = correlation_window

    @property
    def max_possible_score(self) -> int:
        return sum(i.weight for i in self.indicators)

    def score(self, event: ProcessEvent) -> RiskScore:
        return score(event, self.indicators)

    def score_many(self, events: Iterable[ProcessEvent]) -> Iterator[Tuple[ProcessEvent, RiskScore]]:
        for event in events:
            yield event, self.score(event)

    def score_group(self, events: Sequence[ProcessEvent]) -> RiskScore:
        return score_group(events, self.indicators)

    def correlate(self, events: Iterable[ProcessEvent]) -> List[Tuple[List[ProcessEvent], RiskScore]]:
        """Group events by correlation key and score every group."""
        return [(group, self.score_group(group))
                for group in group_events(events, self.correlation_window)]


# --- Correlation extension point ---

def correlation_key(event: ProcessEvent, window: timedelta) -> CorrelationKey:
    """(device, initiating process id, time bucket) grouping key."""
    if window.total_seconds() <= 0:
        raise ValueError("correlation window must be positive")
    bucket = int((event.timestamp - _EPOCH) // window)
    return event.device_name.lower(), event.initiating_process_id, bucket


def group_events(events: Iterable[ProcessEvent], window: timedelta) -> List[List[ProcessEvent]]:
    """Correlated groups in first-seen order; members keep input order."""
    groups: Dict[CorrelationKey, List[ProcessEvent]] = {}
    for event in events:
        groups.setdefault(correlation_key(event, window), []).append(event)
    return list(groups.values())


def score_group(events: Sequence[ProcessEvent], indicators: Sequence[Indicator]) -> RiskScore:
    """
    Score a correlated group: each indicator counts once if any member
    matches it. Labels follow definition order.
    """
    total = 0
    matched: List[str] = []
    for indicator in indicators:
        if any(indicator.evaluate(event) for event in events):
            total += indicator.weight
            matched.append(indicator.label)
    return RiskScore(score=total, matched_indicators=tuple(matched))
