import random
from datetime import datetime, timedelta, timezone

import pytest

from rulebench.core.schemas import ProcessEvent
from rulebench.modules.indicators import Indicator, load_indicators
from rulebench.modules.scoring_engine import (ScoringEngine, correlation_key, group_events,
                                              score, score_group)


def _event(name="powershell.exe", parent="wmiprvse.exe", cmd="", device="WS01", ppid=500, minute=0):
    return ProcessEvent(
        timestamp=datetime(2021, 6, 1, 12, minute, tzinfo=timezone.utc),
        device_name=device,
        folder_path=f"C:\\Windows\\System32\\{name}",
        command_line=cmd,
        process_id=1000 + minute,
        initiating_process_folder_path=f"C:\\Windows\\System32\\{parent}",
        initiating_process_id=ppid,
    )


@pytest.fixture
def indicators():
    return [
        Indicator("Shell", 10, 'fileName in ["cmd.exe", "powershell.exe"]'),
        Indicator("WMI Parent", 25, 'initiatingProcessFileName == "wmiprvse.exe"'),
        Indicator("Encoded", 40, 'commandLine token ["-enc", "-e"]'),
    ]


def test_score_sums_weights_in_definition_order(indicators):
    result = score(_event(cmd="powershell -enc AAAA"), indicators)
    assert result.score == 75
    assert result.matched_indicators == ("Shell", "WMI Parent", "Encoded")

    reversed_result = score(_event(cmd="powershell -enc AAAA"), list(reversed(indicators)))
    assert reversed_result.score == 75
    assert reversed_result.matched_indicators == ("Encoded", "WMI Parent", "Shell")


def test_zero_match(indicators):
    result = score(_event(name="notepad.exe", parent="explorer.exe"), indicators)
    assert result.score == 0
    assert result.matched_indicators == ()


def test_every_indicator_is_evaluated(indicators):
    calls = []

    def spy(event):
        calls.append(event.process_id)
        return True

    tracked = indicators + [Indicator("Spy", 1, spy)]
    score(_event(), tracked)
    assert len(calls) == 1


def test_scoring_is_deterministic_and_monotone(sample_indicators_path):
    rng = random.Random(42)
    loaded = load_indicators(sample_indicators_path)
    engine = ScoringEngine(loaded)
    names = ["powershell.exe", "cmd.exe", "wmiprvse.exe", "rundll32.exe", "svchost.exe", "winword.exe"]
    for minute in range(60):
        event = _event(name=rng.choice(names), parent=rng.choice(names),
                       cmd=rng.choice(["", "x -enc AAA", "rundll32.exe"]), minute=minute)
        first = engine.score(event)
        assert first == engine.score(event)
        assert 0 <= first.score <= engine.max_possible_score
        # Adding an indicator never lowers a score
        extended = ScoringEngine(loaded + [Indicator("Extra", 7, "processId exists")])
        assert extended.score(event).score == first.score + 7


def test_score_many(indicators):
    engine = ScoringEngine(indicators)
    events = [_event(), _event(name="notepad.exe", parent="explorer.exe")]
    scored = list(engine.score_many(events))
    assert [s.score for _, s in scored] == [35, 0]
    assert engine.max_possible_score == 75


# --- Correlation ---

def test_correlation_groups_by_device_parent_and_window():
    window = timedelta(minutes=5)
    events = [
        _event(minute=0),
        _event(minute=3, device="ws01"),
        _event(minute=7),
        _event(minute=1, ppid=777),
    ]
    groups = group_events(events, window)

    assert [len(g) for g in groups] == [2, 1, 1]
    assert correlation_key(events[0], window) == correlation_key(events[1], window)
    with pytest.raises(ValueError):
        correlation_key(events[0], timedelta(0))


def test_group_score_counts_each_indicator_once(indicators):
    group = [_event(), _event(name="cmd.exe"), _event(name="notepad.exe", cmd="x -e AAA")]
    result = score_group(group, indicators)

    assert result.score == 75
    assert result.matched_indicators == ("Shell", "WMI Parent", "Encoded")
    assert ScoringEngine(indicators).score_group(group) == result


def test_engine_correlate_uses_its_window(indicators):
    events = [_event(minute=0), _event(name="notepad.exe", minute=2, cmd="x -enc A"), _event(minute=9)]

    wide = ScoringEngine(indicators, correlation_window=timedelta(minutes=10)).correlate(events)
    narrow = ScoringEngine(indicators, correlation_window=timedelta(minutes=5)).correlate(events)

    assert [(len(group), risk.score) for group, risk in wide] == [(3, 75)]
    assert [(len(group), risk.score) for group, risk in narrow] == [(2, 75), (1, 35)]
