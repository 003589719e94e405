# rulebench/modules/verdict_policy.py
"""
Pass/Fail policy for a validation run.

A run passes only when all three conditions hold:
  1. results_returned    - some event scored above zero
  2. critical_detection  - an in-scope event crossed the threshold and
                           carries every expected label
  3. no_false_positives  - no out-of-scope event crossed the threshold
"""
from typing import Iterable, List, Sequence

from rulebench.core.schemas import ConditionResult, ThreatEvent

RESULTS_RETURNED = "results_returned"
CRITICAL_DETECTION = "critical_detection"
NO_FALSE_POSITIVES = "no_false_positives"


def evaluate_conditions(matching_events: int, threat_events: Sequence[ThreatEvent],
                        critical_threshold: int,
                        expected_labels: Iterable[str] = ()) -> List[ConditionResult]:
    """Evaluate every pass criterion; never stops at the first failure."""
    expected = tuple(expected_labels)
    conditions = [
        ConditionResult(
            name=RESULTS_RETURNED,
            passed=matching_events > 0,
            detail=f"{matching_events} events scored above 0",
        )
    ]

    in_scope = [t for t in threat_events if t.in_scope]
    detections = [t for t in in_scope if set(expected).issubset(t.matched_indicators)]
    if detections:
        detail = (f"{len(detections)} in-scope events reached {critical_threshold} "
                  f"(best: {max(t.score for t in detections)})")
    elif in_scope:
        detail = (f"{len(in_scope)} in-scope events reached {critical_threshold} "
                  f"but none matched expected labels {list(expected)}")
    else:
        detail = f"no in-scope event reached {critical_threshold}"
    conditions.append(ConditionResult(name=CRITICAL_DETECTION, passed=bool(detections), detail=detail))

    false_positives = [t for t in threat_events if not t.in_scope]
    conditions.append(ConditionResult(
        name=NO_FALSE_POSITIVES,
        passed=not false_positives,
        detail=(f"{len(false_positives)} out-of-scope events reached {critical_threshold}"
                if false_positives else "no out-of-scope event reached the threshold"),
    ))
    return conditions


def is_passed(conditions: Iterable[ConditionResult]) -> bool:
    return all(c.passed for c in conditions)
