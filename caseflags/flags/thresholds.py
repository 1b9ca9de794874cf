"""
Threshold evaluation for flag rules.

Resolves a rule's effective threshold from its threshold type and (when
needed) a baseline, then compares the case value with the rule's operator.
"""

from __future__ import annotations

import operator as op
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from caseflags.data.schema import FlagRule, Operator, ThresholdType

from . import stats
from .schema import Baseline, ThresholdResult

BASELINE_THRESHOLD_TYPES = frozenset(
    {
        ThresholdType.MEDIAN_PLUS_SD,
        ThresholdType.MEDIAN_PLUS_OFFSET,
        ThresholdType.PERCENTAGE_OF_MEDIAN,
        ThresholdType.PERCENTILE,
    }
)

COMPARATORS: Dict[Operator, Callable[[float, float], bool]] = {
    Operator.GT: op.gt,
    Operator.GTE: op.ge,
    Operator.LT: op.lt,
    Operator.LTE: op.le,
}

SKIP_NO_BASELINE = "baseline_unavailable"
SKIP_EMPTY_SAMPLE = "empty_baseline_sample"


def needs_baseline(rule: FlagRule) -> bool:
    return rule.threshold_type in BASELINE_THRESHOLD_TYPES


def compare(value: float, threshold: float, operator: Operator) -> bool:
    return COMPARATORS[operator](value, threshold)


@dataclass
class ThresholdEvaluator:
    """
    Applies one rule to one value.

    Absolute and "between" rules never look at the baseline. Baseline
    rules without a baseline are not flagged and carry a skip reason.
    """

    def evaluate(
        self, rule: FlagRule, case_value: float, baseline: Optional[Baseline] = None
    ) -> ThresholdResult:
        if rule.threshold_type == ThresholdType.BETWEEN:
            return self._evaluate_between(rule, case_value)

        if needs_baseline(rule) and baseline is None:
            return ThresholdResult(flagged=False, skip_reason=SKIP_NO_BASELINE)

        threshold = self.effective_threshold(rule, baseline)
        if threshold is None:
            return ThresholdResult(flagged=False, skip_reason=SKIP_EMPTY_SAMPLE)

        return ThresholdResult(
            flagged=compare(case_value, threshold, rule.operator),
            effective_threshold=threshold,
        )

    def effective_threshold(self, rule: FlagRule, baseline: Optional[Baseline]) -> Optional[float]:
        """
        Numeric cutoff for non-range rules.

        Returns None when the baseline cannot supply one.
        """
        kind = rule.threshold_type
        value = rule.threshold_value

        if kind == ThresholdType.ABSOLUTE:
            return value
        if baseline is None:
            return None
        if kind == ThresholdType.MEDIAN_PLUS_SD:
            return baseline.median + value * baseline.stddev
        if kind == ThresholdType.MEDIAN_PLUS_OFFSET:
            return baseline.median + value
        if kind == ThresholdType.PERCENTAGE_OF_MEDIAN:
            return baseline.median * (1.0 + value / 100.0)
        if kind == ThresholdType.PERCENTILE:
            return stats.percentile(baseline.values, value)
        return None

    def _evaluate_between(self, rule: FlagRule, case_value: float) -> ThresholdResult:
        low = rule.threshold_value
        high = rule.threshold_value_max
        if case_value < low:
            return ThresholdResult(flagged=True, effective_threshold=low)
        if case_value > high:
            return ThresholdResult(flagged=True, effective_threshold=high)
        return ThresholdResult(flagged=False, effective_threshold=low)
