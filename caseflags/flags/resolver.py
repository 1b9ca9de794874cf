"""
Metric value extraction for a single case.

Dispatches on the metric's source:
- milestone deltas (minutes between two recorded milestones)
- completion stats (small formulas over stored financial primitives)
- computed metrics (delegated to a ComputedMetricContext)
- milestone counts (missing or out-of-sequence core milestones)

A missing value is not an error: an incomplete case simply has no value
for that metric.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from caseflags.data.schema import CaseRecord

from .catalog import CORE_MILESTONE_SEQUENCE
from .derivations import ComputedMetricContext, minutes_between
from .schema import MetricDefinition, MetricSource


def _case_profit(case: CaseRecord) -> Optional[float]:
    stats = case.completion_stats
    return stats.profit if stats else None


def _case_margin(case: CaseRecord) -> Optional[float]:
    stats = case.completion_stats
    if stats is None or stats.profit is None or not stats.reimbursement:
        return None
    return stats.profit / stats.reimbursement * 100.0


def _profit_per_minute(case: CaseRecord) -> Optional[float]:
    stats = case.completion_stats
    if stats is None or stats.profit is None or not stats.total_duration_minutes:
        return None
    return stats.profit / stats.total_duration_minutes


def _total_case_cost(case: CaseRecord) -> Optional[float]:
    stats = case.completion_stats
    if stats is None or (stats.total_debits is None and stats.or_time_cost is None):
        return None
    return (stats.total_debits or 0.0) + (stats.or_time_cost or 0.0)


def _reimbursement_variance(case: CaseRecord) -> Optional[float]:
    stats = case.completion_stats
    expected = case.expected_reimbursement
    if stats is None or stats.reimbursement is None or not expected:
        return None
    return (stats.reimbursement - expected) / expected * 100.0


def _or_time_cost(case: CaseRecord) -> Optional[float]:
    stats = case.completion_stats
    return stats.or_time_cost if stats else None


COMPLETION_FORMULAS: Dict[str, Callable[[CaseRecord], Optional[float]]] = {
    "case_profit": _case_profit,
    "case_margin": _case_margin,
    "profit_per_minute": _profit_per_minute,
    "total_case_cost": _total_case_cost,
    "reimbursement_variance": _reimbursement_variance,
    "or_time_cost": _or_time_cost,
}


def count_missing_milestones(case: CaseRecord) -> int:
    return sum(1 for name in CORE_MILESTONE_SEQUENCE if case.milestones.get(name) is None)


def count_sequence_violations(case: CaseRecord) -> int:
    """Recorded core milestones whose timestamp precedes the one before it."""
    recorded = [case.milestones[name] for name in CORE_MILESTONE_SEQUENCE if case.milestones.get(name)]
    return sum(1 for prev, curr in zip(recorded, recorded[1:]) if curr < prev)


@dataclass
class MetricResolver:
    """
    Computes metric values for cases.

    `computed` supplies cross-case derivations; without it computed
    metrics have no value.
    """

    computed: Optional[ComputedMetricContext] = None

    def compute_value(self, definition: MetricDefinition, case: CaseRecord) -> Optional[float]:
        value = self._raw_value(definition, case)
        if value is None:
            return None
        # Zero or negative durations come from bad milestone data.
        if value <= 0 and not definition.allow_non_positive:
            return None
        return float(value)

    def missing_milestones(self, definition: MetricDefinition, case: CaseRecord) -> List[str]:
        """Milestones a milestone-delta metric needs but the case lacks."""
        if definition.source != MetricSource.MILESTONE_DELTA:
            return []
        needed = [definition.start_milestone, definition.end_milestone]
        return [name for name in needed if name and case.milestones.get(name) is None]

    def _raw_value(self, definition: MetricDefinition, case: CaseRecord) -> Optional[float]:
        source = definition.source

        if source == MetricSource.MILESTONE_DELTA:
            if not definition.start_milestone or not definition.end_milestone:
                return None
            return minutes_between(
                case.milestones.get(definition.start_milestone),
                case.milestones.get(definition.end_milestone),
            )

        if source == MetricSource.COMPLETION_STAT:
            if definition.cost_category_id:
                return case.category_costs.get(definition.cost_category_id)
            formula = COMPLETION_FORMULAS.get(definition.id)
            return formula(case) if formula else None

        if source == MetricSource.MILESTONE_COUNT:
            if definition.id == "missing_milestones":
                return float(count_missing_milestones(case))
            if definition.id == "milestone_out_of_order":
                return float(count_sequence_violations(case))
            return None

        if source == MetricSource.COMPUTED:
            return self._computed_value(definition, case)

        return None

    def _computed_value(self, definition: MetricDefinition, case: CaseRecord) -> Optional[float]:
        if self.computed is None:
            return None
        if definition.id in ("turnover_time", "room_idle_gap"):
            return self.computed.turnover(case)
        if definition.id == "fcots_delay":
            return self.computed.fcots_delay(case)
        if definition.id == "excess_time_cost":
            return self.computed.excess_time_cost(case)
        return None
