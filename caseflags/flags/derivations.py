"""
Cross-case derivations for computed metrics.

Turnover, first-case delay and excess time cost cannot be computed from a
single case: they need the neighbouring case in the same room, the first
case of a room-day, or a facility-wide median. The aggregator builds a
ComputedMetricContext once per run and hands it to the resolver.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from caseflags.data.schema import CaseRecord

from . import stats


def minutes_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    if start is None or end is None:
        return None
    return (end - start).total_seconds() / 60.0


def _room_day_groups(cases: Iterable[CaseRecord]) -> Dict[Tuple[date, str], List[CaseRecord]]:
    groups: Dict[Tuple[date, str], List[CaseRecord]] = {}
    for case in cases:
        if not case.room_id:
            continue
        groups.setdefault((case.scheduled_date, case.room_id), []).append(case)
    return groups


def _room_order_key(case: CaseRecord) -> Tuple[datetime, str]:
    start = case.scheduled_start or case.milestones.get("patient_in") or datetime.max
    return start, case.id


def compute_turnovers(cases: Iterable[CaseRecord], max_minutes: float = 180.0) -> Dict[str, float]:
    """
    Turnover before each case: previous patient_out to this patient_in.

    Only cases sharing a room and day are paired. Gaps outside
    (0, max_minutes) are not turnovers and are left out.
    """
    turnovers: Dict[str, float] = {}
    for room_cases in _room_day_groups(cases).values():
        ordered = sorted(room_cases, key=_room_order_key)
        for prev, curr in zip(ordered, ordered[1:]):
            gap = minutes_between(prev.milestones.get("patient_out"), curr.milestones.get("patient_in"))
            if gap is not None and 0 < gap < max_minutes:
                turnovers[curr.id] = gap
    return turnovers


def identify_first_cases(cases: Iterable[CaseRecord]) -> Set[str]:
    """Ids of the first scheduled case in each room-day."""
    first: Set[str] = set()
    for room_cases in _room_day_groups(cases).values():
        scheduled = [c for c in room_cases if c.scheduled_start is not None]
        if scheduled:
            first.add(min(scheduled, key=_room_order_key).id)
    return first


def median_case_minutes(cases: Iterable[CaseRecord]) -> Dict[Optional[str], float]:
    """
    Median patient_in to patient_out minutes, per procedure and overall.

    The overall median is stored under the None key.
    """
    by_procedure: Dict[Optional[str], List[float]] = {}
    for case in cases:
        minutes = minutes_between(case.milestones.get("patient_in"), case.milestones.get("patient_out"))
        if minutes is None or minutes <= 0:
            continue
        by_procedure.setdefault(None, []).append(minutes)
        if case.procedure_id:
            by_procedure.setdefault(case.procedure_id, []).append(minutes)

    return {key: stats.median(values) for key, values in by_procedure.items()}


@dataclass
class ComputedMetricContext:
    """
    Precomputed cross-case values for one evaluation run.

    Fields:
    - turnovers: case id -> minutes since the previous case left the room
    - first_case_ids: first case of each room-day
    - median_minutes: procedure id (None = all) -> median case minutes
    """

    turnovers: Dict[str, float] = field(default_factory=dict)
    first_case_ids: Set[str] = field(default_factory=set)
    median_minutes: Dict[Optional[str], float] = field(default_factory=dict)

    @classmethod
    def build(cls, cases: Iterable[CaseRecord], turnover_max_minutes: float = 180.0) -> "ComputedMetricContext":
        cases = list(cases)
        return cls(
            turnovers=compute_turnovers(cases, turnover_max_minutes),
            first_case_ids=identify_first_cases(cases),
            median_minutes=median_case_minutes(cases),
        )

    def turnover(self, case: CaseRecord) -> Optional[float]:
        return self.turnovers.get(case.id)

    def fcots_delay(self, case: CaseRecord) -> Optional[float]:
        """Minutes late for a first case (negative when early)."""
        if case.id not in self.first_case_ids:
            return None
        return minutes_between(case.scheduled_start, case.milestones.get("patient_in"))

    def excess_time_cost(self, case: CaseRecord) -> Optional[float]:
        """Cost of minutes beyond the median case duration at the OR rate."""
        completion = case.completion_stats
        if completion is None or not completion.total_duration_minutes or not completion.or_hourly_rate:
            return None

        median = self.median_minutes.get(case.procedure_id) if case.procedure_id else None
        if median is None:
            median = self.median_minutes.get(None)
        if median is None:
            return None

        excess = max(0.0, completion.total_duration_minutes - median)
        return excess * completion.or_hourly_rate / 60.0
