"""
Flag aggregation engine.

Evaluates every working-set rule against every case of a facility and
period, merges user-reported delays, and builds the summary KPIs and
breakdowns consumed by the display layer and the pattern detector.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from caseflags.core.config import EngineConfig, config
from caseflags.core.exceptions import (
    FlagEngineError,
    IncompleteMilestoneDataError,
    InsufficientBaselineDataError,
    MetricNotFoundError,
)
from caseflags.data.rules import working_set
from caseflags.data.schema import (
    CaseRecord,
    CostCategory,
    DateRange,
    FlagRule,
    ManualDelay,
    Severity,
)

from . import stats
from .baselines import BaselineCalculator
from .catalog import MetricCatalog, default_catalog
from .derivations import ComputedMetricContext
from .resolver import MetricResolver
from .schema import (
    AggregatedResult,
    CaseFlagSummary,
    DayOfWeekRow,
    DelayTypeBreakdownRow,
    Flag,
    FlaggedCase,
    FlagSummary,
    FlagType,
    MetricDefinition,
    RoomFlagRow,
    RuleBreakdownRow,
    SeverityCounts,
    SkipDiagnostic,
    SparklineData,
    SurgeonFlagRow,
    WeeklyTrendPoint,
)
from .thresholds import ThresholdEvaluator, needs_baseline

logger = logging.getLogger(__name__)

DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
ALL_WINDOW_ID = "all"
NO_TOP_ISSUE = "N/A"

SEVERITY_ORDER = {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.INFO: 2}


@dataclass
class _RuleStats:
    rule: FlagRule
    evaluated: int = 0
    skipped: int = 0


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _top_name(flags: Iterable[Flag]) -> str:
    """Most frequent flag name, ties broken alphabetically."""
    counts = Counter(f.name for f in flags)
    if not counts:
        return NO_TOP_ISSUE
    return min(counts.items(), key=lambda item: (-item[1], item[0]))[0]


@dataclass
class FlagAggregator:
    """
    Deterministic flag evaluation and aggregation.

    Notes:
    - No state survives between `aggregate` calls; identical inputs give
      identical output.
    - Per-item failures are logged and reported as diagnostics, never raised.
    - Internal accumulation is unrounded; rounding happens when output
      models are built.
    """

    settings: Optional[EngineConfig] = None
    catalog: MetricCatalog = field(default_factory=lambda: default_catalog)
    evaluator: ThresholdEvaluator = field(default_factory=ThresholdEvaluator)

    def __post_init__(self) -> None:
        if self.settings is None:
            self.settings = config.engine

    def aggregate(
        self,
        rules: Iterable[FlagRule],
        cases: Iterable[CaseRecord],
        manual_delays: Iterable[ManualDelay] = (),
        period: Optional[DateRange] = None,
        baseline_cases: Optional[Iterable[CaseRecord]] = None,
        facility_id: Optional[str] = None,
        cost_categories: Optional[Iterable[CostCategory]] = None,
    ) -> AggregatedResult:
        """
        Evaluate rules over cases and aggregate the flags.

        Args:
            rules: Candidate rules; only the working set is evaluated
            cases: Cases of the period and of the comparable prior period
            manual_delays: User-reported delays, merged as delay flags
            period: Current period; without it every case is current
            baseline_cases: Baseline population; defaults to the prior-period
                cases when a period is given, otherwise to every case
            facility_id: Facility being evaluated
            cost_categories: Facility cost categories for dynamic metrics

        Returns:
            AggregatedResult for the current period
        """
        window_id = period.window_id if period else ALL_WINDOW_ID
        current, prior = self._split_cases(cases, period, facility_id)
        evaluated_cases = current + prior
        case_index = {c.id: c for c in evaluated_cases}
        current_ids = {c.id for c in current}

        if facility_id is not None:
            active_rules = working_set(rules, facility_id)
        else:
            active_rules = sorted((r for r in rules if r.in_working_set), key=lambda r: r.id)

        if baseline_cases is not None:
            population = self._unique(baseline_cases)
        elif period is not None:
            # Current-period cases never feed their own baseline.
            population = prior
        else:
            population = evaluated_cases
        computed = ComputedMetricContext.build(
            self._unique(list(evaluated_cases) + list(population)),
            turnover_max_minutes=self.settings.turnover_max_minutes,
        )
        resolver = MetricResolver(computed=computed)
        baselines = BaselineCalculator(
            population=population,
            resolver=resolver,
            facility_id=facility_id,
            min_samples=self.settings.min_baseline_samples,
            procedure_min_samples=self.settings.min_procedure_baseline_samples,
        )
        metrics = self.catalog.for_facility(facility_id, cost_categories or ())

        flags: List[Flag] = []
        diagnostics: List[SkipDiagnostic] = []
        rule_stats: Dict[str, _RuleStats] = {}
        seen_keys: Set[str] = set()

        for rule in active_rules:
            try:
                definition = metrics.resolve_rule(rule)
            except MetricNotFoundError as e:
                logger.warning(f"Skipping rule {rule.id} ({rule.name}): {e}")
                diagnostics.append(self._diagnostic(rule.id, None, e))
                continue

            stats_row = _RuleStats(rule=rule)
            rule_stats[rule.id] = stats_row

            for case in evaluated_cases:
                is_current = case.id in current_ids
                try:
                    flag = self._evaluate_pair(rule, definition, case, resolver, baselines, window_id)
                except FlagEngineError as e:
                    logger.debug(f"Rule {rule.id} skipped for case {case.id}: {e}")
                    diagnostics.append(self._diagnostic(rule.id, case.id, e))
                    if is_current:
                        stats_row.skipped += 1
                    continue

                if flag is False:
                    continue
                if is_current:
                    stats_row.evaluated += 1
                if flag is None or flag.idempotency_key in seen_keys:
                    continue
                seen_keys.add(flag.idempotency_key)
                flags.append(flag)

        flags.extend(self._delay_flags(manual_delays, case_index, window_id, seen_keys))

        current_flags = [f for f in flags if f.case_id in current_ids]
        prior_flags = [f for f in flags if f.case_id not in current_ids]

        result = AggregatedResult(
            facility_id=facility_id,
            window_id=window_id,
            summary=self._summary(current, prior, current_flags, prior_flags),
            rule_breakdown=self._rule_breakdown(rule_stats, current_flags),
            delay_type_breakdown=self._delay_breakdown(current_flags),
            surgeon_flags=self._surgeon_rows(current, prior, current_flags, prior_flags),
            room_flags=self._room_rows(current, prior, current_flags, prior_flags),
            sparkline=self._sparkline(current, current_flags, period),
            weekly_trend=self._weekly_trend(current, current_flags, period),
            day_of_week_heatmap=self._heatmap(case_index, current_flags),
            recent_flagged_cases=self._recent_cases(case_index, current_flags),
            flags=[self._display_flag(f) for f in self._sorted_flags(current_flags)],
            diagnostics=diagnostics,
        )

        logger.info(
            f"Evaluated {len(rule_stats)} rule(s) over {len(evaluated_cases)} case(s) "
            f"[{window_id}]: {result.summary.total_flags} flag(s) in period, "
            f"{len(diagnostics)} skip(s), {baselines.cache_size} baseline(s)"
        )
        return result

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _evaluate_pair(
        self,
        rule: FlagRule,
        definition: MetricDefinition,
        case: CaseRecord,
        resolver: MetricResolver,
        baselines: BaselineCalculator,
        window_id: str,
    ):
        """
        Evaluate one (rule, case) pair.

        Returns False when the case has no value for the metric, None when
        evaluated but not flagged, or the Flag.

        Raises:
            IncompleteMilestoneDataError: Timing metric with missing milestones
            InsufficientBaselineDataError: Empty scoped population
        """
        value = resolver.compute_value(definition, case)
        if value is None:
            missing = resolver.missing_milestones(definition, case)
            if missing:
                raise IncompleteMilestoneDataError(
                    f"Case {case.id} missing {', '.join(missing)} for {definition.id}"
                )
            return False

        baseline = None
        if needs_baseline(rule):
            baseline = baselines.for_case(definition, rule.comparison_scope, case)

        result = self.evaluator.evaluate(rule, value, baseline)
        if result.skip_reason:
            raise InsufficientBaselineDataError(
                f"Rule {rule.id} cannot resolve a threshold: {result.skip_reason}"
            )
        if not result.flagged:
            return None

        return Flag(
            case_id=case.id,
            rule_id=rule.id,
            name=rule.name,
            metric_value=value,
            effective_threshold=result.effective_threshold,
            severity=rule.severity,
            flag_type=FlagType.THRESHOLD,
            category=definition.category,
            comparison_scope=rule.comparison_scope,
            idempotency_key=f"{case.id}:{rule.id}:{window_id}",
        )

    def _delay_flags(
        self,
        delays: Iterable[ManualDelay],
        case_index: Dict[str, CaseRecord],
        window_id: str,
        seen_keys: Set[str],
    ) -> List[Flag]:
        flags: List[Flag] = []
        occurrences: Counter = Counter()

        ordered = sorted(
            delays,
            key=lambda d: (d.case_id, d.delay_type_name, d.duration_minutes or 0.0, d.severity.value),
        )
        for delay in ordered:
            if delay.case_id not in case_index:
                logger.debug(f"Delay for unknown case {delay.case_id} ignored")
                continue
            occurrences[(delay.case_id, delay.delay_type_name)] += 1
            n = occurrences[(delay.case_id, delay.delay_type_name)]
            key = f"{delay.case_id}:delay:{delay.delay_type_name}:{n}:{window_id}"
            if key in seen_keys:
                continue
            seen_keys.add(key)
            flags.append(
                Flag(
                    case_id=delay.case_id,
                    name=delay.delay_type_name,
                    metric_value=delay.duration_minutes,
                    severity=delay.severity,
                    flag_type=FlagType.DELAY,
                    duration_minutes=delay.duration_minutes,
                    idempotency_key=key,
                )
            )
        return flags

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def _summary(
        self,
        current: Sequence[CaseRecord],
        prior: Sequence[CaseRecord],
        current_flags: Sequence[Flag],
        prior_flags: Sequence[Flag],
    ) -> FlagSummary:
        flagged = {f.case_id for f in current_flags}
        delayed = {f.case_id for f in current_flags if f.flag_type == FlagType.DELAY}
        prior_flagged = {f.case_id for f in prior_flags}
        prior_delayed = {f.case_id for f in prior_flags if f.flag_type == FlagType.DELAY}

        flag_rate = stats.safe_rate(len(flagged), len(current))
        delay_rate = stats.safe_rate(len(delayed), len(current))

        flag_trend = 0.0
        delay_trend = 0.0
        if current and prior:
            flag_trend = flag_rate - stats.safe_rate(len(prior_flagged), len(prior))
            delay_trend = delay_rate - stats.safe_rate(len(prior_delayed), len(prior))

        severity = Counter(f.severity for f in current_flags)

        return FlagSummary(
            total_cases=len(current),
            flagged_cases=len(flagged),
            flag_rate=self._round(flag_rate),
            flag_rate_trend=self._round(flag_trend),
            delayed_cases=len(delayed),
            delay_rate=self._round(delay_rate),
            delay_rate_trend=self._round(delay_trend),
            total_flags=len(current_flags),
            avg_flags_per_case=self._round(len(current_flags) / len(flagged)) if flagged else 0.0,
            severity=SeverityCounts(
                critical=severity[Severity.CRITICAL],
                warning=severity[Severity.WARNING],
                info=severity[Severity.INFO],
            ),
        )

    def _rule_breakdown(
        self, rule_stats: Dict[str, _RuleStats], current_flags: Sequence[Flag]
    ) -> List[RuleBreakdownRow]:
        counts = Counter(f.rule_id for f in current_flags if f.flag_type == FlagType.THRESHOLD)
        total = sum(counts.values())

        rows = [
            RuleBreakdownRow(
                rule_id=rule_id,
                name=row.rule.name,
                severity=row.rule.severity,
                count=counts[rule_id],
                pct=self._round(stats.safe_rate(counts[rule_id], total)),
                evaluated=row.evaluated,
                skipped=row.skipped,
            )
            for rule_id, row in rule_stats.items()
        ]
        rows.sort(key=lambda r: (-r.count, r.name, r.rule_id))
        return rows

    def _delay_breakdown(self, current_flags: Sequence[Flag]) -> List[DelayTypeBreakdownRow]:
        grouped: Dict[str, List[Flag]] = {}
        for flag in current_flags:
            if flag.flag_type == FlagType.DELAY:
                grouped.setdefault(flag.name, []).append(flag)
        total = sum(len(items) for items in grouped.values())

        rows = []
        for name, items in grouped.items():
            durations = [f.duration_minutes for f in items if f.duration_minutes is not None]
            avg = sum(durations) / len(durations) if durations else None
            rows.append(
                DelayTypeBreakdownRow(
                    name=name,
                    count=len(items),
                    pct=self._round(stats.safe_rate(len(items), total)),
                    avg_duration=self._round(avg) if avg is not None else None,
                )
            )
        rows.sort(key=lambda r: (-r.count, r.name))
        return rows

    def _group_rows(
        self,
        key_attr: str,
        current: Sequence[CaseRecord],
        prior: Sequence[CaseRecord],
        current_flags: Sequence[Flag],
        prior_flags: Sequence[Flag],
    ) -> List[Tuple[str, str, int, int, int, float, float, str]]:
        """
        Per-group case, flag and rate figures for surgeons or rooms.

        Returns tuples of (key, label, cases, flagged_cases, flags,
        unrounded rate, unrounded trend, top flag name).
        """
        def by_key(items: Sequence[CaseRecord]) -> Dict[str, List[CaseRecord]]:
            grouped: Dict[str, List[CaseRecord]] = {}
            for case in items:
                key = getattr(case, key_attr)
                if key:
                    grouped.setdefault(key, []).append(case)
            return grouped

        def flags_by_case(flags: Sequence[Flag]) -> Dict[str, List[Flag]]:
            grouped: Dict[str, List[Flag]] = {}
            for flag in flags:
                grouped.setdefault(flag.case_id, []).append(flag)
            return grouped

        cur_groups = by_key(current)
        prior_groups = by_key(prior)
        cur_flags = flags_by_case(current_flags)
        prior_flag_ids = {f.case_id for f in prior_flags}
        label_attr = "surgeon_label" if key_attr == "surgeon_id" else "room_label"

        rows = []
        for key, group in cur_groups.items():
            group_flags = [f for c in group for f in cur_flags.get(c.id, [])]
            flagged = sum(1 for c in group if c.id in cur_flags)
            rate = stats.safe_rate(flagged, len(group))

            trend = 0.0
            prior_group = prior_groups.get(key, [])
            if prior_group:
                prior_flagged = sum(1 for c in prior_group if c.id in prior_flag_ids)
                trend = rate - stats.safe_rate(prior_flagged, len(prior_group))

            label = getattr(min(group, key=lambda c: c.id), label_attr)
            rows.append((key, label, len(group), flagged, len(group_flags), rate, trend, _top_name(group_flags)))

        rows.sort(key=lambda r: (-r[5], r[1], r[0]))
        return rows

    def _surgeon_rows(self, current, prior, current_flags, prior_flags) -> List[SurgeonFlagRow]:
        return [
            SurgeonFlagRow(
                surgeon_id=key,
                name=label,
                cases=cases,
                flagged_cases=flagged,
                flags=flag_count,
                rate=self._round(rate),
                trend=self._round(trend),
                top_flag=top,
            )
            for key, label, cases, flagged, flag_count, rate, trend, top in self._group_rows(
                "surgeon_id", current, prior, current_flags, prior_flags
            )
            if flag_count > 0
        ]

    def _room_rows(self, current, prior, current_flags, prior_flags) -> List[RoomFlagRow]:
        return [
            RoomFlagRow(
                room_id=key,
                name=label,
                cases=cases,
                flagged_cases=flagged,
                flags=flag_count,
                rate=self._round(rate),
                trend=self._round(trend),
                top_issue=top,
            )
            for key, label, cases, flagged, flag_count, rate, trend, top in self._group_rows(
                "room_id", current, prior, current_flags, prior_flags
            )
        ]

    def _weeks(self, current: Sequence[CaseRecord], period: Optional[DateRange]) -> List[date]:
        if period is not None:
            first, last = period.start, period.end
        elif current:
            first = min(c.scheduled_date for c in current)
            last = max(c.scheduled_date for c in current)
        else:
            return []

        weeks = []
        week = _week_start(first)
        while week <= last:
            weeks.append(week)
            week += timedelta(days=7)
        return weeks

    def _sparkline(
        self, current: Sequence[CaseRecord], current_flags: Sequence[Flag], period: Optional[DateRange]
    ) -> SparklineData:
        points = self.settings.sparkline_points
        weeks = self._weeks(current, period)[-points:]

        flagged = {f.case_id for f in current_flags}
        delayed = {f.case_id for f in current_flags if f.flag_type == FlagType.DELAY}

        flag_series: List[float] = []
        delay_series: List[float] = []
        for week in weeks:
            week_cases = [c for c in current if _week_start(c.scheduled_date) == week]
            flag_series.append(
                self._round(stats.safe_rate(sum(1 for c in week_cases if c.id in flagged), len(week_cases)))
            )
            delay_series.append(
                self._round(stats.safe_rate(sum(1 for c in week_cases if c.id in delayed), len(week_cases)))
            )

        padding = [0.0] * (points - len(weeks))
        return SparklineData(flag_rate=padding + flag_series, delay_rate=padding + delay_series)

    def _weekly_trend(
        self, current: Sequence[CaseRecord], current_flags: Sequence[Flag], period: Optional[DateRange]
    ) -> List[WeeklyTrendPoint]:
        case_week = {c.id: _week_start(c.scheduled_date) for c in current}
        threshold: Counter = Counter()
        delay: Counter = Counter()
        for flag in current_flags:
            week = case_week[flag.case_id]
            if flag.flag_type == FlagType.DELAY:
                delay[week] += 1
            else:
                threshold[week] += 1

        return [
            WeeklyTrendPoint(
                week_start=week,
                threshold=threshold[week],
                delay=delay[week],
                total=threshold[week] + delay[week],
            )
            for week in self._weeks(current, period)
        ]

    def _heatmap(self, case_index: Dict[str, CaseRecord], current_flags: Sequence[Flag]) -> List[DayOfWeekRow]:
        rows: Dict[int, DayOfWeekRow] = {}
        for flag in current_flags:
            day_num = case_index[flag.case_id].scheduled_date.isoweekday()
            row = rows.get(day_num)
            if row is None:
                row = DayOfWeekRow(day=DAY_NAMES[day_num - 1], day_num=day_num)
                rows[day_num] = row

            if flag.flag_type == FlagType.DELAY:
                row.delay += 1
            elif flag.category is not None:
                bucket = flag.category.value
                setattr(row, bucket, getattr(row, bucket) + 1)
            row.total += 1

        return [rows[k] for k in sorted(rows)]

    def _recent_cases(self, case_index: Dict[str, CaseRecord], current_flags: Sequence[Flag]) -> List[FlaggedCase]:
        by_case: Dict[str, List[Flag]] = {}
        for flag in current_flags:
            by_case.setdefault(flag.case_id, []).append(flag)

        ordered = sorted(
            (case_index[case_id] for case_id in by_case),
            key=lambda c: (c.scheduled_date, c.case_number or "", c.id),
            reverse=True,
        )

        recent = []
        for case in ordered[: self.settings.recent_cases_limit]:
            case_flags = sorted(by_case[case.id], key=lambda f: (SEVERITY_ORDER[f.severity], f.name))
            recent.append(
                FlaggedCase(
                    case_id=case.id,
                    case_number=case.case_number,
                    scheduled_date=case.scheduled_date,
                    surgeon=case.surgeon_label,
                    room=case.room_label,
                    flags=[
                        CaseFlagSummary(flag_type=f.flag_type, name=f.name, severity=f.severity)
                        for f in case_flags
                    ],
                )
            )
        return recent

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _split_cases(
        self, cases: Iterable[CaseRecord], period: Optional[DateRange], facility_id: Optional[str]
    ) -> Tuple[List[CaseRecord], List[CaseRecord]]:
        unique = self._unique(cases)
        if facility_id is not None:
            foreign = [c for c in unique if c.facility_id != facility_id]
            if foreign:
                logger.warning(f"Ignoring {len(foreign)} case(s) not belonging to facility {facility_id}")
            unique = [c for c in unique if c.facility_id == facility_id]

        if period is None:
            return unique, []

        previous = period.previous()
        current = [c for c in unique if period.contains(c.scheduled_date)]
        prior = [c for c in unique if previous.contains(c.scheduled_date)]
        return current, prior

    @staticmethod
    def _unique(cases: Iterable[CaseRecord]) -> List[CaseRecord]:
        by_id: Dict[str, CaseRecord] = {}
        for case in cases:
            by_id.setdefault(case.id, case)
        return sorted(by_id.values(), key=lambda c: (c.scheduled_date, c.id))

    @staticmethod
    def _sorted_flags(flags: Iterable[Flag]) -> List[Flag]:
        return sorted(flags, key=lambda f: (f.case_id, f.flag_type.value, f.rule_id or "", f.idempotency_key))

    @staticmethod
    def _diagnostic(rule_id: str, case_id: Optional[str], error: FlagEngineError) -> SkipDiagnostic:
        return SkipDiagnostic(rule_id=rule_id, case_id=case_id, reason=error.reason, detail=str(error))

    def _display_flag(self, flag: Flag) -> Flag:
        return flag.model_copy(
            update={
                "metric_value": self._round(flag.metric_value) if flag.metric_value is not None else None,
                "effective_threshold": (
                    self._round(flag.effective_threshold) if flag.effective_threshold is not None else None
                ),
            }
        )

    def _round(self, value: float) -> float:
        return round(value, self.settings.display_precision)
