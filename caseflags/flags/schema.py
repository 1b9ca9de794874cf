"""
Schema definitions for flag evaluation and aggregation.

All outputs are deterministic and explainable. Each flag references the
observed metric value and the effective threshold it was compared against;
every skipped (rule, case) pair is reported as a diagnostic.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from caseflags.data.schema import ComparisonScope, MetricCategory, Severity


class MetricSource(str, Enum):
    """Where a metric's value comes from."""

    MILESTONE_DELTA = "milestone_delta"
    COMPLETION_STAT = "completion_stat"
    COMPUTED = "computed"
    MILESTONE_COUNT = "milestone_count"


class MetricDataType(str, Enum):
    """Unit family of a metric."""

    MINUTES = "minutes"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    COUNT = "count"


class MetricDefinition(BaseModel):
    """
    Definition of a single metric.

    Fields:
    - id: metric id referenced by rules
    - name: display name
    - category: metric family
    - data_type: unit family
    - source: how the value is computed
    - start_milestone/end_milestone: milestone pair for milestone deltas
    - supports_median: whether median-based thresholds make sense
    - cost_category_id: set on synthesized cost-category metrics only
    - allow_non_positive: zero/negative values are real data, not bad input
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    category: MetricCategory
    data_type: MetricDataType
    source: MetricSource
    start_milestone: Optional[str] = None
    end_milestone: Optional[str] = None
    supports_median: bool = True
    cost_category_id: Optional[str] = None
    allow_non_positive: bool = False


class StaticEntry(BaseModel):
    """Catalog entry shipped with the engine."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["static"] = "static"
    definition: MetricDefinition


class SynthesizedEntry(BaseModel):
    """Catalog entry generated for one facility's cost category."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["synthesized"] = "synthesized"
    definition: MetricDefinition
    facility_id: str
    cost_category_id: str


CatalogEntry = Annotated[Union[StaticEntry, SynthesizedEntry], Field(discriminator="kind")]


class Baseline(BaseModel):
    """
    Baseline statistics for one metric over one scoped population.

    Fields:
    - facility_id/metric_id/scope/scope_key: identity of the population
    - procedure_id: set when the population is narrowed to one procedure
    - count: number of values used
    - median: middle of the sorted sample
    - stddev: population standard deviation
    - values: full sorted sample, kept for percentile lookups
    """

    model_config = ConfigDict(frozen=True)

    facility_id: Optional[str] = None
    metric_id: str
    scope: ComparisonScope
    scope_key: str
    procedure_id: Optional[str] = None
    count: int = Field(ge=0)
    median: float
    stddev: float = Field(ge=0.0)
    values: Tuple[float, ...] = ()


class ThresholdResult(BaseModel):
    """Verdict of one rule against one value."""

    flagged: bool
    effective_threshold: Optional[float] = None
    skip_reason: Optional[str] = None


class FlagType(str, Enum):
    """Origin of a flag."""

    THRESHOLD = "threshold"
    DELAY = "delay"


class Flag(BaseModel):
    """
    One rule triggering against one case, or one reported delay.

    Values are kept unrounded; rounding happens in the aggregated output.
    """

    case_id: str
    rule_id: Optional[str] = None
    name: str
    metric_value: Optional[float] = None
    effective_threshold: Optional[float] = None
    severity: Severity
    flag_type: FlagType
    category: Optional[MetricCategory] = None
    comparison_scope: Optional[ComparisonScope] = None
    duration_minutes: Optional[float] = None
    idempotency_key: str


class SkipDiagnostic(BaseModel):
    """A (rule, case) pair the engine could not evaluate, and why."""

    rule_id: str
    case_id: Optional[str] = None
    reason: str
    detail: Optional[str] = None


class SeverityCounts(BaseModel):
    critical: int = 0
    warning: int = 0
    info: int = 0


class FlagSummary(BaseModel):
    """
    Headline KPIs for the period.

    Rates are percentages; trends are percentage-point differences against
    the comparable prior period (positive means more flagging).
    """

    total_cases: int = Field(ge=0)
    flagged_cases: int = Field(ge=0)
    flag_rate: float = Field(ge=0.0, le=100.0)
    flag_rate_trend: float = 0.0
    delayed_cases: int = Field(ge=0)
    delay_rate: float = Field(ge=0.0, le=100.0)
    delay_rate_trend: float = 0.0
    total_flags: int = Field(ge=0)
    avg_flags_per_case: float = Field(ge=0.0)
    severity: SeverityCounts = Field(default_factory=SeverityCounts)


class RuleBreakdownRow(BaseModel):
    rule_id: str
    name: str
    severity: Severity
    count: int
    pct: float
    evaluated: int
    skipped: int


class DelayTypeBreakdownRow(BaseModel):
    name: str
    count: int
    pct: float
    avg_duration: Optional[float] = None


class SurgeonFlagRow(BaseModel):
    surgeon_id: str
    name: str
    cases: int
    flagged_cases: int
    flags: int
    rate: float
    trend: float
    top_flag: str


class RoomFlagRow(BaseModel):
    room_id: str
    name: str
    cases: int
    flagged_cases: int
    flags: int
    rate: float
    trend: float
    top_issue: str


class SparklineData(BaseModel):
    """Fixed-length weekly series, oldest first."""

    flag_rate: List[float] = Field(default_factory=list)
    delay_rate: List[float] = Field(default_factory=list)


class WeeklyTrendPoint(BaseModel):
    week_start: date
    threshold: int
    delay: int
    total: int


class DayOfWeekRow(BaseModel):
    """Flag counts for one ISO weekday (1 = Monday)."""

    day: str
    day_num: int = Field(ge=1, le=7)
    timing: int = 0
    efficiency: int = 0
    financial: int = 0
    quality: int = 0
    delay: int = 0
    total: int = 0

    def category_counts(self) -> Dict[str, int]:
        return {
            "timing": self.timing,
            "efficiency": self.efficiency,
            "financial": self.financial,
            "quality": self.quality,
            "delay": self.delay,
        }


class CaseFlagSummary(BaseModel):
    flag_type: FlagType
    name: str
    severity: Severity


class FlaggedCase(BaseModel):
    case_id: str
    case_number: Optional[str] = None
    scheduled_date: date
    surgeon: str
    room: str
    flags: List[CaseFlagSummary]


class AggregatedResult(BaseModel):
    """
    Everything the display layer needs for one facility and period.

    Entirely derived from rules, cases and delays; never persisted here.
    """

    facility_id: Optional[str] = None
    window_id: str
    summary: FlagSummary
    rule_breakdown: List[RuleBreakdownRow] = Field(default_factory=list)
    delay_type_breakdown: List[DelayTypeBreakdownRow] = Field(default_factory=list)
    surgeon_flags: List[SurgeonFlagRow] = Field(default_factory=list)
    room_flags: List[RoomFlagRow] = Field(default_factory=list)
    sparkline: SparklineData = Field(default_factory=SparklineData)
    weekly_trend: List[WeeklyTrendPoint] = Field(default_factory=list)
    day_of_week_heatmap: List[DayOfWeekRow] = Field(default_factory=list)
    recent_flagged_cases: List[FlaggedCase] = Field(default_factory=list)
    flags: List[Flag] = Field(default_factory=list)
    diagnostics: List[SkipDiagnostic] = Field(default_factory=list)
