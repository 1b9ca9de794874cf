"""
Canonical input records for the flag engine.

Cases, rules, manual delays and cost categories arrive here already
hydrated by upstream collaborators. The engine treats all of them as
read-only.

Design rationale:
- Rule ownership is an explicit tagged union instead of a nullable
  facility id, so "global template" and "facility rule" never share a
  null-check.
- "between" rules carry both bounds; every other threshold type carries
  exactly one. Violations fail validation at load time.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from enum import Enum
from typing import Annotated, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Operator(str, Enum):
    """Comparison operators available to rules."""

    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"


class ThresholdType(str, Enum):
    """How a rule derives its numeric cutoff."""

    MEDIAN_PLUS_SD = "median_plus_sd"
    MEDIAN_PLUS_OFFSET = "median_plus_offset"
    ABSOLUTE = "absolute"
    PERCENTAGE_OF_MEDIAN = "percentage_of_median"
    PERCENTILE = "percentile"
    BETWEEN = "between"


class ComparisonScope(str, Enum):
    """Population a rule's baseline is computed over."""

    PERSONAL = "personal"
    FACILITY = "facility"


class Severity(str, Enum):
    """Severity attached to a flag."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class MetricCategory(str, Enum):
    """Metric families used for grouping and heatmaps."""

    TIMING = "timing"
    EFFICIENCY = "efficiency"
    FINANCIAL = "financial"
    QUALITY = "quality"


class GlobalOwner(BaseModel):
    """Rule template owned by no facility."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["global"] = "global"


class FacilityOwner(BaseModel):
    """Rule configured by one facility."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["facility"] = "facility"
    facility_id: str = Field(..., min_length=1)


RuleOwner = Annotated[Union[GlobalOwner, FacilityOwner], Field(discriminator="kind")]


class FlagRule(BaseModel):
    """
    A facility-configured flag rule.

    Attributes:
        id: Rule identifier
        owner: GlobalOwner or FacilityOwner
        name: Display name, also used as the flag name
        category: Metric category the rule is filed under
        metric: Metric id (static or dynamic cost-category id)
        start_milestone/end_milestone: Optional milestone pair overriding
            the metric's own milestones
        operator: gt, gte, lt or lte (ignored for "between")
        threshold_type: How the cutoff is derived
        threshold_value: Cutoff parameter (lower bound for "between")
        threshold_value_max: Upper bound, "between" only
        comparison_scope: personal (per surgeon) or facility baseline
        severity: info, warning or critical
        is_enabled/is_active/deleted_at: Working-set markers
        cost_category_id: Ties the rule to a dynamic cost-category metric
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    owner: RuleOwner
    name: str = Field(..., min_length=1, max_length=256)
    category: MetricCategory
    metric: str = Field(..., min_length=1)
    start_milestone: Optional[str] = None
    end_milestone: Optional[str] = None
    operator: Operator = Operator.GT
    threshold_type: ThresholdType
    threshold_value: float
    threshold_value_max: Optional[float] = None
    comparison_scope: ComparisonScope = ComparisonScope.FACILITY
    severity: Severity = Severity.WARNING
    is_enabled: bool = True
    is_active: bool = True
    deleted_at: Optional[datetime] = None
    cost_category_id: Optional[str] = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "FlagRule":
        if self.threshold_type == ThresholdType.BETWEEN:
            if self.threshold_value_max is None:
                raise ValueError("'between' rules require threshold_value_max")
            if self.threshold_value_max < self.threshold_value:
                raise ValueError("threshold_value_max must be >= threshold_value")
        elif self.threshold_value_max is not None:
            raise ValueError(
                f"threshold_value_max is only valid for 'between' rules, "
                f"not '{self.threshold_type.value}'"
            )
        if (self.start_milestone is None) != (self.end_milestone is None):
            raise ValueError("milestone override needs both start and end milestones")
        if self.threshold_type == ThresholdType.PERCENTILE and not 0 <= self.threshold_value <= 100:
            raise ValueError("percentile threshold must be within [0, 100]")
        return self

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def in_working_set(self) -> bool:
        return self.is_enabled and self.is_active and not self.is_deleted

    def owned_by(self, facility_id: str) -> bool:
        return isinstance(self.owner, FacilityOwner) and self.owner.facility_id == facility_id


class CompletionStats(BaseModel):
    """
    Financial primitives recorded when a case is completed.

    All fields are optional; formulas over missing primitives yield no value.
    """

    model_config = ConfigDict(frozen=True)

    profit: Optional[float] = None
    reimbursement: Optional[float] = None
    total_debits: Optional[float] = None
    or_time_cost: Optional[float] = None
    total_duration_minutes: Optional[float] = None
    or_hourly_rate: Optional[float] = None


class CaseRecord(BaseModel):
    """
    A completed surgical case with its milestones.

    Attributes:
        id: Case identifier
        facility_id: Owning facility
        scheduled_date: Scheduled date
        scheduled_start: Scheduled start datetime (first-case delay)
        case_number: Optional human-facing number
        surgeon_id/surgeon_name: Surgeon reference and display name
        room_id/room_name: OR room reference and display name
        procedure_id: Procedure type
        milestones: Milestone name -> recorded timestamp
        completion_stats: Optional financial primitives
        expected_reimbursement: Optional expected payment
        category_costs: Cost category id -> amount
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    facility_id: str = Field(..., min_length=1)
    scheduled_date: date
    scheduled_start: Optional[datetime] = None
    case_number: Optional[str] = None
    surgeon_id: Optional[str] = None
    surgeon_name: Optional[str] = None
    room_id: Optional[str] = None
    room_name: Optional[str] = None
    procedure_id: Optional[str] = None
    milestones: Dict[str, datetime] = Field(default_factory=dict)
    completion_stats: Optional[CompletionStats] = None
    expected_reimbursement: Optional[float] = None
    category_costs: Dict[str, float] = Field(default_factory=dict)

    @property
    def surgeon_label(self) -> str:
        return self.surgeon_name or self.surgeon_id or "Unknown"

    @property
    def room_label(self) -> str:
        return self.room_name or self.room_id or "Unknown"


class ManualDelay(BaseModel):
    """A user-reported delay attached to a case."""

    model_config = ConfigDict(frozen=True)

    case_id: str = Field(..., min_length=1)
    delay_type_name: str = Field(..., min_length=1)
    duration_minutes: Optional[float] = Field(default=None, ge=0.0)
    severity: Severity = Severity.WARNING


class CostCategory(BaseModel):
    """A facility cost category feeding dynamic financial metrics."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    facility_id: str = Field(..., min_length=1)


class DateRange(BaseModel):
    """Inclusive date range."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError("date range end precedes start")
        return self

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def previous(self) -> "DateRange":
        """Range of equal length ending the day before this one starts."""
        prev_end = self.start - timedelta(days=1)
        return DateRange(start=prev_end - timedelta(days=self.days - 1), end=prev_end)

    def with_previous(self) -> "DateRange":
        return DateRange(start=self.previous().start, end=self.end)

    @property
    def window_id(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"
