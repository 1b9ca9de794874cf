"""
Flags module: metric resolution, baselines, thresholds, and aggregation.

Implements deterministic rule evaluation over surgical cases and builds the
period KPIs consumed by the pattern detector.
"""

from .aggregator import FlagAggregator
from .baselines import BaselineCalculator, compute_baseline
from .catalog import (
	FacilityMetricContext,
	MetricCatalog,
	cost_category_metric_id,
	default_catalog,
	resolve_metric,
)
from .derivations import ComputedMetricContext
from .resolver import MetricResolver
from .schema import (
	AggregatedResult,
	Baseline,
	DayOfWeekRow,
	Flag,
	FlagSummary,
	FlagType,
	MetricDefinition,
	RoomFlagRow,
	SkipDiagnostic,
	SurgeonFlagRow,
	ThresholdResult,
)
from .thresholds import ThresholdEvaluator, needs_baseline

__all__ = [
	"FlagAggregator",
	"AggregatedResult",
	"Baseline",
	"BaselineCalculator",
	"compute_baseline",
	"ComputedMetricContext",
	"DayOfWeekRow",
	"FacilityMetricContext",
	"Flag",
	"FlagSummary",
	"FlagType",
	"MetricCatalog",
	"MetricDefinition",
	"MetricResolver",
	"RoomFlagRow",
	"SkipDiagnostic",
	"SurgeonFlagRow",
	"ThresholdEvaluator",
	"ThresholdResult",
	"cost_category_metric_id",
	"default_catalog",
	"needs_baseline",
	"resolve_metric",
]
