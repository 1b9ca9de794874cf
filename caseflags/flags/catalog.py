"""
Metric catalog.

Holds the static metric definitions shipped with the engine and
synthesizes per-facility cost-category metrics. Rules resolve their metric
through a FacilityMetricContext built once per facility per run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from caseflags.core.exceptions import MetricNotFoundError
from caseflags.data.schema import CostCategory, FlagRule, MetricCategory

from .schema import (
    CatalogEntry,
    MetricDataType,
    MetricDefinition,
    MetricSource,
    StaticEntry,
    SynthesizedEntry,
)

logger = logging.getLogger(__name__)

COST_CATEGORY_PREFIX = "cost_category_"

# Core milestones expected in every case, in sequence order.
CORE_MILESTONE_SEQUENCE: Tuple[str, ...] = (
    "patient_in",
    "anes_start",
    "anes_end",
    "prep_drape_complete",
    "incision",
    "closing",
    "closing_complete",
    "patient_out",
)


def _timing(metric_id: str, name: str, start: str, end: str) -> MetricDefinition:
    return MetricDefinition(
        id=metric_id,
        name=name,
        category=MetricCategory.TIMING,
        data_type=MetricDataType.MINUTES,
        source=MetricSource.MILESTONE_DELTA,
        start_milestone=start,
        end_milestone=end,
    )


def _financial(
    metric_id: str,
    name: str,
    data_type: MetricDataType = MetricDataType.CURRENCY,
    source: MetricSource = MetricSource.COMPLETION_STAT,
    supports_median: bool = True,
) -> MetricDefinition:
    return MetricDefinition(
        id=metric_id,
        name=name,
        category=MetricCategory.FINANCIAL,
        data_type=data_type,
        source=source,
        supports_median=supports_median,
        allow_non_positive=True,
    )


STATIC_METRICS: Tuple[MetricDefinition, ...] = (
    # Timing
    _timing("total_case_time", "Total Case Time", "patient_in", "patient_out"),
    _timing("surgical_time", "Surgical Time", "incision", "closing"),
    _timing("pre_op_time", "Pre-Op Time", "patient_in", "incision"),
    _timing("anesthesia_time", "Anesthesia Induction", "anes_start", "anes_end"),
    _timing("closing_time", "Closing Time", "closing", "closing_complete"),
    _timing("emergence_time", "Emergence Time", "closing_complete", "patient_out"),
    _timing("prep_to_incision", "Prep to Incision", "prep_drape_complete", "incision"),
    # Efficiency
    MetricDefinition(
        id="turnover_time",
        name="Room Turnover",
        category=MetricCategory.EFFICIENCY,
        data_type=MetricDataType.MINUTES,
        source=MetricSource.COMPUTED,
    ),
    MetricDefinition(
        id="fcots_delay",
        name="First Case Delay",
        category=MetricCategory.EFFICIENCY,
        data_type=MetricDataType.MINUTES,
        source=MetricSource.COMPUTED,
        supports_median=False,
        allow_non_positive=True,
    ),
    MetricDefinition(
        id="surgeon_readiness_gap",
        name="Surgeon Readiness Gap",
        category=MetricCategory.EFFICIENCY,
        data_type=MetricDataType.MINUTES,
        source=MetricSource.MILESTONE_DELTA,
        start_milestone="prep_drape_complete",
        end_milestone="incision",
    ),
    # No recorded milestone pair marks a callback; rules need a milestone override.
    MetricDefinition(
        id="callback_delay",
        name="Callback Delay",
        category=MetricCategory.EFFICIENCY,
        data_type=MetricDataType.MINUTES,
        source=MetricSource.COMPUTED,
    ),
    MetricDefinition(
        id="room_idle_gap",
        name="Room Idle Gap",
        category=MetricCategory.EFFICIENCY,
        data_type=MetricDataType.MINUTES,
        source=MetricSource.COMPUTED,
    ),
    # Financial
    _financial("case_profit", "Case Profit"),
    _financial("case_margin", "Case Margin", data_type=MetricDataType.PERCENTAGE),
    _financial("profit_per_minute", "Profit per Minute"),
    _financial("total_case_cost", "Total Case Cost"),
    _financial(
        "reimbursement_variance",
        "Reimbursement Variance",
        data_type=MetricDataType.PERCENTAGE,
        supports_median=False,
    ),
    _financial("or_time_cost", "OR Time Cost"),
    _financial(
        "excess_time_cost",
        "Excess Time Cost",
        source=MetricSource.COMPUTED,
        supports_median=False,
    ),
    # Quality
    MetricDefinition(
        id="missing_milestones",
        name="Missing Milestones",
        category=MetricCategory.QUALITY,
        data_type=MetricDataType.COUNT,
        source=MetricSource.MILESTONE_COUNT,
        supports_median=False,
        allow_non_positive=True,
    ),
    MetricDefinition(
        id="milestone_out_of_order",
        name="Milestone Sequence Error",
        category=MetricCategory.QUALITY,
        data_type=MetricDataType.COUNT,
        source=MetricSource.MILESTONE_COUNT,
        supports_median=False,
        allow_non_positive=True,
    ),
)


def cost_category_metric_id(category_id: str) -> str:
    return f"{COST_CATEGORY_PREFIX}{category_id}"


def parse_cost_category_metric_id(metric_id: str) -> Optional[str]:
    """Return the category id encoded in a dynamic metric id, if any."""
    if not metric_id.startswith(COST_CATEGORY_PREFIX):
        return None
    category_id = metric_id[len(COST_CATEGORY_PREFIX):]
    return category_id or None


class MetricCatalog:
    """
    Registry of static metric definitions.

    Static entries are shared by every facility. Dynamic entries are only
    created through `for_facility`, never registered here.
    """

    def __init__(self, definitions: Iterable[MetricDefinition] = STATIC_METRICS) -> None:
        self._static: Dict[str, StaticEntry] = {}
        for definition in definitions:
            self._static[definition.id] = StaticEntry(definition=definition)

    def get(self, metric_id: str) -> Optional[StaticEntry]:
        return self._static.get(metric_id)

    def by_category(self, category: MetricCategory) -> List[MetricDefinition]:
        return [e.definition for e in self._static.values() if e.definition.category == category]

    def __contains__(self, metric_id: str) -> bool:
        return metric_id in self._static

    def __len__(self) -> int:
        return len(self._static)

    def for_facility(
        self, facility_id: Optional[str], categories: Iterable[CostCategory] = ()
    ) -> "FacilityMetricContext":
        """Build the resolution context for one facility."""
        owned = {}
        for category in categories:
            if facility_id is not None and category.facility_id != facility_id:
                logger.warning(
                    f"Ignoring cost category {category.id} of facility "
                    f"{category.facility_id} while evaluating {facility_id}"
                )
                continue
            owned[category.id] = category
        return FacilityMetricContext(catalog=self, facility_id=facility_id, categories=owned)

    def resolve(self, metric_id: str, context: "FacilityMetricContext") -> CatalogEntry:
        """
        Resolve a metric id for a facility.

        Raises:
            MetricNotFoundError: If the id is neither static nor a known
                cost category of the facility
        """
        entry = self._static.get(metric_id)
        if entry is not None:
            return entry

        category_id = parse_cost_category_metric_id(metric_id)
        if category_id is not None:
            return context.synthesize(category_id)

        raise MetricNotFoundError(f"Unknown metric '{metric_id}'")


@dataclass
class FacilityMetricContext:
    """
    Metric resolution scoped to one facility and one evaluation run.

    Synthesized entries are cached here and die with the context, so they
    are never reused across facilities.
    """

    catalog: MetricCatalog
    facility_id: Optional[str]
    categories: Dict[str, CostCategory] = field(default_factory=dict)
    _synthesized: Dict[str, SynthesizedEntry] = field(default_factory=dict, init=False, repr=False)

    def synthesize(self, category_id: str) -> SynthesizedEntry:
        cached = self._synthesized.get(category_id)
        if cached is not None:
            return cached

        category = self.categories.get(category_id)
        if category is None:
            raise MetricNotFoundError(
                f"Cost category '{category_id}' not configured for facility {self.facility_id}"
            )

        definition = MetricDefinition(
            id=cost_category_metric_id(category_id),
            name=f"{category.name} Cost",
            category=MetricCategory.FINANCIAL,
            data_type=MetricDataType.CURRENCY,
            source=MetricSource.COMPLETION_STAT,
            cost_category_id=category_id,
            allow_non_positive=True,
        )
        entry = SynthesizedEntry(
            definition=definition,
            facility_id=category.facility_id,
            cost_category_id=category_id,
        )
        self._synthesized[category_id] = entry
        return entry

    def resolve(self, metric_id: str) -> CatalogEntry:
        return self.catalog.resolve(metric_id, self)

    def resolve_rule(self, rule: FlagRule) -> MetricDefinition:
        """
        Resolve the effective metric definition for a rule.

        A rule tied to a cost category resolves to that category's metric;
        a milestone override turns the metric into a milestone delta over
        the given pair.

        Raises:
            MetricNotFoundError: If the metric cannot be resolved
        """
        if rule.cost_category_id:
            definition = self.synthesize(rule.cost_category_id).definition
        else:
            definition = self.resolve(rule.metric).definition

        if rule.start_milestone and rule.end_milestone:
            definition = definition.model_copy(
                update={
                    "source": MetricSource.MILESTONE_DELTA,
                    "start_milestone": rule.start_milestone,
                    "end_milestone": rule.end_milestone,
                }
            )
        return definition


default_catalog = MetricCatalog()


def resolve_metric(metric_id: str, context: FacilityMetricContext) -> MetricDefinition:
    """Resolve a metric id to its definition within a facility context."""
    return context.resolve(metric_id).definition
