"""
Flag analytics service.

Wires the collaborators to the engine for one facility and period:

    RuleStore / DataGateway / CostCategoryProvider
        ↓
    FlagAggregator (current period + comparable prior period)
        ↓
    PatternDetector
        ↓
    FlagAnalyticsReport
"""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from caseflags.core.config import EngineConfig
from caseflags.core.logging_config import setup_logging
from caseflags.data.schema import DateRange
from caseflags.data.sources import CostCategoryProvider, DataGateway, RuleStore
from caseflags.flags.aggregator import FlagAggregator
from caseflags.flags.schema import AggregatedResult
from caseflags.patterns.config import PatternConfig
from caseflags.patterns.detector import PatternDetector
from caseflags.patterns.schema import DetectedPattern

logger = logging.getLogger(__name__)


class FlagAnalyticsReport(BaseModel):
    """Aggregated flags and the patterns detected over them."""

    facility_id: str
    date_range: DateRange
    aggregated: AggregatedResult
    patterns: List[DetectedPattern] = Field(default_factory=list)


class FlagAnalyticsService:
    """
    Runs flag analytics for one facility at a time.

    The service holds no per-run state; every `run` rebuilds baselines
    and metric contexts from scratch.
    """

    def __init__(
        self,
        rule_store: RuleStore,
        gateway: DataGateway,
        cost_categories: CostCategoryProvider,
        pattern_config: Optional[PatternConfig] = None,
        engine_config: Optional[EngineConfig] = None,
    ) -> None:
        setup_logging()
        self.rule_store = rule_store
        self.gateway = gateway
        self.cost_categories = cost_categories
        self.aggregator = FlagAggregator(settings=engine_config)
        self.detector = PatternDetector(config=pattern_config)

    def run(self, facility_id: str, date_range: DateRange) -> FlagAnalyticsReport:
        """
        Evaluate, aggregate and detect patterns for a facility and period.

        Args:
            facility_id: Facility to evaluate
            date_range: Current period; the prior period of equal length is
                fetched as well for trends

        Returns:
            FlagAnalyticsReport
        """
        window = date_range.with_previous()
        logger.info(f"Running flag analytics for facility {facility_id} [{date_range.window_id}]")

        rules = self.rule_store.list_active_rules(facility_id)
        cases = self.gateway.list_cases(facility_id, window)
        delays = self.gateway.list_manual_delays(facility_id, window)
        categories = self.cost_categories.list_categories(facility_id)

        aggregated = self.aggregator.aggregate(
            rules,
            cases,
            delays,
            period=date_range,
            facility_id=facility_id,
            cost_categories=categories,
        )
        patterns = self.detector.detect_patterns(aggregated)

        summary = aggregated.summary
        logger.info(
            f"Facility {facility_id}: {summary.total_cases} case(s), "
            f"{summary.flagged_cases} flagged ({summary.flag_rate}%), "
            f"{len(patterns)} pattern(s), {len(aggregated.diagnostics)} diagnostic(s)"
        )

        return FlagAnalyticsReport(
            facility_id=facility_id,
            date_range=date_range,
            aggregated=aggregated,
            patterns=patterns,
        )
