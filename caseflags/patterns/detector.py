"""
Pattern detection over aggregated flag data.

Design:
- Pure function of an AggregatedResult: no case data, no I/O.
- Six independent detectors run in a fixed order; each emits at most one
  pattern, so output order is stable.
- Every threshold comes from PatternConfig.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Callable, List, Optional

from caseflags.flags.aggregator import NO_TOP_ISSUE
from caseflags.flags.schema import AggregatedResult

from .config import PatternConfig
from .schema import DetectedPattern, PatternSeverity, PatternType

logger = logging.getLogger(__name__)


@dataclass
class PatternDetector:
    """
    Heuristic detector for actionable flag patterns.

    Usage:
        patterns = PatternDetector().detect_patterns(aggregated)
    """

    config: Optional[PatternConfig] = None

    def __post_init__(self) -> None:
        self.config = self.config or PatternConfig()

    def detect_patterns(self, aggregated: AggregatedResult) -> List[DetectedPattern]:
        total_flags = aggregated.summary.total_flags
        if total_flags < self.config.min_flags_for_pattern:
            logger.debug(
                f"Pattern detection skipped: {total_flags} flag(s) < "
                f"{self.config.min_flags_for_pattern}"
            )
            return []

        detectors: List[Callable[[AggregatedResult], Optional[DetectedPattern]]] = [
            self._day_spike,
            self._equipment_cascade,
            self._trend_improvement,
            self._trend_deterioration,
            self._room_concentration,
            self._recurring_surgeon,
        ]

        patterns = []
        for detector in detectors:
            pattern = detector(aggregated)
            if pattern is not None:
                patterns.append(pattern)

        logger.info(f"Detected {len(patterns)} pattern(s) from {total_flags} flag(s)")
        return patterns

    def _day_spike(self, aggregated: AggregatedResult) -> Optional[DetectedPattern]:
        """
        Weekday whose flag count dwarfs the mean of the other flagged weekdays.

        Weekdays without flags have no heatmap row and count as zero, so a
        single flagged weekday is compared against a mean of 0.
        """
        heatmap = aggregated.day_of_week_heatmap
        if not heatmap:
            return None

        grand_total = sum(row.total for row in heatmap)
        best = None
        for row in sorted(heatmap, key=lambda r: (-r.total, r.day_num)):
            others = len(heatmap) - 1
            others_mean = (grand_total - row.total) / others if others else 0.0
            if row.total < self.config.day_spike_min_flags:
                break
            if row.total > self.config.day_spike_multiplier * others_mean:
                best = (row, others_mean)
                break

        if best is None:
            return None

        row, others_mean = best
        counts = row.category_counts()
        top_category = min(counts, key=lambda name: (-counts[name], name))
        ratio = row.total / others_mean if others_mean > 0 else None
        metric = f"{ratio:.1f}x" if ratio is not None else f"{row.total} flags"

        # Double the configured multiplier escalates to critical.
        critical = ratio is None or ratio > 2 * self.config.day_spike_multiplier
        return DetectedPattern(
            type=PatternType.DAY_SPIKE,
            title=f"{row.day} Spike",
            description=(
                f"{row.day} carries {row.total} flags against an average of "
                f"{others_mean:.1f} on other days. {counts[top_category]} of "
                f"{row.total} are {top_category} flags."
            ),
            severity=PatternSeverity.CRITICAL if critical else PatternSeverity.WARNING,
            metric=metric,
        )

    def _equipment_cascade(self, aggregated: AggregatedResult) -> Optional[DetectedPattern]:
        """One issue topping the flag list in several rooms at once."""
        rooms_by_issue = Counter(
            row.top_issue for row in aggregated.room_flags if row.flags > 0 and row.top_issue != NO_TOP_ISSUE
        )
        if not rooms_by_issue:
            return None

        issue, rooms = min(rooms_by_issue.items(), key=lambda item: (-item[1], item[0]))
        if rooms < self.config.cascade_min_rooms:
            return None

        return DetectedPattern(
            type=PatternType.EQUIPMENT_CASCADE,
            title=f"{issue} Across Rooms",
            description=(
                f"{issue} is the most frequent flag in {rooms} rooms, "
                f"suggesting a shared upstream cause."
            ),
            severity=PatternSeverity.WARNING,
            metric=f"{rooms} rooms",
        )

    def _trend_improvement(self, aggregated: AggregatedResult) -> Optional[DetectedPattern]:
        trend = aggregated.summary.flag_rate_trend
        if trend > -self.config.trend_min_delta:
            return None
        return DetectedPattern(
            type=PatternType.TREND_IMPROVEMENT,
            title="Flag Rate Improving",
            description=(
                f"Flag rate is down {abs(trend):.1f} points against the prior period "
                f"(now {aggregated.summary.flag_rate:.1f}%)."
            ),
            severity=PatternSeverity.GOOD,
            metric=f"{trend:+.1f} pts",
        )

    def _trend_deterioration(self, aggregated: AggregatedResult) -> Optional[DetectedPattern]:
        trend = aggregated.summary.flag_rate_trend
        if trend < self.config.trend_min_delta:
            return None
        return DetectedPattern(
            type=PatternType.TREND_DETERIORATION,
            title="Flag Rate Rising",
            description=(
                f"Flag rate is up {trend:.1f} points against the prior period "
                f"(now {aggregated.summary.flag_rate:.1f}%). Review rules for emerging issues."
            ),
            severity=PatternSeverity.WARNING,
            metric=f"{trend:+.1f} pts",
        )

    def _room_concentration(self, aggregated: AggregatedResult) -> Optional[DetectedPattern]:
        """A single room holding a large share of all flags."""
        rooms = aggregated.room_flags
        total_flags = aggregated.summary.total_flags
        if len(rooms) < 2 or total_flags <= 0:
            return None

        room = min(rooms, key=lambda r: (-r.flags, r.name, r.room_id))
        share = room.flags / total_flags
        if share < self.config.room_concentration_share:
            return None

        case_share = room.cases / aggregated.summary.total_cases if aggregated.summary.total_cases else 0.0
        return DetectedPattern(
            type=PatternType.ROOM_CONCENTRATION,
            title=f"{room.name} Flag Concentration",
            description=(
                f"{room.name} accounts for {share * 100:.0f}% of all flags while handling "
                f"{case_share * 100:.0f}% of cases. Top issue: {room.top_issue}."
            ),
            severity=PatternSeverity.CRITICAL,
            metric=f"{share * 100:.0f}%",
        )

    def _recurring_surgeon(self, aggregated: AggregatedResult) -> Optional[DetectedPattern]:
        """Surgeon flagged far more often than the facility overall."""
        facility_rate = aggregated.summary.flag_rate
        if facility_rate <= 0:
            return None

        cutoff = facility_rate * self.config.surgeon_rate_multiplier
        candidates = [
            s for s in aggregated.surgeon_flags
            if s.rate > cutoff and s.cases >= self.config.surgeon_min_cases
        ]
        if not candidates:
            return None

        surgeon = min(candidates, key=lambda s: (-s.rate, s.name, s.surgeon_id))
        multiple = surgeon.rate / facility_rate
        return DetectedPattern(
            type=PatternType.RECURRING_SURGEON,
            title=f"{surgeon.name} Flag Pattern",
            description=(
                f"{surgeon.name} has a {surgeon.rate:.0f}% flag rate "
                f"({multiple:.1f}x facility average). Top flag: {surgeon.top_flag}."
            ),
            severity=PatternSeverity.WARNING,
            metric=f"{multiple:.1f}x",
        )


def detect_patterns(
    aggregated: AggregatedResult, config: Optional[PatternConfig] = None
) -> List[DetectedPattern]:
    """Detect patterns with a one-off detector."""
    return PatternDetector(config=config).detect_patterns(aggregated)
