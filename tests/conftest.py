"""
Pytest configuration and shared fixtures.

Provides record factories for cases, rules and delays so tests can build
small, explicit scenarios.
"""

import pytest
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Optional

from caseflags.core.config import EngineConfig
from caseflags.data.schema import (
    CaseRecord,
    ComparisonScope,
    FacilityOwner,
    FlagRule,
    ManualDelay,
    MetricCategory,
    Operator,
    Severity,
    ThresholdType,
)

FACILITY_ID = "fac-1"

# 2024-01-01 is a Monday.
MONDAY = date(2024, 1, 1)


@pytest.fixture
def facility_id() -> str:
    return FACILITY_ID


@pytest.fixture
def engine_settings() -> EngineConfig:
    """
    Engine settings pinned for tests.

    Independent of CASEFLAGS_* environment overrides.
    """
    return EngineConfig(
        min_baseline_samples=1,
        sparkline_points=4,
        recent_cases_limit=5,
        turnover_max_minutes=180.0,
        display_precision=1,
    )


@pytest.fixture
def make_case() -> Callable[..., CaseRecord]:
    """
    Factory for completed cases.

    `total_minutes` sets patient_in at 08:00 and patient_out that many
    minutes later; `milestones` overrides the generated timestamps.
    """

    def _make(
        case_id: str,
        day: date = MONDAY,
        total_minutes: Optional[float] = None,
        surgeon_id: Optional[str] = "surg-1",
        room_id: Optional[str] = "room-1",
        milestones: Optional[Dict[str, datetime]] = None,
        **kwargs: Any,
    ) -> CaseRecord:
        stamps: Dict[str, datetime] = {}
        if total_minutes is not None:
            start = datetime(day.year, day.month, day.day, 8, 0)
            stamps["patient_in"] = start
            stamps["patient_out"] = start + timedelta(minutes=total_minutes)
        stamps.update(milestones or {})

        return CaseRecord(
            id=case_id,
            facility_id=kwargs.pop("facility_id", FACILITY_ID),
            scheduled_date=day,
            case_number=kwargs.pop("case_number", case_id.upper()),
            surgeon_id=surgeon_id,
            surgeon_name=kwargs.pop("surgeon_name", f"Dr. {surgeon_id}" if surgeon_id else None),
            room_id=room_id,
            room_name=kwargs.pop("room_name", f"OR {room_id}" if room_id else None),
            milestones=stamps,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_rule() -> Callable[..., FlagRule]:
    """Factory for facility-owned rules (absolute, gt, warning by default)."""

    def _make(
        rule_id: str = "rule-1",
        metric: str = "total_case_time",
        threshold_type: ThresholdType = ThresholdType.ABSOLUTE,
        threshold_value: float = 180.0,
        **kwargs: Any,
    ) -> FlagRule:
        return FlagRule(
            id=rule_id,
            owner=FacilityOwner(facility_id=kwargs.pop("facility_id", FACILITY_ID)),
            name=kwargs.pop("name", f"Rule {rule_id}"),
            category=kwargs.pop("category", MetricCategory.TIMING),
            metric=metric,
            operator=kwargs.pop("operator", Operator.GT),
            threshold_type=threshold_type,
            threshold_value=threshold_value,
            comparison_scope=kwargs.pop("comparison_scope", ComparisonScope.FACILITY),
            severity=kwargs.pop("severity", Severity.WARNING),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_delay() -> Callable[..., ManualDelay]:
    def _make(case_id: str, name: str = "Equipment Delay", minutes: Optional[float] = 15.0, **kwargs: Any) -> ManualDelay:
        return ManualDelay(case_id=case_id, delay_type_name=name, duration_minutes=minutes, **kwargs)

    return _make


def pytest_configure(config):
    """
    Pytest hook for custom configuration.

    Registers custom markers used throughout tests.
    """
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (deferred CI)"
    )
