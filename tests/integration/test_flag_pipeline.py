"""
Integration test for the full flag analytics pipeline.

Tests end-to-end flow from stored rules and cases to aggregated KPIs and
detected patterns.
"""

import json
from datetime import date, timedelta
from typing import Dict, List

import pytest

from caseflags.data.rules import load_rules
from caseflags.data.schema import CaseRecord, CostCategory, DateRange, FlagRule, ManualDelay
from caseflags.data.sources import CostCategoryProvider, DataGateway, RuleStore
from caseflags.patterns.schema import PatternType
from caseflags.service import FlagAnalyticsReport, FlagAnalyticsService

PERIOD = DateRange(start=date(2024, 1, 8), end=date(2024, 1, 14))


class InMemoryRuleStore(RuleStore):
    def __init__(self, records: List[Dict]) -> None:
        self.rules = load_rules(records)

    def list_active_rules(self, facility_id: str) -> List[FlagRule]:
        return list(self.rules)


class InMemoryGateway(DataGateway):
    def __init__(self, cases: List[CaseRecord], delays: List[ManualDelay]) -> None:
        self.cases = cases
        self.delays = delays
        self.requested: List[DateRange] = []

    def list_cases(self, facility_id: str, date_range: DateRange) -> List[CaseRecord]:
        self.requested.append(date_range)
        return [c for c in self.cases if c.facility_id == facility_id and date_range.contains(c.scheduled_date)]

    def list_manual_delays(self, facility_id: str, date_range: DateRange) -> List[ManualDelay]:
        case_ids = {c.id for c in self.list_cases(facility_id, date_range)}
        return [d for d in self.delays if d.case_id in case_ids]


class InMemoryCategories(CostCategoryProvider):
    def __init__(self, categories: List[CostCategory]) -> None:
        self.categories = categories

    def list_categories(self, facility_id: str) -> List[CostCategory]:
        return [c for c in self.categories if c.facility_id == facility_id]


def _rule_records():
    return [
        {
            "id": "long-case",
            "facility_id": "fac-1",
            "name": "Long Case",
            "category": "timing",
            "metric": "total_case_time",
            "operator": "gt",
            "threshold_type": "absolute",
            "threshold_value": 180,
            "severity": "warning",
        },
        {
            "id": "implant-cost",
            "facility_id": "fac-1",
            "name": "High Implant Cost",
            "category": "financial",
            "metric": "cost_category_implants",
            "operator": "gt",
            "threshold_type": "absolute",
            "threshold_value": 1000,
            "severity": "critical",
        },
        {
            "id": "template",
            "facility_id": None,
            "name": "Global Template",
            "category": "timing",
            "metric": "total_case_time",
            "threshold_type": "absolute",
            "threshold_value": 1,
        },
        {
            "id": "broken",
            "facility_id": "fac-1",
            "name": "Broken",
            "category": "timing",
            "metric": "total_case_time",
            "threshold_type": "between",
            "threshold_value": 10,
        },
    ]


@pytest.fixture
def pipeline(make_case, make_delay):
    monday = PERIOD.start
    cases = [
        make_case(f"mon-{i}", day=monday, total_minutes=200, surgeon_id="s1", room_id="room-1")
        for i in range(10)
    ]
    cases[0] = make_case(
        "mon-0", day=monday, total_minutes=200, surgeon_id="s1", room_id="room-1", category_costs={"implants": 1500.0}
    )
    for offset in range(1, 5):
        day = monday + timedelta(days=offset)
        cases += [
            make_case(f"wk{offset}-{i}", day=day, total_minutes=100, surgeon_id="s2", room_id="room-2")
            for i in range(2)
        ]
    # Prior week, nothing flagged.
    cases += [make_case(f"prior-{i}", day=date(2024, 1, 2), total_minutes=100) for i in range(4)]
    # Outside both periods.
    cases.append(make_case("ancient", day=date(2023, 6, 1), total_minutes=500))

    delays = [make_delay("wk1-0", "Equipment Delay", 25.0), make_delay("wk2-0", "Equipment Delay", 15.0)]

    gateway = InMemoryGateway(cases, delays)
    service = FlagAnalyticsService(
        rule_store=InMemoryRuleStore(_rule_records()),
        gateway=gateway,
        cost_categories=InMemoryCategories([CostCategory(id="implants", name="Implants", facility_id="fac-1")]),
    )
    return service, gateway


@pytest.mark.integration
class TestFlagAnalyticsPipeline:
    """End-to-end service runs over in-memory collaborators."""

    def test_report_summary(self, pipeline):
        service, gateway = pipeline
        report = service.run("fac-1", PERIOD)

        assert gateway.requested[0] == DateRange(start=date(2024, 1, 1), end=date(2024, 1, 14))

        summary = report.aggregated.summary
        assert summary.total_cases == 18
        assert summary.flagged_cases == 12
        assert summary.flag_rate == 66.7
        assert summary.flag_rate_trend == 66.7
        assert summary.total_flags == 13
        assert summary.delayed_cases == 2
        assert summary.severity.critical == 1

        assert [r.rule_id for r in report.aggregated.rule_breakdown] == ["long-case", "implant-cost"]
        assert report.aggregated.diagnostics == []

    def test_report_patterns(self, pipeline):
        service, _ = pipeline
        report = service.run("fac-1", PERIOD)

        assert [p.type for p in report.patterns] == [
            PatternType.DAY_SPIKE,
            PatternType.TREND_DETERIORATION,
            PatternType.ROOM_CONCENTRATION,
        ]
        assert report.patterns[0].title == "Mon Spike"
        assert report.patterns[2].title == "OR room-1 Flag Concentration"

    def test_heatmap_categories(self, pipeline):
        service, _ = pipeline
        heatmap = service.run("fac-1", PERIOD).aggregated.day_of_week_heatmap

        monday = heatmap[0]
        assert (monday.day, monday.timing, monday.financial, monday.total) == ("Mon", 10, 1, 11)
        assert [(row.day, row.delay) for row in heatmap[1:]] == [("Tue", 1), ("Wed", 1)]

    def test_runs_are_repeatable(self, pipeline):
        service, _ = pipeline
        first = service.run("fac-1", PERIOD)
        second = service.run("fac-1", PERIOD)

        assert first == second
        restored = FlagAnalyticsReport.model_validate(json.loads(first.model_dump_json()))
        assert restored == first

    def test_facility_without_rules(self, make_case):
        gateway = InMemoryGateway([make_case("c1", day=PERIOD.start, total_minutes=300)], [])
        service = FlagAnalyticsService(InMemoryRuleStore([]), gateway, InMemoryCategories([]))

        report = service.run("fac-1", PERIOD)
        assert report.aggregated.summary.total_cases == 1
        assert report.aggregated.flags == []
        assert report.patterns == []

    def test_surgeon_without_prior_cases_has_no_personal_baseline(self, make_case):
        prior_day = date(2024, 1, 2)
        cases = [
            make_case(f"old{i}", day=prior_day, total_minutes=m, surgeon_id="s1")
            for i, m in enumerate([100, 110, 90, 105, 95])
        ]
        cases += [
            make_case("new1", day=PERIOD.start, total_minutes=300, surgeon_id="s9"),
            make_case("new2", day=PERIOD.start, total_minutes=100, surgeon_id="s9"),
        ]
        rules = [
            {
                "id": "personal-long",
                "facility_id": "fac-1",
                "name": "Personal Long Case",
                "category": "timing",
                "metric": "total_case_time",
                "operator": "gt",
                "threshold_type": "median_plus_sd",
                "threshold_value": 0.5,
                "comparison_scope": "personal",
                "severity": "warning",
            }
        ]
        service = FlagAnalyticsService(InMemoryRuleStore(rules), InMemoryGateway(cases, []), InMemoryCategories([]))

        aggregated = service.run("fac-1", PERIOD).aggregated

        assert aggregated.flags == []
        assert sorted((d.case_id, d.reason) for d in aggregated.diagnostics) == [
            ("new1", "insufficient_baseline_data"),
            ("new2", "insufficient_baseline_data"),
        ]
        row = aggregated.rule_breakdown[0]
        assert (row.evaluated, row.skipped) == (0, 2)
