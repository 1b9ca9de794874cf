"""
Unit tests for rule parsing, loading and working-set selection.
"""

from datetime import datetime

import pytest

from caseflags.core.exceptions import MalformedRuleError
from caseflags.data.rules import load_rules, parse_rule, working_set
from caseflags.data.schema import FacilityOwner, GlobalOwner, ThresholdType


def _record(**overrides):
    record = {
        "id": "r1",
        "facility_id": "fac-1",
        "name": "Long case",
        "category": "timing",
        "metric": "total_case_time",
        "operator": "gt",
        "threshold_type": "absolute",
        "threshold_value": 180,
        "severity": "warning",
    }
    record.update(overrides)
    return record


def test_parse_rule_builds_facility_owner():
    rule = parse_rule(_record())
    assert isinstance(rule.owner, FacilityOwner)
    assert rule.owner.facility_id == "fac-1"
    assert rule.threshold_type == ThresholdType.ABSOLUTE


def test_parse_rule_null_facility_is_global():
    rule = parse_rule(_record(facility_id=None))
    assert isinstance(rule.owner, GlobalOwner)
    assert not rule.owned_by("fac-1")


def test_between_requires_both_bounds():
    with pytest.raises(MalformedRuleError):
        parse_rule(_record(threshold_type="between", threshold_value=10))
    with pytest.raises(MalformedRuleError):
        parse_rule(_record(threshold_type="between", threshold_value=10, threshold_value_max=5))

    rule = parse_rule(_record(threshold_type="between", threshold_value=10, threshold_value_max=20))
    assert rule.threshold_value_max == 20


def test_non_between_rejects_max_bound():
    with pytest.raises(MalformedRuleError) as exc:
        parse_rule(_record(threshold_value_max=300))
    assert exc.value.reason == "malformed_rule"


def test_load_rules_drops_malformed_unless_strict():
    records = [_record(id="ok"), _record(id="bad", threshold_type="unknown")]

    rules = load_rules(records)
    assert [r.id for r in rules] == ["ok"]

    with pytest.raises(MalformedRuleError):
        load_rules(records, strict=True)


def test_working_set_filters_and_sorts():
    rules = load_rules(
        [
            _record(id="b"),
            _record(id="a"),
            _record(id="disabled", is_enabled=False),
            _record(id="inactive", is_active=False),
            _record(id="deleted", deleted_at=datetime(2024, 1, 1)),
            _record(id="global", facility_id=None),
            _record(id="other", facility_id="fac-2"),
        ]
    )

    assert [r.id for r in working_set(rules, "fac-1")] == ["a", "b"]
