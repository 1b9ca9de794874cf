"""
Unit tests for pattern detection.
"""

from datetime import date

import pytest

from caseflags.flags.aggregator import FlagAggregator
from caseflags.flags.schema import AggregatedResult, DayOfWeekRow, FlagSummary, RoomFlagRow, SurgeonFlagRow
from caseflags.patterns.config import PatternConfig
from caseflags.patterns.detector import PatternDetector, detect_patterns
from caseflags.patterns.schema import PatternSeverity, PatternType


def _summary(total_flags=36, total_cases=100, flag_rate=20.0, trend=0.0):
    return FlagSummary(
        total_cases=total_cases,
        flagged_cases=int(total_cases * flag_rate / 100),
        flag_rate=flag_rate,
        flag_rate_trend=trend,
        delayed_cases=0,
        delay_rate=0.0,
        total_flags=total_flags,
        avg_flags_per_case=1.0,
    )


def _result(summary=None, heatmap=(), rooms=(), surgeons=()):
    return AggregatedResult(
        facility_id="fac-1",
        window_id="all",
        summary=summary or _summary(),
        day_of_week_heatmap=list(heatmap),
        room_flags=list(rooms),
        surgeon_flags=list(surgeons),
    )


def _day(name, num, timing=0, delay=0):
    return DayOfWeekRow(day=name, day_num=num, timing=timing, delay=delay, total=timing + delay)


def _room(room_id, flags, top_issue, cases=20):
    return RoomFlagRow(
        room_id=room_id,
        name=f"OR {room_id}",
        cases=cases,
        flagged_cases=flags,
        flags=flags,
        rate=flags / cases * 100,
        trend=0.0,
        top_issue=top_issue,
    )


def _types(patterns):
    return [p.type for p in patterns]


def test_monday_spike():
    heatmap = [
        _day("Mon", 1, timing=15, delay=5),
        _day("Tue", 2, timing=4),
        _day("Wed", 3, timing=5),
        _day("Thu", 4, timing=3),
        _day("Fri", 5, timing=4),
    ]
    patterns = detect_patterns(_result(heatmap=heatmap))

    assert _types(patterns) == [PatternType.DAY_SPIKE]
    spike = patterns[0]
    assert spike.title == "Mon Spike"
    assert spike.metric == "5.0x"
    assert spike.severity == PatternSeverity.CRITICAL
    assert "15 of 20 are timing" in spike.description


def test_no_spike_when_days_are_even():
    heatmap = [_day("Mon", 1, timing=6), _day("Tue", 2, timing=5), _day("Wed", 3, timing=7)]
    assert detect_patterns(_result(heatmap=heatmap)) == []


def test_spike_needs_minimum_flags():
    heatmap = [_day("Mon", 1, timing=4), _day("Tue", 2, timing=1), _day("Wed", 3, timing=1)]
    assert detect_patterns(_result(summary=_summary(total_flags=6), heatmap=heatmap)) == []


def test_spike_on_single_flagged_day():
    heatmap = [_day("Mon", 1, timing=6)]
    patterns = detect_patterns(_result(summary=_summary(total_flags=6), heatmap=heatmap))

    assert _types(patterns) == [PatternType.DAY_SPIKE]
    spike = patterns[0]
    assert spike.metric == "6 flags"
    assert spike.severity == PatternSeverity.CRITICAL
    assert "average of 0.0 on other days" in spike.description


def test_below_min_flags_detects_nothing():
    heatmap = [_day("Mon", 1, timing=2)]
    rooms = [_room("1", 2, "Long Case"), _room("2", 0, "N/A")]
    assert detect_patterns(_result(summary=_summary(total_flags=2, trend=30.0), heatmap=heatmap, rooms=rooms)) == []


def test_equipment_cascade_across_rooms():
    rooms = [
        _room("1", 4, "Equipment Delay"),
        _room("2", 4, "Equipment Delay"),
        _room("3", 4, "Equipment Delay"),
        _room("4", 4, "Long Case"),
    ]
    patterns = detect_patterns(_result(summary=_summary(total_flags=16), rooms=rooms))

    assert _types(patterns) == [PatternType.EQUIPMENT_CASCADE]
    assert patterns[0].metric == "3 rooms"
    assert patterns[0].title == "Equipment Delay Across Rooms"


@pytest.mark.parametrize(
    "trend,expected",
    [
        (-7.5, [PatternType.TREND_IMPROVEMENT]),
        (6.0, [PatternType.TREND_DETERIORATION]),
        (4.9, []),
        (-4.9, []),
    ],
)
def test_trend_patterns(trend, expected):
    patterns = detect_patterns(_result(summary=_summary(trend=trend)))
    assert _types(patterns) == expected


def test_trend_improvement_is_good():
    pattern = detect_patterns(_result(summary=_summary(trend=-7.5)))[0]
    assert pattern.severity == PatternSeverity.GOOD
    assert pattern.metric == "-7.5 pts"


def test_room_concentration():
    rooms = [_room("1", 18, "Long Case"), _room("2", 10, "Turnover"), _room("3", 8, "N/A")]
    patterns = detect_patterns(_result(rooms=rooms))

    assert _types(patterns) == [PatternType.ROOM_CONCENTRATION]
    assert patterns[0].metric == "50%"
    assert patterns[0].severity == PatternSeverity.CRITICAL


def test_recurring_surgeon():
    surgeons = [
        SurgeonFlagRow(
            surgeon_id="s1", name="Dr. A", cases=10, flagged_cases=5, flags=6, rate=50.0, trend=0.0, top_flag="Long Case"
        ),
        SurgeonFlagRow(
            surgeon_id="s2", name="Dr. B", cases=2, flagged_cases=2, flags=2, rate=100.0, trend=0.0, top_flag="Long Case"
        ),
    ]
    patterns = detect_patterns(_result(summary=_summary(flag_rate=20.0), surgeons=surgeons))

    assert _types(patterns) == [PatternType.RECURRING_SURGEON]
    assert patterns[0].title == "Dr. A Flag Pattern"
    assert patterns[0].metric == "2.5x"


def test_patterns_follow_detector_order():
    heatmap = [_day("Mon", 1, timing=20), _day("Tue", 2, timing=4), _day("Wed", 3, timing=4)]
    rooms = [_room("1", 20, "Long Case"), _room("2", 8, "Long Case"), _room("3", 0, "N/A")]
    patterns = detect_patterns(_result(summary=_summary(total_flags=28, trend=8.0), heatmap=heatmap, rooms=rooms))

    assert _types(patterns) == [
        PatternType.DAY_SPIKE,
        PatternType.TREND_DETERIORATION,
        PatternType.ROOM_CONCENTRATION,
    ]


def test_custom_config_thresholds():
    detector = PatternDetector(config=PatternConfig(trend_min_delta=10.0))
    assert detector.detect_patterns(_result(summary=_summary(trend=8.0))) == []


def test_patterns_invariant_to_case_order(make_case, make_rule, engine_settings, facility_id):
    cases = [make_case(f"m{i}", total_minutes=200) for i in range(6)]
    cases += [make_case(f"t{i}", day=date(2024, 1, 2), total_minutes=100) for i in range(6)]
    aggregator = FlagAggregator(settings=engine_settings)

    forward = detect_patterns(aggregator.aggregate([make_rule()], cases, [], facility_id=facility_id))
    backward = detect_patterns(aggregator.aggregate([make_rule()], cases[::-1], [], facility_id=facility_id))

    assert forward == backward
