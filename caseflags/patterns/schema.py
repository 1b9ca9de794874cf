"""
Schema definitions for detected patterns.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class PatternType(str, Enum):
    DAY_SPIKE = "day_spike"
    EQUIPMENT_CASCADE = "equipment_cascade"
    TREND_IMPROVEMENT = "trend_improvement"
    TREND_DETERIORATION = "trend_deterioration"
    ROOM_CONCENTRATION = "room_concentration"
    RECURRING_SURGEON = "recurring_surgeon"


class PatternSeverity(str, Enum):
    """Severity of a pattern; "good" marks an improvement."""

    CRITICAL = "critical"
    WARNING = "warning"
    GOOD = "good"


class DetectedPattern(BaseModel):
    """
    A higher-order observation over aggregated flags.

    Fields:
    - type: which detector produced it
    - title: short headline
    - description: one or two sentences for the reader
    - severity: critical, warning or good
    - metric: compact figure backing the pattern (e.g. "5.0x", "+7.5 pts")
    """

    type: PatternType
    title: str = Field(..., min_length=1)
    description: str
    severity: PatternSeverity
    metric: str
