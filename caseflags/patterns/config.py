"""
Configuration for pattern detection.

Every heuristic threshold is a named, validated field so facilities can
tune detection without touching detector code.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class PatternConfig(BaseModel):
	"""
	Pattern detector thresholds.

	Notes:
	- min_flags_for_pattern: below this many flags nothing is reported.
	- day_spike_multiplier: a weekday must exceed this multiple of the other days' mean.
	- day_spike_min_flags: minimum flags on the spiking weekday.
	- cascade_min_rooms: distinct rooms sharing one top issue.
	- trend_min_delta: flag rate change (percentage points) worth reporting.
	- room_concentration_share: share of all flags held by one room.
	- surgeon_rate_multiplier: surgeon rate must exceed this multiple of the facility rate.
	- surgeon_min_cases: minimum cases before a surgeon can be singled out.
	"""

	min_flags_for_pattern: int = Field(3, ge=0)
	day_spike_multiplier: float = Field(2.0, gt=1.0)
	day_spike_min_flags: int = Field(5, ge=1)
	cascade_min_rooms: int = Field(3, ge=2)
	trend_min_delta: float = Field(5.0, gt=0.0)
	room_concentration_share: float = Field(0.40, gt=0.0, le=1.0)
	surgeon_rate_multiplier: float = Field(2.0, gt=1.0)
	surgeon_min_cases: int = Field(5, ge=1)
