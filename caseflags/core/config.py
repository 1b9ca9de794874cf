"""
Application configuration for the case flag engine.

Provides environment-aware settings with conservative defaults. Evaluation
knobs are configurable to avoid hard-coded "magic numbers".
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineConfig(BaseModel):
	"""
	Configuration for flag evaluation and aggregation.

	Notes:
	- min_baseline_samples: values needed before a baseline is usable.
	- min_procedure_baseline_samples: values needed before a procedure-specific
	  baseline replaces the scope-wide one.
	- sparkline_points: fixed number of weekly points per KPI series.
	- recent_cases_limit: flagged cases attached to the result.
	- turnover_max_minutes: gaps at or above this are not turnovers.
	- display_precision: decimals kept when building output models.
	"""

	min_baseline_samples: int = Field(1, ge=1)
	min_procedure_baseline_samples: int = Field(3, ge=1)
	sparkline_points: int = Field(8, ge=1)
	recent_cases_limit: int = Field(10, ge=0)
	turnover_max_minutes: float = Field(180.0, gt=0.0)
	display_precision: int = Field(1, ge=0, le=4)


class Config(BaseSettings):
	"""
	Global configuration with environment overrides.
	"""

	model_config = SettingsConfigDict(env_prefix="CASEFLAGS_", env_file=".env", extra="ignore")

	log_level: str = Field("INFO", description="Default logging level")
	logs_dir: Path = Field(Path("logs"), description="Directory for log files")
	engine: EngineConfig = EngineConfig()

	def model_post_init(self, __context: object) -> None:
		self.logs_dir.mkdir(parents=True, exist_ok=True)


config = Config()
