"""
Core module: Configuration, logging, and exception handling.
"""

from .config import Config, EngineConfig, config
from .exceptions import (
    ConfigurationError,
    FlagEngineError,
    IncompleteMilestoneDataError,
    InsufficientBaselineDataError,
    MalformedRuleError,
    MetricNotFoundError,
)
from .logging_config import setup_logging

__all__ = [
    "Config",
    "EngineConfig",
    "config",
    "setup_logging",
    "FlagEngineError",
    "MetricNotFoundError",
    "InsufficientBaselineDataError",
    "IncompleteMilestoneDataError",
    "MalformedRuleError",
    "ConfigurationError",
]
