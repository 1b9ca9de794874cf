"""
Custom exceptions for the case flag engine.

Every per-item failure during evaluation is one of these. The aggregator
catches them, logs them, and records a diagnostic; none of them escapes
`FlagAggregator.aggregate`.
"""


class FlagEngineError(Exception):
    """Base exception for flag evaluation failures."""

    reason = "engine_error"


class MetricNotFoundError(FlagEngineError):
    """Raised when a rule references a metric that cannot be resolved."""

    reason = "metric_not_found"


class InsufficientBaselineDataError(FlagEngineError):
    """Raised when a scoped population yields too few values for a baseline."""

    reason = "insufficient_baseline_data"


class IncompleteMilestoneDataError(FlagEngineError):
    """Raised when a case lacks the timestamps a timing metric needs."""

    reason = "incomplete_milestone_data"


class MalformedRuleError(FlagEngineError):
    """Raised at rule-load time when a rule definition is invalid."""

    reason = "malformed_rule"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""
    pass
