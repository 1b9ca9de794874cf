"""
Data module: input records, rule loading, and collaborator interfaces.

    RuleStore / DataGateway / CostCategoryProvider (caseflags/data/sources.py)
        ↓
    Raw rule records → parse_rule / load_rules (caseflags/data/rules.py) → FlagRule
        ↓
    working_set → rules evaluated for one facility
        ↓
    Ready for flag evaluation (caseflags/flags)
"""

from caseflags.data.rules import load_rules, parse_rule, working_set
from caseflags.data.schema import (
    CaseRecord,
    ComparisonScope,
    CompletionStats,
    CostCategory,
    DateRange,
    FacilityOwner,
    FlagRule,
    GlobalOwner,
    ManualDelay,
    MetricCategory,
    Operator,
    RuleOwner,
    Severity,
    ThresholdType,
)
from caseflags.data.sources import CostCategoryProvider, DataGateway, RuleStore

__all__ = [
    # Schema
    "CaseRecord",
    "CompletionStats",
    "CostCategory",
    "DateRange",
    "FlagRule",
    "ManualDelay",
    "RuleOwner",
    "GlobalOwner",
    "FacilityOwner",
    "Operator",
    "ThresholdType",
    "ComparisonScope",
    "Severity",
    "MetricCategory",

    # Rules
    "parse_rule",
    "load_rules",
    "working_set",

    # Collaborators
    "RuleStore",
    "DataGateway",
    "CostCategoryProvider",
]
