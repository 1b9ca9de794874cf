"""
Interfaces to the collaborators that feed the flag engine.

Storage, fetching and hydration live outside this package. Concrete
implementations (database gateways, API clients, test fakes) subclass
these and hand fully materialized records to the engine.
"""

from abc import ABC, abstractmethod
from typing import List

from caseflags.data.schema import CaseRecord, CostCategory, DateRange, FlagRule, ManualDelay


class RuleStore(ABC):
    """Source of configured flag rules."""

    @abstractmethod
    def list_active_rules(self, facility_id: str) -> List[FlagRule]:
        """
        Return enabled, non-deleted rules for a facility.

        Implementations may return extra rules; the engine re-applies the
        working-set filter.
        """
        pass


class DataGateway(ABC):
    """Source of hydrated case and delay records."""

    @abstractmethod
    def list_cases(self, facility_id: str, date_range: DateRange) -> List[CaseRecord]:
        """
        Return completed cases scheduled within the range.

        The caller passes a range that already covers the comparable prior
        period used for trends.
        """
        pass

    @abstractmethod
    def list_manual_delays(self, facility_id: str, date_range: DateRange) -> List[ManualDelay]:
        """Return user-reported delays for cases within the range."""
        pass


class CostCategoryProvider(ABC):
    """Source of facility cost categories for dynamic financial metrics."""

    @abstractmethod
    def list_categories(self, facility_id: str) -> List[CostCategory]:
        pass
