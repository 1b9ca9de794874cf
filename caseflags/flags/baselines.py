"""
Baseline computation for flag thresholds.

A baseline summarizes one metric over one scoped case population: the
median, the population standard deviation, and the full sorted sample for
percentile lookups. Baselines are recomputed every run and memoized for the
duration of that run only.

Lookup order for a case with a procedure:
- facility scope: metric + procedure, then metric
- personal scope: metric + surgeon + procedure, then metric + surgeon
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from caseflags.core.exceptions import InsufficientBaselineDataError
from caseflags.data.schema import CaseRecord, ComparisonScope

from . import stats
from .resolver import MetricResolver
from .schema import Baseline, MetricDefinition

logger = logging.getLogger(__name__)

FACILITY_SCOPE_KEY = "facility"


def compute_baseline(
    definition: MetricDefinition,
    scope: ComparisonScope,
    scope_key: str,
    population: Iterable[CaseRecord],
    resolver: MetricResolver,
    facility_id: Optional[str] = None,
    min_samples: int = 1,
    procedure_id: Optional[str] = None,
) -> Baseline:
    """
    Compute baseline statistics for a metric over a population.

    Cases without a value for the metric are skipped.

    Raises:
        InsufficientBaselineDataError: If fewer than min_samples values remain
    """
    values = sorted(
        value
        for value in (resolver.compute_value(definition, case) for case in population)
        if value is not None
    )

    label = f"{scope_key}/{procedure_id}" if procedure_id else scope_key
    if len(values) < max(min_samples, 1):
        raise InsufficientBaselineDataError(
            f"{len(values)} value(s) for {definition.id} in {scope.value} scope "
            f"'{label}', need {max(min_samples, 1)}"
        )

    return Baseline(
        facility_id=facility_id,
        metric_id=definition.id,
        scope=scope,
        scope_key=scope_key,
        procedure_id=procedure_id,
        count=len(values),
        median=stats.median(values),
        stddev=stats.population_stddev(values),
        values=tuple(values),
    )


BaselineKey = Tuple[MetricDefinition, ComparisonScope, str, Optional[str]]


@dataclass
class BaselineCalculator:
    """
    Memoizing baseline calculator for one evaluation run.

    Notes:
    - personal scope restricts the population to the evaluated case's surgeon
    - facility scope uses the whole population
    - a procedure-specific baseline is preferred once it holds
      procedure_min_samples values; otherwise the scope-wide one is used
    - failures are memoized too, so an empty scope is only scanned once
    """

    population: Sequence[CaseRecord]
    resolver: MetricResolver
    facility_id: Optional[str] = None
    min_samples: int = 1
    procedure_min_samples: int = 3
    _by_surgeon: Dict[str, List[CaseRecord]] = field(default_factory=dict, init=False, repr=False)
    _cache: Dict[BaselineKey, Union[Baseline, InsufficientBaselineDataError]] = field(
        default_factory=dict, init=False, repr=False
    )

    def __post_init__(self) -> None:
        for case in self.population:
            if case.surgeon_id:
                self._by_surgeon.setdefault(case.surgeon_id, []).append(case)

    def for_case(
        self, definition: MetricDefinition, scope: ComparisonScope, case: CaseRecord
    ) -> Baseline:
        """
        Baseline a rule needs when evaluating a specific case.

        Raises:
            InsufficientBaselineDataError: If the scoped population is empty
        """
        if scope == ComparisonScope.PERSONAL:
            if not case.surgeon_id:
                raise InsufficientBaselineDataError(
                    f"Case {case.id} has no surgeon for a personal baseline"
                )
            scope_key = case.surgeon_id
        else:
            scope_key = FACILITY_SCOPE_KEY

        if case.procedure_id:
            try:
                return self.get(definition, scope, scope_key, procedure_id=case.procedure_id)
            except InsufficientBaselineDataError as e:
                logger.debug(f"Falling back to {scope.value} baseline '{scope_key}': {e}")

        return self.get(definition, scope, scope_key)

    def get(
        self,
        definition: MetricDefinition,
        scope: ComparisonScope,
        scope_key: str,
        procedure_id: Optional[str] = None,
    ) -> Baseline:
        key = (definition, scope, scope_key, procedure_id)
        cached = self._cache.get(key)
        if cached is None:
            min_samples = self.min_samples
            if procedure_id is not None:
                min_samples = max(self.min_samples, self.procedure_min_samples)
            try:
                cached = compute_baseline(
                    definition,
                    scope,
                    scope_key,
                    self._population_for(scope, scope_key, procedure_id),
                    self.resolver,
                    facility_id=self.facility_id,
                    min_samples=min_samples,
                    procedure_id=procedure_id,
                )
            except InsufficientBaselineDataError as e:
                cached = e
            self._cache[key] = cached

        if isinstance(cached, InsufficientBaselineDataError):
            raise InsufficientBaselineDataError(str(cached))
        return cached

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def _population_for(
        self, scope: ComparisonScope, scope_key: str, procedure_id: Optional[str] = None
    ) -> Sequence[CaseRecord]:
        if scope == ComparisonScope.PERSONAL:
            cases = self._by_surgeon.get(scope_key, [])
        else:
            cases = self.population
        if procedure_id is None:
            return cases
        return [c for c in cases if c.procedure_id == procedure_id]
