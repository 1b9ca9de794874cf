"""
Rule loading and working-set selection.

Raw rule records (as stored by the rule store) are validated here, before
evaluation. Malformed rules never reach the threshold evaluator.

Design:
- Nullable `facility_id` in raw records maps to an explicit RuleOwner
- Bad rules are logged and dropped unless strict loading is requested
- The working set is enabled + active + non-deleted rules owned by the
  evaluated facility
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping

from pydantic import ValidationError

from caseflags.core.exceptions import MalformedRuleError
from caseflags.data.schema import FacilityOwner, FlagRule, GlobalOwner

logger = logging.getLogger(__name__)


def parse_rule(record: Mapping[str, Any]) -> FlagRule:
    """
    Build a FlagRule from a raw record.

    Accepts either an explicit `owner` or the stored `facility_id` column
    (None meaning a global template).

    Args:
        record: Raw rule mapping

    Returns:
        Validated FlagRule

    Raises:
        MalformedRuleError: If the record fails validation
    """
    data: Dict[str, Any] = dict(record)

    if "owner" not in data:
        facility_id = data.pop("facility_id", None)
        data["owner"] = (
            GlobalOwner() if facility_id is None else FacilityOwner(facility_id=facility_id)
        )
    else:
        data.pop("facility_id", None)

    try:
        return FlagRule.model_validate(data)
    except ValidationError as e:
        rule_id = data.get("id", "<unknown>")
        raise MalformedRuleError(f"Rule {rule_id} is malformed: {e}") from e


def load_rules(records: Iterable[Mapping[str, Any]], strict: bool = False) -> List[FlagRule]:
    """
    Parse many raw rule records.

    Args:
        records: Raw rule mappings
        strict: Raise on the first malformed rule instead of dropping it

    Returns:
        List of valid FlagRule objects, in input order

    Raises:
        MalformedRuleError: Only when strict is True
    """
    rules: List[FlagRule] = []
    rejected = 0

    for record in records:
        try:
            rules.append(parse_rule(record))
        except MalformedRuleError as e:
            if strict:
                raise
            rejected += 1
            logger.warning(str(e))

    if rejected:
        logger.warning(f"Dropped {rejected} malformed rule(s), kept {len(rules)}")

    return rules


def working_set(rules: Iterable[FlagRule], facility_id: str) -> List[FlagRule]:
    """
    Select the rules that take part in an evaluation run for a facility.

    Rules are returned sorted by id so evaluation order never depends on
    the order the store returned them in.
    """
    selected = []
    for rule in rules:
        if not rule.in_working_set:
            continue
        if not rule.owned_by(facility_id):
            logger.debug(f"Rule {rule.id} not owned by facility {facility_id}, skipping")
            continue
        selected.append(rule)

    selected.sort(key=lambda r: r.id)
    return selected
