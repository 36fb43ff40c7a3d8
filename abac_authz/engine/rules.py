"""
Policy rule evaluation with grouped boolean logic.

Rules are partitioned by group id, preserving their order. Each group is a
left fold starting from ``True`` with a pending ``AND``; the connective
carried by a rule joins it with the *next* rule of its group. A policy
matches when every group holds.
"""
import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Tuple

from ..models import AttributeMap, AttributeValue, LogicalOperator, PolicyRule
from .lookup import find_by_name, find_qualified, split_reference, to_snake_case
from .operators import Operator

logger = logging.getLogger(__name__)

RULES_MET = "All rule conditions met"
RULES_FAILED = "One or more rule conditions failed"


class RuleEvaluator:
    """
    Evaluates a policy's rules against an attribute map.

    Args:
        strict_references: fail a condition whose bare attribute name exists
            in more than one category instead of taking the first match.
    """

    def __init__(self, strict_references: bool = False):
        self.strict_references = strict_references

    def evaluate(self, rules: Sequence[PolicyRule], attributes: AttributeMap) -> Tuple[bool, str]:
        if not rules:
            return True, RULES_MET

        groups = self.group_rules(rules)
        results = []
        for group_id, group_rules in groups.items():
            result = self.evaluate_group(group_rules, attributes)
            logger.debug("Rule group %r (%d rules): %s", group_id, len(group_rules), result)
            results.append(result)

        matches = all(results)
        return matches, RULES_MET if matches else RULES_FAILED

    @staticmethod
    def group_rules(rules: Sequence[PolicyRule]) -> Dict[str, List[PolicyRule]]:
        groups: Dict[str, List[PolicyRule]] = OrderedDict()
        for rule in rules:
            groups.setdefault(rule.group, []).append(rule)
        return groups

    def evaluate_group(self, rules: Sequence[PolicyRule], attributes: AttributeMap) -> bool:
        result = True
        pending = LogicalOperator.AND

        for index, rule in enumerate(rules, start=1):
            contribution = self.evaluate_condition(index, rule, attributes)
            if pending == LogicalOperator.AND:
                result = result and contribution
            else:
                result = result or contribution

            connective = LogicalOperator.parse(rule.logical_operator)
            if connective is None:
                logger.warning(
                    "Rule %d: unknown logical operator %r, using AND", index, rule.logical_operator
                )
                connective = LogicalOperator.AND
            pending = connective

        return result

    def evaluate_condition(self, index: int, rule: PolicyRule, attributes: AttributeMap) -> bool:
        attribute = self.resolve_attribute(rule.attribute_name, attributes)
        if attribute is None:
            logger.debug("Rule %d: attribute %r not found", index, rule.attribute_name)
            return False

        operator = Operator.parse(rule.operator)
        if operator is None:
            logger.debug("Rule %d: unknown operator %r", index, rule.operator)
            return False

        result = operator.apply(attribute.value, rule.value)
        logger.debug(
            "Rule %d: %r %s %r = %s", index, attribute.value, operator.value, rule.value, result
        )
        return result

    def resolve_attribute(self, reference: str, attributes: AttributeMap) -> Optional[AttributeValue]:
        """
        Resolve a rule attribute reference.

        ``subject.clearance`` is looked up by key. A bare ``clearance`` is
        searched across the whole map and the first entry in insertion order
        wins.
        """
        category, name = split_reference(str(reference or ""))
        if category is not None:
            return find_qualified(category, name, attributes)

        candidates = find_by_name(name, attributes)
        if not candidates:
            snake = to_snake_case(name)
            if snake != name:
                candidates = find_by_name(snake, attributes)
        if not candidates:
            return None

        if self.strict_references and len(candidates) > 1:
            logger.warning(
                "Ambiguous rule attribute %r found in categories %s",
                name, ", ".join(candidate.category for candidate in candidates)
            )
            return None
        return candidates[0]
