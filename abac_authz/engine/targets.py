"""
Policy target matching.

A policy is applicable when every one of its targets holds. All targets are
evaluated, even after a failure, so that the debug trace shows each one.
"""
import logging
from typing import Sequence

from ..models import AttributeMap, PolicyTarget
from .lookup import find_qualified
from .operators import Operator

logger = logging.getLogger(__name__)


class TargetMatcher:
    """Decides whether a policy applies to the current attribute map."""

    def matches(self, targets: Sequence[PolicyTarget], attributes: AttributeMap) -> bool:
        if not targets:
            return True

        results = [
            self.evaluate_target(index, target, attributes)
            for index, target in enumerate(targets, start=1)
        ]
        return all(results)

    def evaluate_target(self, index: int, target: PolicyTarget, attributes: AttributeMap) -> bool:
        attribute = find_qualified(target.target_type, target.attribute_name, attributes)
        if attribute is None:
            logger.debug("Target %d: attribute %s not found", index, target.attribute_key)
            return False

        operator = Operator.parse(target.operator)
        if operator is None:
            logger.debug("Target %d: unknown operator %r", index, target.operator)
            return False

        result = operator.apply(attribute.value, target.value)
        logger.debug(
            "Target %d: %r %s %r = %s",
            index, attribute.value, operator.value, target.value, result
        )
        return result
