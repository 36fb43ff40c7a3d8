"""
Policy lookup and loading.

``PolicyRepository`` is the async interface to stored policies.
``PolicyLoader`` fetches the active candidates with their rules and targets
and drops policies that have neither.
"""
import dataclasses
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from .engine.operators import Operator
from .exceptions import ABACError, PolicyStoreError, PolicyValidationError
from .logging import SecurityLogger
from .models import LogicalOperator, Policy, PolicyRule, PolicyTarget

logger = logging.getLogger(__name__)


class PolicyRepository(ABC):
    """Abstract base class for policy repositories."""

    @abstractmethod
    async def get_active_policies(self) -> List[Policy]:
        """Active policies ordered by priority, highest first."""
        pass

    @abstractmethod
    async def get_rules_for_policy(self, policy_id: str) -> List[PolicyRule]:
        """Rules of a policy in stored order."""
        pass

    @abstractmethod
    async def get_targets_for_policy(self, policy_id: str) -> List[PolicyTarget]:
        """Targets of a policy in stored order."""
        pass


def validate_policy(policy: Policy) -> List[str]:
    """
    List the problems that would make parts of a policy always fail.

    Checks target and rule operators against the operator catalog and rule
    connectives against ``AND``/``OR``. An empty list means the policy is
    well formed.
    """
    problems = []
    for index, target in enumerate(policy.targets, start=1):
        if Operator.parse(target.operator) is None:
            problems.append(f"target {index}: unknown operator {target.operator!r}")
        if not target.attribute_name:
            problems.append(f"target {index}: missing attribute name")
    for index, rule in enumerate(policy.rules, start=1):
        if Operator.parse(rule.operator) is None:
            problems.append(f"rule {index}: unknown operator {rule.operator!r}")
        if LogicalOperator.parse(rule.logical_operator) is None:
            problems.append(f"rule {index}: unknown logical operator {rule.logical_operator!r}")
        if not rule.attribute_name:
            problems.append(f"rule {index}: missing attribute name")
    return problems


class PolicyLoader:
    """
    Loads candidate policies for evaluation.

    Args:
        repository: where policies come from.
        validate_operators: raise ``PolicyValidationError`` for a policy
            that fails ``validate_policy`` instead of letting its bad
            conditions evaluate to ``False``.
        security_logger: receives an event for every rejected policy.
    """

    def __init__(
        self,
        repository: PolicyRepository,
        validate_operators: bool = False,
        security_logger: Optional[SecurityLogger] = None
    ):
        self.repository = repository
        self.validate_operators = validate_operators
        self.security_logger = security_logger

    async def load(self) -> List[Policy]:
        """Active, non-empty policies in fetch order, with rules and targets attached."""
        try:
            candidates = await self.repository.get_active_policies()
        except ABACError:
            raise
        except Exception as e:
            raise PolicyStoreError(f"Failed to load policies: {e}", cause=e) from e

        policies = []
        for candidate in candidates:
            if not candidate.is_active:
                continue
            policy = await self._attach(candidate)
            if policy.is_empty:
                logger.debug("Skipping policy %s: no rules and no targets", policy.name)
                continue
            if self.validate_operators:
                self._check(policy)
            policies.append(policy)

        logger.debug("Loaded %d candidate policies", len(policies))
        return policies

    async def _attach(self, policy: Policy) -> Policy:
        try:
            rules = await self.repository.get_rules_for_policy(policy.id)
            targets = await self.repository.get_targets_for_policy(policy.id)
        except ABACError:
            raise
        except Exception as e:
            raise PolicyStoreError(
                f"Failed to load rules and targets for policy {policy.name}: {e}",
                policy_id=policy.id,
                cause=e
            ) from e
        return dataclasses.replace(policy, rules=list(rules or []), targets=list(targets or []))

    def _check(self, policy: Policy) -> None:
        problems = validate_policy(policy)
        if not problems:
            return
        if self.security_logger is not None:
            self.security_logger.log_policy_violation(policy.name, problems)
        raise PolicyValidationError(
            f"Policy {policy.name} is invalid: {'; '.join(problems)}",
            policy_name=policy.name,
            problems=problems
        )
