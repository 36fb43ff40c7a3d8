"""Highest-priority-wins conflict resolution among matching policies."""
from typing import Dict, Optional, Sequence, Tuple

from ..models import Decision, Policy, PolicyEffect, PolicyEvaluation

NO_APPLICABLE_POLICIES = "No applicable policies found"
NO_MATCHING_POLICIES = "No matching policies found"


class DecisionResolver:
    """
    Combines per-policy evaluations into one decision.

    No evaluations at all is ``not_applicable``; evaluations without a match
    deny by default. Otherwise the matching policy with the highest priority
    decides, ties keeping the order in which policies were fetched.
    """

    def resolve(
        self,
        evaluations: Sequence[PolicyEvaluation],
        policies: Optional[Sequence[Policy]] = None
    ) -> Tuple[Decision, str]:
        if not evaluations:
            return Decision.NOT_APPLICABLE, NO_APPLICABLE_POLICIES

        matching = [evaluation for evaluation in evaluations if evaluation.matches]
        if not matching:
            return Decision.DENY, NO_MATCHING_POLICIES

        priorities: Dict[str, int] = {policy.id: policy.priority for policy in policies or ()}
        ranked = sorted(
            matching,
            key=lambda evaluation: priorities.get(evaluation.policy_id, evaluation.priority),
            reverse=True
        )
        winner = ranked[0]

        if winner.effect == PolicyEffect.PERMIT:
            return Decision.PERMIT, f"Permitted by highest priority policy: {winner.policy_name}"
        return Decision.DENY, f"Denied by highest priority policy: {winner.policy_name}"
