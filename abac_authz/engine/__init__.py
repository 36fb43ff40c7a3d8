"""Policy evaluation engine: operators, target matching, rules and resolution."""
from .operators import Operator, OPERATOR_ALIASES, evaluate_operator
from .targets import TargetMatcher
from .rules import RuleEvaluator, RULES_MET, RULES_FAILED
from .resolver import DecisionResolver, NO_APPLICABLE_POLICIES, NO_MATCHING_POLICIES

__all__ = [
    "Operator",
    "OPERATOR_ALIASES",
    "evaluate_operator",
    "TargetMatcher",
    "RuleEvaluator",
    "RULES_MET",
    "RULES_FAILED",
    "DecisionResolver",
    "NO_APPLICABLE_POLICIES",
    "NO_MATCHING_POLICIES",
]
