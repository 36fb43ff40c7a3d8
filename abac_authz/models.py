"""
Data model for the ABAC authorization engine.

Attribute definitions and assignments, policies with their targets and rules,
per-policy evaluations and the authorization request/result pair exchanged
with callers.
"""
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


class AttributeCategory(Enum):
    """Attribute categories; each one is a partition of the attribute map."""
    SUBJECT = "subject"
    RESOURCE = "resource"
    ACTION = "action"
    ENVIRONMENT = "environment"


class PolicyEffect(Enum):
    """Outcome a matching policy asserts."""
    PERMIT = "permit"
    DENY = "deny"


class Decision(Enum):
    """Final authorization decision."""
    PERMIT = "permit"
    DENY = "deny"
    NOT_APPLICABLE = "not_applicable"
    INDETERMINATE = "indeterminate"


class LogicalOperator(Enum):
    """Connective between a rule and the next rule of its group."""
    AND = "AND"
    OR = "OR"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["LogicalOperator"]:
        """Parse a stored connective; ``None`` or empty means ``AND``."""
        if value is None or value == "":
            return cls.AND
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


DEFAULT_GROUP_ID = "default"


@dataclass(frozen=True)
class AttributeDefinition:
    """Attribute declaration created by policy authors."""
    id: str
    name: str
    type: str
    category: AttributeCategory
    description: Optional[str] = None
    valid_values: Optional[str] = None


@dataclass(frozen=True)
class AttributeValue:
    """A resolved attribute: one entry of the attribute map."""
    id: str
    name: str
    type: str
    category: str
    value: str

    @property
    def key(self) -> str:
        """Attribute map key of this value."""
        return f"{self.category}.{self.name}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "category": self.category,
            "value": self.value,
        }


AttributeMap = Dict[str, AttributeValue]


@dataclass(frozen=True)
class PolicyTarget:
    """Applicability precondition ``{target_type}.{attribute_name} {operator} {value}``."""
    target_type: str
    attribute_name: str
    operator: str
    value: Any = None
    id: Optional[str] = None

    @property
    def attribute_key(self) -> str:
        return f"{self.target_type}.{self.attribute_name}"


@dataclass(frozen=True)
class PolicyRule:
    """Atomic condition ``{attribute_name} {operator} {value}``."""
    attribute_name: str
    operator: str
    value: Any = None
    logical_operator: Optional[str] = None
    group_id: Optional[str] = None
    id: Optional[str] = None

    @property
    def group(self) -> str:
        return self.group_id or DEFAULT_GROUP_ID


@dataclass
class Policy:
    """An ABAC policy with its targets and rules."""
    id: str
    name: str
    effect: PolicyEffect
    priority: int = 0
    is_active: bool = True
    policy_set_id: Optional[str] = None
    description: Optional[str] = None
    rules: List[PolicyRule] = field(default_factory=list)
    targets: List[PolicyTarget] = field(default_factory=list)

    def __post_init__(self):
        if isinstance(self.effect, str):
            self.effect = PolicyEffect(self.effect.lower())

    @property
    def is_empty(self) -> bool:
        """A policy without rules and targets is never considered."""
        return not self.rules and not self.targets

    def to_dict(self) -> Dict[str, Any]:
        """Convert policy to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "effect": self.effect.value,
            "priority": self.priority,
            "is_active": self.is_active,
            "policy_set_id": self.policy_set_id,
            "description": self.description,
            "rules": [
                {
                    "attribute_name": rule.attribute_name,
                    "operator": rule.operator,
                    "value": rule.value,
                    "logical_operator": rule.logical_operator,
                    "group_id": rule.group_id,
                }
                for rule in self.rules
            ],
            "targets": [
                {
                    "target_type": target.target_type,
                    "attribute_name": target.attribute_name,
                    "operator": target.operator,
                    "value": target.value,
                }
                for target in self.targets
            ],
        }


@dataclass(frozen=True)
class PolicyEvaluation:
    """Outcome of target and rule evaluation for one applicable policy."""
    policy_id: str
    policy_name: str
    effect: PolicyEffect
    matches: bool
    priority: int = 0
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Summary stored with access request records."""
        return {
            "id": self.policy_id,
            "name": self.policy_name,
            "effect": self.effect.value,
            "matches": self.matches,
        }


@dataclass
class AuthorizationRequest:
    """Caller-supplied authorization request."""
    subject_id: str
    action_name: str
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "action_name": self.action_name,
            "resource_id": self.resource_id,
            "resource_type": self.resource_type,
            "context": dict(self.context or {}),
        }


@dataclass
class AuthorizationResult:
    """Decision returned to the caller."""
    decision: Decision
    reason: str
    applied_policies: List[str] = field(default_factory=list)
    processing_time_ms: float = 0.0

    @property
    def permitted(self) -> bool:
        return self.decision == Decision.PERMIT

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary."""
        return {
            "decision": self.decision.value,
            "reason": self.reason,
            "applied_policies": list(self.applied_policies),
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass
class AccessRequestRecord:
    """Audit record of one authorization that addressed a resource."""
    subject_id: str
    resource_id: str
    action_name: str
    decision: Decision
    applied_policies: List[Dict[str, Any]] = field(default_factory=list)
    request_context: Dict[str, Any] = field(default_factory=dict)
    processing_time_ms: float = 0.0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "resource_id": self.resource_id,
            "action_name": self.action_name,
            "decision": self.decision.value,
            "applied_policies": self.applied_policies,
            "request_context": self.request_context,
            "processing_time_ms": self.processing_time_ms,
            "created_at": self.created_at.isoformat(),
        }


def stringify_value(value: Any) -> str:
    """String form used for storage and for operator comparisons."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, set)):
        return ",".join(stringify_value(item) for item in value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        # 2.0 -> "2"
        return str(int(value))
    return str(value)


def runtime_type_name(value: Any) -> str:
    """Name of the runtime type of a context value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple, set)):
        return "array"
    return "object"
