"""
In-memory attribute store, policy repository and audit sink.

Intended for development and tests. Data is seeded through the ``add_*`` and
``assign_*`` helpers and audit records accumulate in ``access_requests``.
"""
import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..attributes import AttributeStore
from ..audit import AuditSink
from ..policies import PolicyRepository
from ..exceptions import AttributeStoreError, AuditError, PolicyStoreError
from ..models import (
    AccessRequestRecord,
    AttributeCategory,
    AttributeDefinition,
    AttributeValue,
    Policy,
    PolicyEffect,
    PolicyRule,
    PolicyTarget,
    stringify_value,
)

_ATTRIBUTE_METHODS = {
    "get_subject_attributes",
    "get_role_attributes",
    "get_resource_attributes",
    "get_resource_owner",
    "get_action_attributes",
    "get_environment_attributes",
}
_POLICY_METHODS = {"get_active_policies", "get_rules_for_policy", "get_targets_for_policy"}


@dataclass
class _Resource:
    resource_id: str
    resource_type: Optional[str] = None
    owner_id: Optional[str] = None


@dataclass
class _EnvironmentAssignment:
    attribute: AttributeDefinition
    value: str
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None

    def is_valid(self, now: datetime) -> bool:
        if self.valid_from is not None and _aware(self.valid_from) > _aware(now):
            return False
        if self.valid_to is not None and _aware(self.valid_to) < _aware(now):
            return False
        return True


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


@dataclass
class _Assignments:
    items: List[Tuple[AttributeDefinition, str]] = field(default_factory=list)

    def assign(self, attribute: AttributeDefinition, value: str) -> None:
        self.items = [(a, v) for a, v in self.items if a.id != attribute.id]
        self.items.append((attribute, value))


class InMemoryABACStore(AttributeStore, PolicyRepository, AuditSink):
    """Dict-backed implementation of the attribute, policy and audit interfaces."""

    def __init__(self):
        self.attributes: Dict[Tuple[str, str], AttributeDefinition] = {}
        self.roles: Dict[str, str] = {}
        self.subject_roles: Dict[str, Optional[str]] = {}
        self.resources: Dict[str, _Resource] = {}
        self.actions: Set[str] = set()
        self.policies: Dict[str, Policy] = {}
        self.access_requests: List[AccessRequestRecord] = []
        self.fail_on: Set[str] = set()
        self.calls: List[str] = []

        self._subject_values: Dict[str, _Assignments] = {}
        self._role_values: Dict[str, _Assignments] = {}
        self._resource_values: Dict[str, _Assignments] = {}
        self._action_values: Dict[str, _Assignments] = {}
        self._environment_values: List[_EnvironmentAssignment] = []

    # Seeding

    def add_attribute(
        self,
        name: str,
        category: AttributeCategory = AttributeCategory.SUBJECT,
        type: str = "string",
        id: Optional[str] = None,
        description: Optional[str] = None,
        valid_values: Optional[str] = None
    ) -> AttributeDefinition:
        category = AttributeCategory(category)
        attribute = AttributeDefinition(
            id=id or str(uuid.uuid4()),
            name=name,
            type=type,
            category=category,
            description=description,
            valid_values=valid_values,
        )
        self.attributes[(category.value, name)] = attribute
        return attribute

    def _attribute(self, name: str, category: AttributeCategory, type: str = "string") -> AttributeDefinition:
        attribute = self.attributes.get((category.value, name))
        if attribute is None:
            attribute = self.add_attribute(name, category=category, type=type)
        return attribute

    def add_role(self, role_id: str, name: Optional[str] = None) -> str:
        self.roles[role_id] = name or role_id
        self._role_values.setdefault(role_id, _Assignments())
        return role_id

    def add_subject(self, subject_id: str, role_id: Optional[str] = None) -> str:
        if role_id is not None and role_id not in self.roles:
            self.add_role(role_id)
        self.subject_roles[subject_id] = role_id
        self._subject_values.setdefault(subject_id, _Assignments())
        return subject_id

    def add_resource(
        self,
        resource_id: str,
        resource_type: Optional[str] = None,
        owner_id: Optional[str] = None
    ) -> str:
        self.resources[resource_id] = _Resource(resource_id, resource_type, owner_id)
        self._resource_values.setdefault(resource_id, _Assignments())
        return resource_id

    def add_action(self, name: str) -> str:
        self.actions.add(name)
        self._action_values.setdefault(name, _Assignments())
        return name

    def assign_subject_attribute(self, subject_id: str, name: str, value: Any, type: str = "string"):
        if subject_id not in self.subject_roles:
            self.add_subject(subject_id)
        attribute = self._attribute(name, AttributeCategory.SUBJECT, type)
        self._subject_values[subject_id].assign(attribute, stringify_value(value))

    def assign_role_attribute(self, role_id: str, name: str, value: Any, type: str = "string"):
        if role_id not in self.roles:
            self.add_role(role_id)
        attribute = self._attribute(name, AttributeCategory.SUBJECT, type)
        self._role_values[role_id].assign(attribute, stringify_value(value))

    def assign_resource_attribute(self, resource_id: str, name: str, value: Any, type: str = "string"):
        if resource_id not in self.resources:
            self.add_resource(resource_id)
        attribute = self._attribute(name, AttributeCategory.RESOURCE, type)
        self._resource_values[resource_id].assign(attribute, stringify_value(value))

    def assign_action_attribute(self, action_name: str, name: str, value: Any, type: str = "string"):
        if action_name not in self.actions:
            self.add_action(action_name)
        attribute = self._attribute(name, AttributeCategory.ACTION, type)
        self._action_values[action_name].assign(attribute, stringify_value(value))

    def assign_environment_attribute(
        self,
        name: str,
        value: Any,
        valid_from: Optional[datetime] = None,
        valid_to: Optional[datetime] = None,
        type: str = "string"
    ):
        attribute = self._attribute(name, AttributeCategory.ENVIRONMENT, type)
        self._environment_values.append(
            _EnvironmentAssignment(attribute, stringify_value(value), valid_from, valid_to)
        )

    def add_policy(
        self,
        policy: Optional[Policy] = None,
        *,
        name: Optional[str] = None,
        effect: Any = PolicyEffect.PERMIT,
        priority: int = 0,
        rules: Iterable[PolicyRule] = (),
        targets: Iterable[PolicyTarget] = (),
        is_active: bool = True,
        policy_set_id: Optional[str] = None,
        id: Optional[str] = None
    ) -> Policy:
        """Store a policy, either given whole or built from keyword arguments."""
        if policy is None:
            if not name:
                raise ValueError("policy name is required")
            policy = Policy(
                id=id or str(uuid.uuid4()),
                name=name,
                effect=effect,
                priority=priority,
                is_active=is_active,
                policy_set_id=policy_set_id,
                rules=list(rules),
                targets=list(targets),
            )
        self.policies[policy.id] = policy
        return policy

    def remove_policy(self, policy_id: str) -> None:
        self.policies.pop(policy_id, None)

    # AttributeStore

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        if method in self.fail_on:
            if method in _POLICY_METHODS:
                raise PolicyStoreError(f"{method} failed")
            if method in _ATTRIBUTE_METHODS:
                raise AttributeStoreError(f"{method} failed", operation=method)
            raise AuditError(f"{method} failed")

    @staticmethod
    def _values(assignments: Optional[_Assignments]) -> List[AttributeValue]:
        if assignments is None:
            return []
        return [
            AttributeValue(
                id=attribute.id,
                name=attribute.name,
                type=attribute.type,
                category=attribute.category.value,
                value=value,
            )
            for attribute, value in assignments.items
        ]

    async def get_subject_attributes(self, subject_id: str) -> List[AttributeValue]:
        self._enter("get_subject_attributes")
        return self._values(self._subject_values.get(subject_id))

    async def get_role_attributes(self, subject_id: str) -> List[AttributeValue]:
        self._enter("get_role_attributes")
        role_id = self.subject_roles.get(subject_id)
        if role_id is None:
            return []
        return self._values(self._role_values.get(role_id))

    async def get_resource_attributes(self, resource_id: str) -> List[AttributeValue]:
        self._enter("get_resource_attributes")
        return self._values(self._resource_values.get(resource_id))

    async def get_resource_owner(self, resource_id: str) -> Optional[str]:
        self._enter("get_resource_owner")
        resource = self.resources.get(resource_id)
        return resource.owner_id if resource is not None else None

    async def get_action_attributes(self, action_name: str) -> List[AttributeValue]:
        self._enter("get_action_attributes")
        return self._values(self._action_values.get(action_name))

    async def get_environment_attributes(self, now: datetime) -> List[AttributeValue]:
        self._enter("get_environment_attributes")
        return [
            AttributeValue(
                id=assignment.attribute.id,
                name=assignment.attribute.name,
                type=assignment.attribute.type,
                category=AttributeCategory.ENVIRONMENT.value,
                value=assignment.value,
            )
            for assignment in self._environment_values
            if assignment.is_valid(now)
        ]

    # PolicyRepository

    async def get_active_policies(self) -> List[Policy]:
        self._enter("get_active_policies")
        active = [policy for policy in self.policies.values() if policy.is_active]
        active.sort(key=lambda policy: policy.priority, reverse=True)
        return [dataclasses.replace(policy, rules=[], targets=[]) for policy in active]

    async def get_rules_for_policy(self, policy_id: str) -> List[PolicyRule]:
        self._enter("get_rules_for_policy")
        policy = self.policies.get(policy_id)
        return list(policy.rules) if policy is not None else []

    async def get_targets_for_policy(self, policy_id: str) -> List[PolicyTarget]:
        self._enter("get_targets_for_policy")
        policy = self.policies.get(policy_id)
        return list(policy.targets) if policy is not None else []

    # AuditSink

    async def record_access_request(self, record: AccessRequestRecord) -> None:
        self._enter("record_access_request")
        self.access_requests.append(record)
