"""
SQLAlchemy-backed attribute store, policy repository and audit sink.

The engine interfaces are async while the SQLAlchemy session API is
blocking, so each adapter call runs its session in the event loop's
default executor.
"""
import asyncio
import functools
import json
import logging
import threading
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Type, TypeVar

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from ..attributes import AttributeStore
from ..audit import AuditSink
from ..engine.lookup import split_reference
from ..exceptions import ABACError, AttributeStoreError, AuditError, PolicyStoreError
from ..models import (
    AccessRequestRecord,
    AttributeCategory,
    AttributeValue,
    Policy,
    PolicyEffect,
    PolicyRule,
    PolicyTarget,
    stringify_value,
)
from ..policies import PolicyRepository
from .database import DatabaseManager
from .models import (
    AccessRequestModel,
    ActionAttributeModel,
    ActionModel,
    AttributeModel,
    EnvironmentAttributeModel,
    PolicyModel,
    PolicyRuleModel,
    PolicySetModel,
    PolicyTargetModel,
    ResourceAttributeModel,
    ResourceModel,
    ResourceTypeModel,
    RoleAttributeModel,
    RoleModel,
    UserAttributeModel,
    UserModel,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def _to_value(attribute: AttributeModel, value: str) -> AttributeValue:
    return AttributeValue(
        id=attribute.id,
        name=attribute.name,
        type=attribute.type,
        category=attribute.category,
        value=value,
    )


class SQLAlchemyABACStore(AttributeStore, PolicyRepository, AuditSink):
    """
    ABAC storage over the relational schema in ``storage.models``.

    Resources are addressed by their external ``resource_id``; audit rows
    store internal resource and action ids when they can be resolved and
    the external values otherwise.

    A cancelled or timed out caller stops waiting at once; the query it
    started finishes in its worker thread. On a single-connection database
    (SQLite) queries are serialized with a lock.
    """

    def __init__(self, database: DatabaseManager):
        self.database = database
        if not database.initialized:
            database.initialize()
        self._lock = threading.Lock() if database.single_connection else None

    @contextmanager
    def _session(self, error_cls: Type[ABACError], operation: str, **details):
        with self._lock if self._lock is not None else nullcontext():
            try:
                with self.database.session_scope() as session:
                    yield session
            except ABACError:
                raise
            except SQLAlchemyError as e:
                logger.error("Database error during %s: %s", operation, e)
                if error_cls is AttributeStoreError:
                    raise AttributeStoreError(
                        f"Database error during {operation}: {e}", operation=operation, cause=e, **details
                    ) from e
                raise error_cls(f"Database error during {operation}: {e}", cause=e, **details) from e

    async def _execute(self, func: Callable[..., T], *args) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    # AttributeStore

    async def get_subject_attributes(self, subject_id: str) -> List[AttributeValue]:
        return await self._execute(self._subject_attributes, subject_id)

    async def get_role_attributes(self, subject_id: str) -> List[AttributeValue]:
        return await self._execute(self._role_attributes, subject_id)

    async def get_resource_attributes(self, resource_id: str) -> List[AttributeValue]:
        return await self._execute(self._resource_attributes, resource_id)

    async def get_resource_owner(self, resource_id: str) -> Optional[str]:
        return await self._execute(self._resource_owner, resource_id)

    async def get_action_attributes(self, action_name: str) -> List[AttributeValue]:
        return await self._execute(self._action_attributes, action_name)

    async def get_environment_attributes(self, now: datetime) -> List[AttributeValue]:
        return await self._execute(self._environment_attributes, now)

    def _subject_attributes(self, subject_id: str) -> List[AttributeValue]:
        with self._session(AttributeStoreError, "get_subject_attributes", subject_id=subject_id) as session:
            rows = (
                session.query(AttributeModel, UserAttributeModel.value)
                .join(UserAttributeModel, UserAttributeModel.attribute_id == AttributeModel.id)
                .filter(UserAttributeModel.user_id == subject_id)
                .all()
            )
            return [_to_value(attribute, value) for attribute, value in rows]

    def _role_attributes(self, subject_id: str) -> List[AttributeValue]:
        with self._session(AttributeStoreError, "get_role_attributes", subject_id=subject_id) as session:
            rows = (
                session.query(AttributeModel, RoleAttributeModel.value)
                .join(RoleAttributeModel, RoleAttributeModel.attribute_id == AttributeModel.id)
                .join(UserModel, UserModel.role_id == RoleAttributeModel.role_id)
                .filter(UserModel.id == subject_id)
                .all()
            )
            return [_to_value(attribute, value) for attribute, value in rows]

    def _resource_attributes(self, resource_id: str) -> List[AttributeValue]:
        with self._session(AttributeStoreError, "get_resource_attributes", resource_id=resource_id) as session:
            rows = (
                session.query(AttributeModel, ResourceAttributeModel.value)
                .join(ResourceAttributeModel, ResourceAttributeModel.attribute_id == AttributeModel.id)
                .join(ResourceModel, ResourceModel.id == ResourceAttributeModel.resource_id)
                .filter(ResourceModel.resource_id == resource_id)
                .all()
            )
            return [_to_value(attribute, value) for attribute, value in rows]

    def _resource_owner(self, resource_id: str) -> Optional[str]:
        with self._session(AttributeStoreError, "get_resource_owner", resource_id=resource_id) as session:
            row = (
                session.query(ResourceModel.owner_id)
                .filter(ResourceModel.resource_id == resource_id)
                .first()
            )
            return row[0] if row is not None else None

    def _action_attributes(self, action_name: str) -> List[AttributeValue]:
        with self._session(AttributeStoreError, "get_action_attributes") as session:
            rows = (
                session.query(AttributeModel, ActionAttributeModel.value)
                .join(ActionAttributeModel, ActionAttributeModel.attribute_id == AttributeModel.id)
                .join(ActionModel, ActionModel.id == ActionAttributeModel.action_id)
                .filter(ActionModel.name == action_name)
                .all()
            )
            return [_to_value(attribute, value) for attribute, value in rows]

    def _environment_attributes(self, now: datetime) -> List[AttributeValue]:
        moment = _naive_utc(now)
        with self._session(AttributeStoreError, "get_environment_attributes") as session:
            rows = (
                session.query(AttributeModel, EnvironmentAttributeModel.value)
                .join(EnvironmentAttributeModel, EnvironmentAttributeModel.attribute_id == AttributeModel.id)
                .filter(or_(
                    EnvironmentAttributeModel.valid_from.is_(None),
                    EnvironmentAttributeModel.valid_from <= moment
                ))
                .filter(or_(
                    EnvironmentAttributeModel.valid_to.is_(None),
                    EnvironmentAttributeModel.valid_to >= moment
                ))
                .all()
            )
            return [_to_value(attribute, value) for attribute, value in rows]

    # PolicyRepository

    async def get_active_policies(self) -> List[Policy]:
        return await self._execute(self._active_policies)

    async def get_rules_for_policy(self, policy_id: str) -> List[PolicyRule]:
        return await self._execute(self._policy_rules, policy_id)

    async def get_targets_for_policy(self, policy_id: str) -> List[PolicyTarget]:
        return await self._execute(self._policy_targets, policy_id)

    def _active_policies(self) -> List[Policy]:
        with self._session(PolicyStoreError, "get_active_policies") as session:
            rows = (
                session.query(PolicyModel)
                .filter(PolicyModel.is_active.is_(True))
                .order_by(PolicyModel.priority.desc(), PolicyModel.created_at, PolicyModel.id)
                .all()
            )
            return [
                Policy(
                    id=row.id,
                    name=row.name,
                    effect=PolicyEffect(row.effect.lower()),
                    priority=row.priority,
                    is_active=bool(row.is_active),
                    policy_set_id=row.policy_set_id,
                    description=row.description,
                )
                for row in rows
            ]

    def _policy_rules(self, policy_id: str) -> List[PolicyRule]:
        with self._session(PolicyStoreError, "get_rules_for_policy", policy_id=policy_id) as session:
            rows = (
                session.query(PolicyRuleModel, AttributeModel.name)
                .join(AttributeModel, AttributeModel.id == PolicyRuleModel.attribute_id)
                .filter(PolicyRuleModel.policy_id == policy_id)
                .order_by(PolicyRuleModel.position)
                .all()
            )
            return [
                PolicyRule(
                    id=rule.id,
                    attribute_name=name,
                    operator=rule.operator,
                    value=rule.value,
                    logical_operator=rule.logical_operator,
                    group_id=rule.group_id,
                )
                for rule, name in rows
            ]

    def _policy_targets(self, policy_id: str) -> List[PolicyTarget]:
        with self._session(PolicyStoreError, "get_targets_for_policy", policy_id=policy_id) as session:
            rows = (
                session.query(PolicyTargetModel, AttributeModel.name)
                .join(AttributeModel, AttributeModel.id == PolicyTargetModel.attribute_id)
                .filter(PolicyTargetModel.policy_id == policy_id)
                .order_by(PolicyTargetModel.position)
                .all()
            )
            return [
                PolicyTarget(
                    id=target.id,
                    target_type=target.target_type,
                    attribute_name=name,
                    operator=target.operator,
                    value=target.value,
                )
                for target, name in rows
            ]

    # AuditSink

    async def record_access_request(self, record: AccessRequestRecord) -> None:
        await self._execute(self._record_access_request, record)

    async def list_access_requests(self, subject_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self._execute(self._access_requests, subject_id)

    def _record_access_request(self, record: AccessRequestRecord) -> None:
        with self._session(AuditError, "record_access_request", record_id=record.id) as session:
            resource = (
                session.query(ResourceModel.id)
                .filter(ResourceModel.resource_id == record.resource_id)
                .first()
            )
            action = session.query(ActionModel.id).filter(ActionModel.name == record.action_name).first()
            session.add(AccessRequestModel(
                id=record.id,
                user_id=record.subject_id,
                resource_id=resource[0] if resource is not None else record.resource_id,
                action_id=action[0] if action is not None else record.action_name,
                decision=record.decision.value,
                applied_policies=json.dumps(record.applied_policies, default=str),
                request_context=json.dumps(record.request_context, default=str),
                processing_time_ms=record.processing_time_ms,
                created_at=_naive_utc(record.created_at),
            ))

    def _access_requests(self, subject_id: Optional[str]) -> List[Dict[str, Any]]:
        with self._session(AuditError, "list_access_requests") as session:
            query = session.query(AccessRequestModel)
            if subject_id is not None:
                query = query.filter(AccessRequestModel.user_id == subject_id)
            return [row.to_dict() for row in query.order_by(AccessRequestModel.created_at).all()]

    # Administration

    def create_attribute(
        self,
        name: str,
        category: AttributeCategory,
        type: str = "string",
        description: Optional[str] = None,
        valid_values: Optional[str] = None
    ) -> str:
        category = AttributeCategory(category)
        with self._session(AttributeStoreError, "create_attribute") as session:
            attribute = AttributeModel(
                name=name,
                category=category.value,
                type=type,
                description=description,
                valid_values=valid_values,
            )
            session.add(attribute)
            session.flush()
            return attribute.id

    def _attribute_id(self, session, name: str, category: AttributeCategory) -> str:
        row = (
            session.query(AttributeModel.id)
            .filter(AttributeModel.name == name, AttributeModel.category == category.value)
            .first()
        )
        if row is not None:
            return row[0]
        attribute = AttributeModel(name=name, category=category.value, type="string")
        session.add(attribute)
        session.flush()
        return attribute.id

    def create_role(self, name: str, description: Optional[str] = None) -> str:
        with self._session(AttributeStoreError, "create_role") as session:
            role = RoleModel(name=name, description=description)
            session.add(role)
            session.flush()
            return role.id

    def create_user(
        self,
        name: str,
        role_id: Optional[str] = None,
        email: Optional[str] = None,
        id: Optional[str] = None
    ) -> str:
        with self._session(AttributeStoreError, "create_user") as session:
            user = UserModel(name=name, role_id=role_id, email=email)
            if id is not None:
                user.id = id
            session.add(user)
            session.flush()
            return user.id

    def create_resource(
        self,
        resource_id: str,
        name: Optional[str] = None,
        resource_type: Optional[str] = None,
        owner_id: Optional[str] = None
    ) -> str:
        with self._session(AttributeStoreError, "create_resource", resource_id=resource_id) as session:
            resource_type_id = None
            if resource_type:
                row = session.query(ResourceTypeModel.id).filter(ResourceTypeModel.name == resource_type).first()
                if row is None:
                    type_row = ResourceTypeModel(name=resource_type)
                    session.add(type_row)
                    session.flush()
                    resource_type_id = type_row.id
                else:
                    resource_type_id = row[0]
            resource = ResourceModel(
                resource_id=resource_id,
                name=name or resource_id,
                resource_type_id=resource_type_id,
                owner_id=owner_id,
            )
            session.add(resource)
            session.flush()
            return resource.id

    def create_action(self, name: str, description: Optional[str] = None) -> str:
        with self._session(AttributeStoreError, "create_action") as session:
            action = ActionModel(name=name, description=description)
            session.add(action)
            session.flush()
            return action.id

    def assign_user_attribute(self, user_id: str, name: str, value: Any) -> None:
        with self._session(AttributeStoreError, "assign_user_attribute", subject_id=user_id) as session:
            attribute_id = self._attribute_id(session, name, AttributeCategory.SUBJECT)
            session.add(UserAttributeModel(user_id=user_id, attribute_id=attribute_id, value=stringify_value(value)))

    def assign_role_attribute(self, role_id: str, name: str, value: Any) -> None:
        with self._session(AttributeStoreError, "assign_role_attribute") as session:
            attribute_id = self._attribute_id(session, name, AttributeCategory.SUBJECT)
            session.add(RoleAttributeModel(role_id=role_id, attribute_id=attribute_id, value=stringify_value(value)))

    def assign_resource_attribute(self, resource_id: str, name: str, value: Any) -> None:
        with self._session(AttributeStoreError, "assign_resource_attribute", resource_id=resource_id) as session:
            row = session.query(ResourceModel.id).filter(ResourceModel.resource_id == resource_id).first()
            if row is None:
                raise AttributeStoreError(f"Unknown resource: {resource_id}", resource_id=resource_id)
            attribute_id = self._attribute_id(session, name, AttributeCategory.RESOURCE)
            session.add(ResourceAttributeModel(
                resource_id=row[0], attribute_id=attribute_id, value=stringify_value(value)
            ))

    def assign_action_attribute(self, action_name: str, name: str, value: Any) -> None:
        with self._session(AttributeStoreError, "assign_action_attribute") as session:
            row = session.query(ActionModel.id).filter(ActionModel.name == action_name).first()
            if row is None:
                action = ActionModel(name=action_name)
                session.add(action)
                session.flush()
                action_id = action.id
            else:
                action_id = row[0]
            attribute_id = self._attribute_id(session, name, AttributeCategory.ACTION)
            session.add(ActionAttributeModel(action_id=action_id, attribute_id=attribute_id, value=stringify_value(value)))

    def assign_environment_attribute(
        self,
        name: str,
        value: Any,
        valid_from: Optional[datetime] = None,
        valid_to: Optional[datetime] = None
    ) -> None:
        with self._session(AttributeStoreError, "assign_environment_attribute") as session:
            attribute_id = self._attribute_id(session, name, AttributeCategory.ENVIRONMENT)
            session.add(EnvironmentAttributeModel(
                name=name,
                attribute_id=attribute_id,
                value=stringify_value(value),
                valid_from=_naive_utc(valid_from) if valid_from else None,
                valid_to=_naive_utc(valid_to) if valid_to else None,
            ))

    def create_policy_set(self, name: str, description: Optional[str] = None, priority: int = 0) -> str:
        with self._session(PolicyStoreError, "create_policy_set") as session:
            policy_set = PolicySetModel(name=name, description=description, priority=priority)
            session.add(policy_set)
            session.flush()
            return policy_set.id

    def create_policy(
        self,
        name: str,
        effect: Any,
        priority: int = 0,
        rules: Iterable[PolicyRule] = (),
        targets: Iterable[PolicyTarget] = (),
        is_active: bool = True,
        policy_set_id: Optional[str] = None,
        description: Optional[str] = None
    ) -> str:
        """
        Store a policy with its rules and targets.

        Rules reference attributes by id, so they read back as bare names.
        A qualified reference (``resource.department``) picks the attribute
        of that category; a bare name takes the first definition with that
        name, creating a subject attribute when none exists. Targets resolve
        within their target type.
        """
        effect = PolicyEffect(effect.lower()) if isinstance(effect, str) else PolicyEffect(effect)
        with self._session(PolicyStoreError, "create_policy") as session:
            policy = PolicyModel(
                name=name,
                effect=effect.value,
                priority=priority,
                is_active=is_active,
                policy_set_id=policy_set_id,
                description=description,
            )
            session.add(policy)
            session.flush()

            for position, rule in enumerate(rules):
                attribute_id = self._rule_attribute_id(session, rule.attribute_name)
                session.add(PolicyRuleModel(
                    policy_id=policy.id,
                    attribute_id=attribute_id,
                    operator=rule.operator,
                    value=stringify_value(rule.value),
                    logical_operator=rule.logical_operator,
                    group_id=rule.group_id,
                    position=position,
                ))

            for position, target in enumerate(targets):
                category, attribute_name = self._target_category(target)
                session.add(PolicyTargetModel(
                    policy_id=policy.id,
                    target_type=target.target_type,
                    attribute_id=self._attribute_id(session, attribute_name, category),
                    operator=target.operator,
                    value=stringify_value(target.value),
                    position=position,
                ))
            return policy.id

    def _rule_attribute_id(self, session, reference: str) -> str:
        category, name = split_reference(reference)
        if category is not None:
            return self._attribute_id(session, name, AttributeCategory(category))
        row = session.query(AttributeModel.id).filter(AttributeModel.name == name).first()
        if row is not None:
            return row[0]
        return self._attribute_id(session, name, AttributeCategory.SUBJECT)

    @staticmethod
    def _target_category(target: PolicyTarget) -> Tuple[AttributeCategory, str]:
        target_type = target.target_type.lower()
        if target_type in ("user", "role"):
            target_type = AttributeCategory.SUBJECT.value
        try:
            return AttributeCategory(target_type), target.attribute_name
        except ValueError:
            raise PolicyStoreError(f"Unknown target type: {target.target_type}")

    def set_policy_active(self, policy_id: str, is_active: bool) -> None:
        with self._session(PolicyStoreError, "set_policy_active", policy_id=policy_id) as session:
            policy = session.get(PolicyModel, policy_id)
            if policy is None:
                raise PolicyStoreError(f"Unknown policy: {policy_id}", policy_id=policy_id)
            policy.is_active = is_active
