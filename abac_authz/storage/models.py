"""
Database models for ABAC storage.
"""
import uuid
from datetime import datetime, timezone
from typing import Dict, Any

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Text, Float, ForeignKey, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class RoleModel(Base):
    """Subject role."""

    __tablename__ = "roles"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    def __repr__(self):
        return f"<RoleModel(id='{self.id}', name='{self.name}')>"


class UserModel(Base):
    """Subject with an optional role."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    role_id = Column(String(36), ForeignKey("roles.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=_utcnow)

    def __repr__(self):
        return f"<UserModel(id='{self.id}', name='{self.name}')>"


class AttributeModel(Base):
    """Attribute definition."""

    __tablename__ = "attributes"
    __table_args__ = (UniqueConstraint("name", "category", name="uq_attribute_name_category"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False, index=True)
    type = Column(String(32), nullable=False, default="string")
    category = Column(String(32), nullable=False)
    description = Column(Text, nullable=True)
    valid_values = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    def __repr__(self):
        return f"<AttributeModel(name='{self.name}', category='{self.category}')>"


class UserAttributeModel(Base):
    __tablename__ = "user_attributes"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    attribute_id = Column(String(36), ForeignKey("attributes.id"), nullable=False)
    value = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow)


class RoleAttributeModel(Base):
    __tablename__ = "role_attributes"

    id = Column(String(36), primary_key=True, default=_uuid)
    role_id = Column(String(36), ForeignKey("roles.id"), nullable=False, index=True)
    attribute_id = Column(String(36), ForeignKey("attributes.id"), nullable=False)
    value = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow)


class ResourceTypeModel(Base):
    __tablename__ = "resource_types"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    table_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=_utcnow)


class ResourceModel(Base):
    """Protected resource. ``resource_id`` is the caller-facing id."""

    __tablename__ = "resources"

    id = Column(String(36), primary_key=True, default=_uuid)
    resource_id = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    resource_type_id = Column(String(36), ForeignKey("resource_types.id"), nullable=True)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    def __repr__(self):
        return f"<ResourceModel(resource_id='{self.resource_id}', owner_id='{self.owner_id}')>"


class ResourceAttributeModel(Base):
    __tablename__ = "resource_attributes"

    id = Column(String(36), primary_key=True, default=_uuid)
    resource_id = Column(String(36), ForeignKey("resources.id"), nullable=False, index=True)
    attribute_id = Column(String(36), ForeignKey("attributes.id"), nullable=False)
    value = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow)


class ActionModel(Base):
    __tablename__ = "actions"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=_utcnow)


class ActionAttributeModel(Base):
    __tablename__ = "action_attributes"

    id = Column(String(36), primary_key=True, default=_uuid)
    action_id = Column(String(36), ForeignKey("actions.id"), nullable=False, index=True)
    attribute_id = Column(String(36), ForeignKey("attributes.id"), nullable=False)
    value = Column(Text, nullable=False)
    created_at = Column(DateTime, default=_utcnow)


class EnvironmentAttributeModel(Base):
    """Environment value, visible only between ``valid_from`` and ``valid_to``."""

    __tablename__ = "environment_attributes"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=True)
    attribute_id = Column(String(36), ForeignKey("attributes.id"), nullable=False)
    value = Column(Text, nullable=False)
    valid_from = Column(DateTime, nullable=True)
    valid_to = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow)


class PolicySetModel(Base):
    __tablename__ = "policy_sets"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)
    priority = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_utcnow)


class PolicyModel(Base):
    __tablename__ = "policies"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    policy_set_id = Column(String(36), ForeignKey("policy_sets.id"), nullable=True)
    effect = Column(String(16), nullable=False)
    priority = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=_utcnow)

    def __repr__(self):
        return f"<PolicyModel(name='{self.name}', effect='{self.effect}', priority={self.priority})>"


class PolicyRuleModel(Base):
    """Rule condition; ``position`` keeps stored order within a policy."""

    __tablename__ = "policy_rules"

    id = Column(String(36), primary_key=True, default=_uuid)
    policy_id = Column(String(36), ForeignKey("policies.id"), nullable=False, index=True)
    attribute_id = Column(String(36), ForeignKey("attributes.id"), nullable=False)
    operator = Column(String(32), nullable=False)
    value = Column(Text, nullable=False, default="")
    logical_operator = Column(String(8), nullable=True)
    group_id = Column(String(255), nullable=True)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_utcnow)


class PolicyTargetModel(Base):
    __tablename__ = "policy_targets"

    id = Column(String(36), primary_key=True, default=_uuid)
    policy_id = Column(String(36), ForeignKey("policies.id"), nullable=False, index=True)
    target_type = Column(String(32), nullable=False)
    target_id = Column(String(255), nullable=True)
    attribute_id = Column(String(36), ForeignKey("attributes.id"), nullable=False)
    operator = Column(String(32), nullable=False)
    value = Column(Text, nullable=False, default="")
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=_utcnow)


class AccessRequestModel(Base):
    """Audit row for one authorization that addressed a resource."""

    __tablename__ = "access_requests"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    resource_id = Column(String(255), nullable=True)
    action_id = Column(String(255), nullable=True)
    decision = Column(String(32), nullable=False)
    applied_policies = Column(Text, nullable=True)
    request_context = Column(Text, nullable=True)
    processing_time_ms = Column(Float, nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'resource_id': self.resource_id,
            'action_id': self.action_id,
            'decision': self.decision,
            'applied_policies': self.applied_policies,
            'request_context': self.request_context,
            'processing_time_ms': self.processing_time_ms,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
