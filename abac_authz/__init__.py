"""
ABAC Authorization Engine

Attribute-based access control: attribute gathering, policy targets, grouped
rule evaluation and highest-priority-wins decisions, with in-memory and
SQLAlchemy storage and an optional FastAPI router.

Example usage:
    from abac_authz import Authorizer, AuthorizationRequest
    from abac_authz.storage import InMemoryABACStore

    store = InMemoryABACStore()
    authorizer = Authorizer(store, store, audit_sink=store)

    result = await authorizer.authorize(
        AuthorizationRequest(subject_id="u1", action_name="read", resource_id="doc-1")
    )
"""

from .version import __version__
from .config import ABACConfig, CacheConfig, BatchConfig, AuditConfig, SecurityLoggingConfig
from .models import (
    AttributeCategory,
    AttributeDefinition,
    AttributeValue,
    AttributeMap,
    PolicyEffect,
    Decision,
    LogicalOperator,
    Policy,
    PolicyRule,
    PolicyTarget,
    PolicyEvaluation,
    AuthorizationRequest,
    AuthorizationResult,
    AccessRequestRecord,
)
from .attributes import AttributeStore, AttributeGatherer
from .cache import AttributeCache
from .policies import PolicyRepository, PolicyLoader, validate_policy
from .audit import AuditSink, AuditDispatcher
from .authorizer import Authorizer
from .engine import Operator, TargetMatcher, RuleEvaluator, DecisionResolver
from .logging import SecurityLogger, get_security_logger, configure_security_logger
from .exceptions import (
    ABACError,
    ConfigurationError,
    InvalidRequestError,
    AttributeStoreError,
    PolicyStoreError,
    PolicyValidationError,
    AuditError,
    AuthorizationTimeoutError,
)

# Package metadata
__title__ = "abac-authz"
__license__ = "MIT"

__all__ = [
    "__version__",
    "ABACConfig",
    "CacheConfig",
    "BatchConfig",
    "AuditConfig",
    "SecurityLoggingConfig",
    "AttributeCategory",
    "AttributeDefinition",
    "AttributeValue",
    "AttributeMap",
    "PolicyEffect",
    "Decision",
    "LogicalOperator",
    "Policy",
    "PolicyRule",
    "PolicyTarget",
    "PolicyEvaluation",
    "AuthorizationRequest",
    "AuthorizationResult",
    "AccessRequestRecord",
    "AttributeStore",
    "AttributeGatherer",
    "AttributeCache",
    "PolicyRepository",
    "PolicyLoader",
    "validate_policy",
    "AuditSink",
    "AuditDispatcher",
    "Authorizer",
    "Operator",
    "TargetMatcher",
    "RuleEvaluator",
    "DecisionResolver",
    "SecurityLogger",
    "get_security_logger",
    "configure_security_logger",
    "ABACError",
    "ConfigurationError",
    "InvalidRequestError",
    "AttributeStoreError",
    "PolicyStoreError",
    "PolicyValidationError",
    "AuditError",
    "AuthorizationTimeoutError",
]
