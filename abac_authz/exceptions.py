"""
Exception hierarchy for the ABAC authorization engine.

Every error raised inside the engine derives from ``ABACError``. The
``Authorizer`` converts all of them into an ``indeterminate`` decision, so
these types matter mostly to adapter authors and to logging.
"""
from typing import Optional, Dict, Any


class ABACError(Exception):
    """
    Base exception for ABAC errors.

    Carries a machine-readable error code, free-form details and the
    underlying cause so that failures can be logged as structured events.
    """
    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": str(self),
            "details": self.details,
            "cause": str(self.cause) if self.cause else None
        }


class ConfigurationError(ABACError):
    """Raised for invalid engine configuration."""
    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.config_key = config_key
        if config_key:
            self.details["config_key"] = config_key


class InvalidRequestError(ABACError):
    """Raised when an authorization request is missing required identifiers."""
    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field_name = field_name
        if field_name:
            self.details["field"] = field_name


class AttributeStoreError(ABACError):
    """
    Attribute lookup errors.

    Raised when the attribute store fails; the request resolves to
    ``indeterminate`` because a partial attribute map must never be evaluated.
    """
    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        subject_id: Optional[str] = None,
        resource_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.operation = operation
        self.subject_id = subject_id
        self.resource_id = resource_id
        if operation:
            self.details["operation"] = operation
        if subject_id:
            self.details["subject_id"] = subject_id
        if resource_id:
            self.details["resource_id"] = resource_id


class PolicyStoreError(ABACError):
    """Policy, rule or target lookup errors."""
    def __init__(self, message: str, policy_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.policy_id = policy_id
        if policy_id:
            self.details["policy_id"] = policy_id


class PolicyValidationError(ABACError):
    """Raised when a policy references operators outside the catalog."""
    def __init__(
        self,
        message: str,
        policy_name: Optional[str] = None,
        problems: Optional[list] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.policy_name = policy_name
        self.problems = problems or []
        if policy_name:
            self.details["policy_name"] = policy_name
        if problems:
            self.details["problems"] = problems


class AuditError(ABACError):
    """Audit sink errors. Logged by the dispatcher, never raised to callers."""
    def __init__(self, message: str, record_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.record_id = record_id
        if record_id:
            self.details["record_id"] = record_id


class AuthorizationTimeoutError(ABACError):
    """Raised when an authorization exceeds its deadline."""
    def __init__(self, message: str = "Authorization timed out", timeout: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout
        if timeout is not None:
            self.details["timeout"] = timeout
