"""
Security logging for the ABAC authorization engine.

Structured security events written through stdlib ``logging`` as JSON or
plain text, with optional size-based log rotation. Every authorization
decision is reported as an ``AuthorizationEvent``.
"""
import json
import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from logging.handlers import RotatingFileHandler
import uuid

from .exceptions import ConfigurationError

SECURITY_LOGGER_NAME = "abac_authz.security"


class SecurityEventType(Enum):
    """Types of security events."""
    AUTHORIZATION = "authorization"
    ACCESS_DENIED = "access_denied"
    AUTHORIZATION_ERROR = "authorization_error"
    POLICY_VALIDATION = "policy_validation"
    AUDIT_EVENT = "audit_event"


class SecurityEventSeverity(Enum):
    """Security event severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class SecurityEvent:
    """Base security event data model."""
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_type: SecurityEventType = SecurityEventType.AUDIT_EVENT
    severity: SecurityEventSeverity = SecurityEventSeverity.LOW
    source: str = "abac_authz"
    user_id: Optional[str] = None
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    correlation_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization."""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        data['event_type'] = self.event_type.value
        data['severity'] = self.severity.value
        return data

    def to_json(self) -> str:
        """Convert event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


@dataclass
class AuthorizationEvent(SecurityEvent):
    """Authorization decision event."""
    event_type: SecurityEventType = SecurityEventType.AUTHORIZATION
    resource: Optional[str] = None
    action: Optional[str] = None
    decision: str = "deny"
    reason: Optional[str] = None
    applied_policies: List[str] = field(default_factory=list)
    processing_time_ms: Optional[float] = None

    def __post_init__(self):
        """Set severity based on the decision."""
        if self.decision == "indeterminate":
            self.event_type = SecurityEventType.AUTHORIZATION_ERROR
            self.severity = SecurityEventSeverity.HIGH
        elif self.decision == "deny":
            self.event_type = SecurityEventType.ACCESS_DENIED
            self.severity = SecurityEventSeverity.MEDIUM
        else:
            self.severity = SecurityEventSeverity.LOW


class SecurityLogger:
    """
    Security event logger.

    Events are serialized per ``log_format`` and emitted at a level derived
    from their severity: critical, error for high, warning for medium and
    info otherwise.
    """

    def __init__(
        self,
        log_level: str = "INFO",
        log_format: str = "json",
        log_file: Optional[str] = None,
        max_file_size: int = 10 * 1024 * 1024,
        backup_count: int = 5,
        console: bool = True,
        logger_name: str = SECURITY_LOGGER_NAME
    ):
        level = getattr(logging, str(log_level).upper(), None)
        if not isinstance(level, int):
            raise ConfigurationError(f"Invalid log level: {log_level}", config_key="log_level")
        if log_format not in ("json", "text"):
            raise ConfigurationError(f"Invalid log format: {log_format}", config_key="log_format")

        self.log_level = level
        self.log_format = log_format
        self.log_file = log_file

        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(self.log_level)
        self.logger.handlers.clear()

        if log_file:
            try:
                Path(log_file).parent.mkdir(parents=True, exist_ok=True)
                file_handler = RotatingFileHandler(
                    log_file,
                    maxBytes=max_file_size,
                    backupCount=backup_count
                )
            except OSError as e:
                raise ConfigurationError(
                    f"Failed to setup security log file: {e}",
                    config_key="log_file",
                    cause=e
                )
            file_handler.setLevel(self.log_level)
            file_handler.setFormatter(self._formatter())
            self.logger.addHandler(file_handler)

        if console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(self.log_level)
            console_handler.setFormatter(self._formatter())
            self.logger.addHandler(console_handler)

    def _formatter(self) -> logging.Formatter:
        if self.log_format == "json":
            return logging.Formatter('%(message)s')
        return logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    def _write_log_entry(self, log_entry: Dict[str, Any]):
        if self.log_format == "json":
            message = json.dumps(log_entry, default=str)
        else:
            message = f"Security Event: {log_entry.get('message', 'Unknown')}"

        severity = log_entry.get('severity', 'low')
        if severity == 'critical':
            self.logger.critical(message)
        elif severity == 'high':
            self.logger.error(message)
        elif severity == 'medium':
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_event(self, event: SecurityEvent):
        """Log a security event."""
        self._write_log_entry(event.to_dict())

    def log_authorization(
        self,
        subject_id: str,
        action: str,
        decision: str,
        reason: str,
        resource: Optional[str] = None,
        applied_policies: Optional[List[str]] = None,
        processing_time_ms: Optional[float] = None,
        **kwargs
    ):
        """Log an authorization decision."""
        target = f"{resource}:{action}" if resource else action
        event = AuthorizationEvent(
            user_id=subject_id,
            resource=resource,
            action=action,
            decision=decision,
            reason=reason,
            applied_policies=list(applied_policies or []),
            processing_time_ms=processing_time_ms,
            message=f"Authorization {decision} for subject {subject_id} on {target}",
            **kwargs
        )
        self.log_event(event)

    def log_policy_violation(
        self,
        policy_name: str,
        problems: List[str],
        severity: SecurityEventSeverity = SecurityEventSeverity.HIGH
    ):
        """Log a policy rejected at load time."""
        event = SecurityEvent(
            event_type=SecurityEventType.POLICY_VALIDATION,
            severity=severity,
            message=f"Policy rejected: {policy_name}",
            details={"policy_name": policy_name, "problems": problems},
        )
        self.log_event(event)

    def shutdown(self):
        """Flush and close handlers."""
        for handler in list(self.logger.handlers):
            handler.flush()
            handler.close()
            self.logger.removeHandler(handler)


_security_logger: Optional[SecurityLogger] = None


def get_security_logger() -> SecurityLogger:
    """Get global security logger instance."""
    global _security_logger
    if _security_logger is None:
        _security_logger = SecurityLogger()
    return _security_logger


def configure_security_logger(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[str] = None,
    **kwargs
) -> SecurityLogger:
    """Configure global security logger."""
    global _security_logger
    if _security_logger:
        _security_logger.shutdown()

    _security_logger = SecurityLogger(
        log_level=log_level,
        log_format=log_format,
        log_file=log_file,
        **kwargs
    )
    return _security_logger


def shutdown_security_logger():
    """Shutdown global security logger."""
    global _security_logger
    if _security_logger:
        _security_logger.shutdown()
        _security_logger = None
