"""
Configuration for the ABAC authorization engine.

``ABACConfig`` groups the evaluation switches with cache, batch, audit and
security logging settings. Each section validates itself on construction and
raises ``ConfigurationError`` for invalid values. Configuration can be built
from keyword arguments, a dictionary, a YAML/JSON file or ``ABAC_`` prefixed
environment variables.
"""
import os
import json
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Dict, Any, Optional, Union

import yaml

from .exceptions import ConfigurationError


@dataclass
class CacheConfig:
    """Attribute cache settings."""
    enabled: bool = False
    max_size: int = 1000
    ttl_seconds: float = 60.0

    def __post_init__(self):
        if self.max_size < 1:
            raise ConfigurationError("cache max_size must be at least 1", config_key="cache.max_size")
        if self.ttl_seconds <= 0:
            raise ConfigurationError("cache ttl_seconds must be positive", config_key="cache.ttl_seconds")


@dataclass
class BatchConfig:
    """Batch authorization settings."""
    width: int = 10
    pause_seconds: float = 0.0

    def __post_init__(self):
        if self.width < 1:
            raise ConfigurationError("batch width must be at least 1", config_key="batch.width")
        if self.pause_seconds < 0:
            raise ConfigurationError("batch pause_seconds must not be negative", config_key="batch.pause_seconds")


@dataclass
class AuditConfig:
    """Access request audit settings."""
    enabled: bool = True
    queue_size: int = 1000
    shutdown_timeout: float = 5.0

    def __post_init__(self):
        if self.queue_size < 1:
            raise ConfigurationError("audit queue_size must be at least 1", config_key="audit.queue_size")
        if self.shutdown_timeout < 0:
            raise ConfigurationError(
                "audit shutdown_timeout must not be negative", config_key="audit.shutdown_timeout"
            )


@dataclass
class SecurityLoggingConfig:
    """Configuration for security logging."""
    enabled: bool = True
    log_level: str = "INFO"
    log_format: str = "json"  # json, text
    log_file: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024
    backup_count: int = 5

    def __post_init__(self):
        self.log_level = str(self.log_level).upper()
        if self.log_level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ConfigurationError(f"Invalid log_level: {self.log_level}", config_key="logging.log_level")
        if self.log_format not in ["json", "text"]:
            raise ConfigurationError(f"Invalid log_format: {self.log_format}", config_key="logging.log_format")
        if self.max_file_size < 1024:
            raise ConfigurationError(
                "max_file_size must be at least 1024 bytes", config_key="logging.max_file_size"
            )


_SECTIONS = {
    "cache": CacheConfig,
    "batch": BatchConfig,
    "audit": AuditConfig,
    "logging": SecurityLoggingConfig,
}


@dataclass
class ABACConfig:
    """
    Authorization engine configuration.

    ``role_attributes_override`` decides which value wins when a subject and
    its role assign the same attribute (role by default).
    ``strict_rule_references`` fails a rule whose bare attribute name is
    present in more than one category. ``validate_operators`` rejects
    policies that use unknown operators or connectives.
    """
    role_attributes_override: bool = True
    strict_rule_references: bool = False
    validate_operators: bool = False
    request_timeout: Optional[float] = None
    database_url: Optional[str] = None

    cache: CacheConfig = field(default_factory=CacheConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    logging: SecurityLoggingConfig = field(default_factory=SecurityLoggingConfig)

    def __post_init__(self):
        for name, section_cls in _SECTIONS.items():
            value = getattr(self, name)
            if isinstance(value, dict):
                setattr(self, name, _build_section(section_cls, value, name))
            elif not isinstance(value, section_cls):
                raise ConfigurationError(f"Invalid {name} configuration section", config_key=name)
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive", config_key="request_timeout")

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ABACConfig":
        """Build configuration from a (possibly nested) dictionary."""
        data = dict(data or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
        return cls(**data)

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> "ABACConfig":
        """Load configuration from file (JSON or YAML)."""
        config_path = Path(config_path)
        if not config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        suffix = config_path.suffix.lower()
        if suffix not in ('.yaml', '.yml', '.json'):
            raise ConfigurationError(f"Unsupported configuration file format: {config_path.suffix}")

        try:
            with open(config_path, 'r') as f:
                if suffix == '.json':
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load configuration from {config_path}: {e}", cause=e)

        return cls.from_dict(data or {})

    @classmethod
    def from_env(cls, prefix: str = "ABAC_") -> "ABACConfig":
        """Load configuration from environment variables."""
        config_data: Dict[str, Any] = {}

        env_mappings = {
            f"{prefix}ROLE_ATTRIBUTES_OVERRIDE": ("role_attributes_override", bool),
            f"{prefix}STRICT_RULE_REFERENCES": ("strict_rule_references", bool),
            f"{prefix}VALIDATE_OPERATORS": ("validate_operators", bool),
            f"{prefix}REQUEST_TIMEOUT": ("request_timeout", float),
            f"{prefix}DATABASE_URL": ("database_url", str),
            f"{prefix}CACHE_ENABLED": ("cache.enabled", bool),
            f"{prefix}CACHE_MAX_SIZE": ("cache.max_size", int),
            f"{prefix}CACHE_TTL_SECONDS": ("cache.ttl_seconds", float),
            f"{prefix}BATCH_WIDTH": ("batch.width", int),
            f"{prefix}BATCH_PAUSE_SECONDS": ("batch.pause_seconds", float),
            f"{prefix}AUDIT_ENABLED": ("audit.enabled", bool),
            f"{prefix}AUDIT_QUEUE_SIZE": ("audit.queue_size", int),
            f"{prefix}AUDIT_SHUTDOWN_TIMEOUT": ("audit.shutdown_timeout", float),
            f"{prefix}LOG_LEVEL": ("logging.log_level", str),
            f"{prefix}LOG_FORMAT": ("logging.log_format", str),
            f"{prefix}LOG_FILE": ("logging.log_file", str),
        }

        for env_var, (config_path, config_type) in env_mappings.items():
            value = os.getenv(env_var)
            if value is None:
                continue
            try:
                if config_type == bool:
                    value = value.lower() in ('true', '1', 'yes', 'on')
                elif config_type == int:
                    value = int(value)
                elif config_type == float:
                    value = float(value)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {value}", config_key=config_path, cause=e)
            cls._set_nested_value(config_data, config_path, value)

        return cls.from_dict(config_data)

    @staticmethod
    def _set_nested_value(data: dict, path: str, value: Any):
        """Set a nested dictionary value using dot notation."""
        keys = path.split('.')
        current = data
        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)


def _build_section(section_cls, data: Dict[str, Any], name: str):
    known = {f.name for f in fields(section_cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(
            f"Unknown {name} configuration keys: {', '.join(unknown)}", config_key=name
        )
    return section_cls(**data)
