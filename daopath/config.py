"""
daopath Configuration

Configuration values with defaults, environment binding and validation,
grouped into per-component sections and loadable from YAML.

Configuration Sources (in order of precedence):
    1. Environment variables (DAOPATH_*)
    2. Values set programmatically or loaded from a file
    3. Default values

A ``DaoPathConfig`` is built by the caller and handed to each component's
constructor; there is no process-wide configuration object.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from daopath.errors import ConfigError

T = TypeVar("T")

GWEI = 10 ** 9


class ValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding and validation.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)

    def get(self) -> T:
        """Get the current value."""
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])
        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if isinstance(value, str) and not isinstance(self.default, str):
            value = self._coerce(value)
        if self.validator and not self.validator(value):
            raise ValidationError(f"Invalid value for config: {value!r}")
        self._value = value

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)
        try:
            if target_type == bool:
                return value.lower() in ("true", "1", "yes", "on")  # type: ignore
            elif target_type == int:
                return int(value)  # type: ignore
            elif target_type == float:
                return float(value)  # type: ignore
            return value  # type: ignore
        except ValueError as exc:
            source = self.env_var or "value"
            raise ConfigError(f"{source}: cannot parse {value!r} as {target_type.__name__}") from exc


@dataclass
class ResolverConfig:
    """Forwarder path search."""
    max_depth: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=10,
        env_var="DAOPATH_RESOLVER_MAX_DEPTH",
        description="Maximum number of forwarders in a path",
        validator=lambda x: x > 0,
    ))
    max_concurrent_queries: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=8,
        env_var="DAOPATH_RESOLVER_MAX_CONCURRENT",
        description="Worker threads for capability checks",
        validator=lambda x: x > 0,
    ))


@dataclass
class RpcConfig:
    """Chain queries."""
    provider_url: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="http://localhost:8545",
        env_var="DAOPATH_RPC_URL",
        description="JSON-RPC endpoint",
    ))
    timeout_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=10.0,
        env_var="DAOPATH_RPC_TIMEOUT",
        description="Deadline per chain query attempt",
        validator=lambda x: x > 0,
    ))
    max_attempts: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=3,
        env_var="DAOPATH_RPC_MAX_ATTEMPTS",
        description="Attempts per chain query",
        validator=lambda x: 1 <= x <= 10,
    ))
    base_delay_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=0.25,
        env_var="DAOPATH_RPC_BASE_DELAY",
        description="First retry delay; doubled on each retry",
        validator=lambda x: x >= 0,
    ))
    max_delay_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=5.0,
        env_var="DAOPATH_RPC_MAX_DELAY",
        description="Upper bound on a single retry delay",
        validator=lambda x: x >= 0,
    ))
    breaker_failure_threshold: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=5,
        env_var="DAOPATH_RPC_BREAKER_THRESHOLD",
        description="Consecutive failures before failing fast",
        validator=lambda x: x > 0,
    ))
    breaker_reset_seconds: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=30.0,
        env_var="DAOPATH_RPC_BREAKER_RESET",
        description="Seconds before a tripped breaker lets a trial call through",
        validator=lambda x: x > 0,
    ))


@dataclass
class TransactionConfig:
    """Transaction assembly and gas sizing."""
    gas_fuzz_factor: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=1.5,
        env_var="DAOPATH_GAS_FUZZ_FACTOR",
        description="Multiplier applied to estimated gas",
        validator=lambda x: x >= 1.0,
    ))
    block_gas_limit_factor: ConfigValue[float] = field(default_factory=lambda: ConfigValue(
        default=0.95,
        env_var="DAOPATH_BLOCK_GAS_LIMIT_FACTOR",
        description="Share of the latest block gas limit a transaction may use",
        validator=lambda x: 0 < x <= 1.0,
    ))
    min_gas_price_gwei: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=20,
        env_var="DAOPATH_MIN_GAS_PRICE_GWEI",
        description="Gas price applied when none was given",
        validator=lambda x: x >= 0,
    ))

    @property
    def min_gas_price_wei(self) -> int:
        return self.min_gas_price_gwei.get() * GWEI


@dataclass
class EventConfig:
    """Event log ingestion."""
    strict_ordering: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        env_var="DAOPATH_EVENTS_STRICT_ORDERING",
        description="Reject events older than the last folded one instead of refolding",
    ))


@dataclass
class ObservabilityConfig:
    """Logging."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="DAOPATH_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="DAOPATH_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class DaoPathConfig:
    """
    Root configuration.

    Example:
        config = DaoPathConfig.from_file("daopath.yaml")
        resolver = PathResolver(chain, config)
    """
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    rpc: RpcConfig = field(default_factory=RpcConfig)
    transactions: TransactionConfig = field(default_factory=TransactionConfig)
    events: EventConfig = field(default_factory=EventConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DaoPathConfig":
        """Build a configuration, applying ``data`` over the defaults."""
        config = cls()
        config.apply(data)
        return config

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "DaoPathConfig":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as exc:
                raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
        if data is not None and not isinstance(data, dict):
            raise ConfigError(f"{path}: top level must be a mapping")
        return cls.from_dict(data or {})

    def apply(self, data: Dict[str, Any]) -> None:
        """Apply nested ``{section: {key: value}}`` values."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], path: str) -> None:
            for key, value in values.items():
                key_path = f"{path}.{key}" if path else key
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {key_path}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    try:
                        attr.set(value)
                    except ValidationError as exc:
                        raise ValidationError(f"{key_path}: {exc}") from exc
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, key_path)
                else:
                    raise ConfigError(f"Expected a mapping for section: {key_path}")

        apply_to_config(self, data, "")

    def get(self, path: str) -> Any:
        """
        Get a configuration value by dotted path.

        Example: config.get("resolver.max_depth")
        """
        obj: Any = self
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        if isinstance(obj, ConfigValue):
            return obj.get()
        raise ConfigError(f"Not a config value: {path}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary of effective values."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    def validate(self) -> List[str]:
        """
        Validate all configuration values, environment overrides included.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                except ConfigError as e:
                    errors.append(f"{path}: {e}")
                    return
                if obj.validator and not obj.validator(value):
                    errors.append(f"{path}: validation failed for value {value!r}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self)
        return errors


__all__ = [
    "GWEI",
    "ValidationError",
    "ConfigValue",
    "ResolverConfig",
    "RpcConfig",
    "TransactionConfig",
    "EventConfig",
    "ObservabilityConfig",
    "DaoPathConfig",
]
