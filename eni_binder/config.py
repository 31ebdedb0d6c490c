"""Frozen dataclasses for configuration and YAML loader with env-var interpolation."""

from __future__ import annotations

import os
import re
import types
import typing
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigError

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")

SUPPORTED_STRATEGIES = ("ENI",)


def _interpolate_env(value: str) -> str:
    """Replace ${ENV_VAR} placeholders with environment variable values."""

    def _replace(match: re.Match) -> str:
        env_key = match.group(1)
        env_val = os.environ.get(env_key)
        if env_val is None:
            raise ConfigError(f"Environment variable '{env_key}' is not set")
        return env_val

    return _ENV_PATTERN.sub(_replace, value)


def _walk_and_interpolate(obj: Any) -> Any:
    """Recursively interpolate env vars in strings throughout a nested structure."""
    if isinstance(obj, str):
        return _interpolate_env(obj)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(v) for v in obj]
    return obj


@dataclass(frozen=True)
class AWSConfig:
    region: str = ""  # empty = derive from the instance's availability zone
    access_key_id: str = ""
    secret_access_key: str = ""
    credential_profile: str = ""  # empty = use default boto3 credential chain

    @property
    def has_static_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)


@dataclass(frozen=True)
class BindingConfig:
    strategy: str = "ENI"
    rebind_retries: int = 3
    retry_interval_ms: int = 5 * 60 * 1000  # while bound
    retry_interval_ms_when_unbound: int = 60 * 1000
    retry_sleep_ms: int = 1000  # fixed delay between startup/shutdown attempts
    device_index: int = 1  # slot 0 is the primary interface


@dataclass(frozen=True)
class DiscoveryConfig:
    use_dns: bool = False
    dns_name: str = ""
    port: int = 7001
    context: str = "eureka/v2"
    service_urls: dict[str, Any] = field(default_factory=dict)  # zone -> list[str] or "a,b"

    def urls_for_zone(self, zone: str) -> list[str]:
        raw = self.service_urls.get(zone) or self.service_urls.get("default") or []
        if isinstance(raw, str):
            raw = raw.split(",")
        return [u.strip() for u in raw if u and u.strip()]


@dataclass(frozen=True)
class InstanceConfig:
    instance_id: str = ""
    availability_zone: str = ""

    @property
    def is_static(self) -> bool:
        return bool(self.instance_id and self.availability_zone)


@dataclass(frozen=True)
class MetadataConfig:
    base_url: str = "http://169.254.169.254"
    timeout: int = 2
    token_ttl_seconds: int = 21600


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    format: str = "json"  # "json" or "text"


@dataclass(frozen=True)
class AppConfig:
    aws: AWSConfig = field(default_factory=AWSConfig)
    binding: BindingConfig = field(default_factory=BindingConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    instance: InstanceConfig = field(default_factory=InstanceConfig)
    metadata: MetadataConfig = field(default_factory=MetadataConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _get_dataclass_type(ft: Any) -> type | None:
    """Return the underlying dataclass type from a type annotation (handles Optional/X|None)."""
    if isinstance(ft, type) and hasattr(ft, "__dataclass_fields__"):
        return ft
    if isinstance(ft, types.UnionType):
        args = [a for a in ft.__args__ if a is not type(None)]
        if len(args) == 1 and isinstance(args[0], type) and hasattr(args[0], "__dataclass_fields__"):
            return args[0]
    origin = getattr(ft, "__origin__", None)
    if origin is typing.Union:
        args = [a for a in ft.__args__ if a is not type(None)]
        if len(args) == 1 and isinstance(args[0], type) and hasattr(args[0], "__dataclass_fields__"):
            return args[0]
    return None


def _build_nested(cls: type, data: dict[str, Any]) -> Any:
    """Construct a frozen dataclass, recursively building nested dataclass fields."""
    if not isinstance(data, dict):
        return data
    field_types = {f.name: f.type for f in cls.__dataclass_fields__.values()}
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key not in field_types:
            continue
        ft = field_types[key]
        # Resolve string annotations to actual types in the module scope
        if isinstance(ft, str):
            ft = eval(ft, globals(), {cls.__name__: cls})  # noqa: S307
        dc_type = _get_dataclass_type(ft)
        if dc_type is not None and isinstance(value, dict):
            kwargs[key] = _build_nested(dc_type, value)
        elif dc_type is not None and value is None:
            continue
        else:
            kwargs[key] = value
    return cls(**kwargs)


def load_config(path: str | Path) -> AppConfig:
    """Load and validate configuration from a YAML file."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Configuration file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f)

    if not isinstance(raw, dict):
        raise ConfigError("Configuration file must be a YAML mapping")

    raw = _walk_and_interpolate(raw)
    config = _build_nested(AppConfig, raw)
    _validate(config)
    return config


def _validate(config: AppConfig) -> None:
    """Validate configuration values."""
    binding = config.binding
    if binding.strategy not in SUPPORTED_STRATEGIES:
        raise ConfigError(
            f"binding.strategy must be one of {', '.join(SUPPORTED_STRATEGIES)}, got '{binding.strategy}'"
        )
    if binding.rebind_retries < 1:
        raise ConfigError("binding.rebind_retries must be >= 1")
    if binding.retry_interval_ms <= 0 or binding.retry_interval_ms_when_unbound <= 0:
        raise ConfigError("binding.retry_interval_ms and retry_interval_ms_when_unbound must be > 0")
    if binding.retry_sleep_ms < 0:
        raise ConfigError("binding.retry_sleep_ms must be >= 0")
    if binding.device_index < 1:
        raise ConfigError("binding.device_index must be >= 1 (slot 0 is the primary interface)")

    if bool(config.aws.access_key_id) != bool(config.aws.secret_access_key):
        raise ConfigError("aws.access_key_id and aws.secret_access_key must be set together")

    if config.discovery.use_dns and not config.discovery.dns_name:
        raise ConfigError("discovery.dns_name is required when discovery.use_dns is true")
    if not isinstance(config.discovery.service_urls, dict):
        raise ConfigError("discovery.service_urls must be a mapping of zone -> URLs")

    if bool(config.instance.instance_id) != bool(config.instance.availability_zone):
        raise ConfigError("instance.instance_id and instance.availability_zone must be set together")

    if config.logging.format not in ("json", "text"):
        raise ConfigError("logging.format must be 'json' or 'text'")
