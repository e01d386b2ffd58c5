"""
Configuration management and loading.

Loads provider, breaker, cache, guardrail, router and storage settings from YAML.
Credentials are never read from the file, only the names of the
environment variables that hold them.
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

from ai_provider_guard.core.guardrails import GuardrailSettings
from ai_provider_guard.core.registry import CLIENT_KINDS, ProviderConfig, ProviderRegistry
from ai_provider_guard.storage.db import DEFAULT_DB_PATH


@dataclass(frozen=True)
class BreakerConfig:
    """Circuit breaker thresholds shared by every provider."""
    failure_threshold: int = 5
    recovery_timeout: float = 30.0

    def __post_init__(self):
        """Validate breaker values."""
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.recovery_timeout <= 0:
            raise ValueError("recovery_timeout must be > 0")


@dataclass(frozen=True)
class CacheConfig:
    """Fallback cache limits."""
    ttl: float = 3600.0
    max_entries: int = 256
    confidence_factor: float = 0.5

    def __post_init__(self):
        """Validate cache values."""
        if self.ttl <= 0:
            raise ValueError("ttl must be > 0")
        if self.max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        if not 0 <= self.confidence_factor < 1:
            raise ValueError("confidence_factor must be >= 0 and < 1")


@dataclass(frozen=True)
class RouterConfig:
    """Worker pool that runs provider calls."""
    max_workers: int = 8

    def __post_init__(self):
        """Validate router values."""
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")


@dataclass(frozen=True)
class StorageConfig:
    """Where disclosures and model cards live."""
    db_path: str = DEFAULT_DB_PATH


@dataclass(frozen=True)
class OrchestratorConfig:
    """Complete orchestrator configuration."""
    providers: Tuple[ProviderConfig, ...]
    breaker: BreakerConfig = field(default_factory=BreakerConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    guardrails: GuardrailSettings = field(default_factory=GuardrailSettings)
    router: RouterConfig = field(default_factory=RouterConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    def registry(self) -> ProviderRegistry:
        """Build the provider registry for this configuration."""
        return ProviderRegistry(self.providers)


PROVIDER_REQUIRED_KEYS = {
    'id', 'display_name', 'model_name', 'priority', 'max_tokens',
    'request_timeout', 'cost_per_token',
}
PROVIDER_OPTIONAL_KEYS = {'api_key_env', 'base_url', 'client'}


def load_orchestrator_config(path: str) -> OrchestratorConfig:
    """Load and validate orchestrator configuration from YAML file.

    Strict validation ensures no silent misconfigurations: unknown keys,
    missing keys and out-of-range values all fail loudly.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated OrchestratorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Orchestrator config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'providers', 'breaker', 'cache', 'guardrails', 'router', 'storage'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'providers' not in raw_config:
        raise ValueError("Missing required 'providers' section")
    providers_data = raw_config['providers']
    if not isinstance(providers_data, list) or not providers_data:
        raise ValueError("'providers' must be a non-empty list")

    providers = []
    for index, provider_data in enumerate(providers_data):
        providers.append(_parse_provider(provider_data, f"providers[{index}]"))

    seen = set()
    for provider in providers:
        if provider.id in seen:
            raise ValueError(f"Duplicate provider id: {provider.id}")
        seen.add(provider.id)

    breaker_data = _section(raw_config, 'breaker', {'failure_threshold', 'recovery_timeout'})
    cache_data = _section(raw_config, 'cache', {'ttl', 'max_entries', 'confidence_factor'})
    guardrail_data = _section(raw_config, 'guardrails', {
        'injection_block_threshold', 'injection_warn_threshold', 'output_block_threshold',
    })
    router_data = _section(raw_config, 'router', {'max_workers'})
    storage_data = _section(raw_config, 'storage', {'db_path'})

    return OrchestratorConfig(
        providers=tuple(providers),
        breaker=BreakerConfig(
            failure_threshold=_as_int(breaker_data.get('failure_threshold', 5),
                                      'breaker.failure_threshold'),
            recovery_timeout=_as_number(breaker_data.get('recovery_timeout', 30.0),
                                        'breaker.recovery_timeout'),
        ),
        cache=CacheConfig(
            ttl=_as_number(cache_data.get('ttl', 3600.0), 'cache.ttl'),
            max_entries=_as_int(cache_data.get('max_entries', 256), 'cache.max_entries'),
            confidence_factor=_as_number(cache_data.get('confidence_factor', 0.5),
                                         'cache.confidence_factor'),
        ),
        guardrails=GuardrailSettings(
            injection_block_threshold=_as_number(
                guardrail_data.get('injection_block_threshold', 8.0),
                'guardrails.injection_block_threshold'),
            injection_warn_threshold=_as_number(
                guardrail_data.get('injection_warn_threshold', 5.0),
                'guardrails.injection_warn_threshold'),
            output_block_threshold=_as_number(
                guardrail_data.get('output_block_threshold', 5.0),
                'guardrails.output_block_threshold'),
        ),
        router=RouterConfig(
            max_workers=_as_int(router_data.get('max_workers', 8), 'router.max_workers'),
        ),
        storage=StorageConfig(
            db_path=str(storage_data.get('db_path', DEFAULT_DB_PATH)),
        ),
    )


def _section(raw_config: Dict, name: str, allowed_keys: set) -> Dict[str, Any]:
    """Return an optional section as a dict, rejecting unknown keys."""
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _parse_provider(data: Any, path: str) -> ProviderConfig:
    """Parse and validate one provider entry.

    Args:
        data: Provider configuration data
        path: Path for error messages

    Returns:
        Validated ProviderConfig

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"{path} must be a dictionary")

    unknown_keys = set(data.keys()) - PROVIDER_REQUIRED_KEYS - PROVIDER_OPTIONAL_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
    missing_keys = PROVIDER_REQUIRED_KEYS - set(data.keys())
    if missing_keys:
        raise ValueError(f"Missing required keys in {path}: {sorted(missing_keys)}")

    for key in ('id', 'display_name', 'model_name'):
        if not isinstance(data[key], str) or not data[key].strip():
            raise ValueError(f"'{key}' in {path} must be a non-empty string")

    max_tokens = _as_int(data['max_tokens'], f"{path}.max_tokens")
    if max_tokens <= 0:
        raise ValueError(f"'max_tokens' in {path} must be > 0")

    request_timeout = _as_number(data['request_timeout'], f"{path}.request_timeout")
    if request_timeout <= 0:
        raise ValueError(f"'request_timeout' in {path} must be > 0")

    # Strings keep price precision; floats go through str() to avoid binary noise
    try:
        cost_per_token = Decimal(str(data['cost_per_token']))
    except InvalidOperation:
        raise ValueError(f"'cost_per_token' in {path} must be a decimal number")
    if cost_per_token < 0:
        raise ValueError(f"'cost_per_token' in {path} cannot be negative")

    api_key_env = _optional_str(data.get('api_key_env'), f"{path}.api_key_env")
    base_url = _optional_str(data.get('base_url'), f"{path}.base_url")
    client = _optional_str(data.get('client'), f"{path}.client") or "openai"
    if client not in CLIENT_KINDS:
        raise ValueError(f"'client' in {path} must be one of {list(CLIENT_KINDS)}")

    return ProviderConfig(
        id=data['id'],
        display_name=data['display_name'],
        model_name=data['model_name'],
        priority=_as_int(data['priority'], f"{path}.priority"),
        max_tokens=max_tokens,
        request_timeout=request_timeout,
        cost_per_token=cost_per_token,
        api_key_env=api_key_env,
        base_url=base_url,
        client=client,
    )


def _as_int(value: Any, path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{path}' must be an integer")
    return value


def _as_number(value: Any, path: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{path}' must be a number")
    return float(value)


def _optional_str(value: Any, path: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"'{path}' must be a non-empty string")
    return value
