"""
Configuration management and loading.

Handles broker settings from YAML and resolves the provider credential
from the environment.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml

VALID_MODES = ("generate", "explain")


def _default_tiers() -> Dict[str, int]:
    return {"developer": 10000, "sme": 25000, "admin": 100000}


def _default_fallbacks() -> Tuple[str, ...]:
    return (
        "microsoft/DialoGPT-medium",
        "gpt2",
        "distilgpt2",
        "Salesforce/codegen-350M-mono",
    )


def _default_role_rate_limits() -> Dict[str, int]:
    return {"developer": 100, "sme": 200, "admin": 1000}


@dataclass(frozen=True)
class QuotaConfig:
    """Role-tiered daily token limits."""
    tiers: Dict[str, int] = field(default_factory=_default_tiers)
    default_role: Optional[str] = None
    charge_failed_requests: bool = True
    serialize_per_user: bool = False

    def __post_init__(self):
        """Validate tiers and resolve the default role to the lowest tier."""
        if not self.tiers:
            raise ValueError("quota.tiers cannot be empty")
        for role, limit in self.tiers.items():
            if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
                raise ValueError(f"quota.tiers.{role} must be a positive integer")
        lowest = min(self.tiers, key=self.tiers.get)
        if self.default_role is None:
            object.__setattr__(self, "default_role", lowest)
        elif self.default_role not in self.tiers:
            raise ValueError(f"quota.default_role '{self.default_role}' is not a configured tier")
        elif self.tiers[self.default_role] != self.tiers[lowest]:
            raise ValueError(f"quota.default_role '{self.default_role}' must be the lowest tier ({lowest})")


@dataclass(frozen=True)
class ModeTemperatures:
    """Sampling temperature per operation mode."""
    generate: float
    explain: float

    def __post_init__(self):
        for mode in VALID_MODES:
            value = getattr(self, mode)
            if value < 0 or value > 2:
                raise ValueError(f"temperature for '{mode}' must be between 0 and 2")

    def for_mode(self, mode: str) -> float:
        """Temperature for a mode; unknown modes use the explain value."""
        return self.generate if mode == "generate" else self.explain


@dataclass(frozen=True)
class ProviderConfig:
    """Remote inference provider settings."""
    primary_model: str = "Qwen/Qwen2.5-Coder-32B-Instruct"
    fallback_models: Tuple[str, ...] = field(default_factory=_default_fallbacks)
    base_url: str = "https://router.huggingface.co/v1"
    api_key_env: str = "HUGGINGFACE_API_KEY"
    credential_prefix: str = "hf_"
    credential_min_length: int = 11
    max_output_tokens: int = 1024
    top_p: float = 0.9
    timeout_seconds: float = 30.0
    chat_temperatures: ModeTemperatures = field(
        default_factory=lambda: ModeTemperatures(generate=0.4, explain=0.3)
    )
    completion_temperatures: ModeTemperatures = field(
        default_factory=lambda: ModeTemperatures(generate=0.7, explain=0.3)
    )

    def __post_init__(self):
        """Validate provider limits."""
        if not self.primary_model or not self.primary_model.strip():
            raise ValueError("provider.primary_model cannot be empty")
        if self.max_output_tokens <= 0:
            raise ValueError("provider.max_output_tokens must be > 0")
        if self.timeout_seconds <= 0:
            raise ValueError("provider.timeout_seconds must be > 0")
        if not 0 < self.top_p <= 1:
            raise ValueError("provider.top_p must be in (0, 1]")

    def resolve_api_key(self) -> Optional[str]:
        """Read the credential from the configured environment variable."""
        value = os.environ.get(self.api_key_env)
        return value.strip() if value else None


@dataclass(frozen=True)
class ContextConfig:
    """Prompt and project-context size bounds."""
    max_tokens: int = 40000
    max_prompt_chars: int = 10000
    max_response_chars: int = 50000

    def __post_init__(self):
        if self.max_tokens <= 0:
            raise ValueError("context.max_tokens must be > 0")
        if self.max_prompt_chars <= 0:
            raise ValueError("context.max_prompt_chars must be > 0")
        if self.max_response_chars <= 0:
            raise ValueError("context.max_response_chars must be > 0")


@dataclass(frozen=True)
class LocalConfig:
    """Simulated latency range of the local heuristic stage."""
    min_delay_seconds: float = 0.5
    max_delay_seconds: float = 1.5

    def __post_init__(self):
        if self.min_delay_seconds < 0:
            raise ValueError("local.min_delay_seconds cannot be negative")
        if self.max_delay_seconds < self.min_delay_seconds:
            raise ValueError("local.max_delay_seconds must be >= local.min_delay_seconds")


@dataclass(frozen=True)
class StorageConfig:
    db_path: str = "ai_gen_broker.db"


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-role request caps applied at the HTTP boundary."""
    window_seconds: int = 3600
    per_role: Dict[str, int] = field(default_factory=_default_role_rate_limits)
    anonymous: int = 10

    def __post_init__(self):
        if self.window_seconds <= 0:
            raise ValueError("rate_limits.window_seconds must be > 0")
        if self.anonymous < 0:
            raise ValueError("rate_limits.anonymous cannot be negative")
        for role, limit in self.per_role.items():
            if limit <= 0:
                raise ValueError(f"rate_limits.per_role.{role} must be > 0")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self):
        if self.level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"logging.level '{self.level}' is not a valid level")


@dataclass(frozen=True)
class BrokerConfig:
    """Complete broker configuration."""
    quota: QuotaConfig = field(default_factory=QuotaConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    context: ContextConfig = field(default_factory=ContextConfig)
    local: LocalConfig = field(default_factory=LocalConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    rate_limits: RateLimitConfig = field(default_factory=RateLimitConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


_SECTION_KEYS = {
    "quota": {"tiers", "default_role", "charge_failed_requests", "serialize_per_user"},
    "provider": {
        "primary_model", "fallback_models", "base_url", "api_key_env",
        "credential_prefix", "credential_min_length", "max_output_tokens",
        "top_p", "timeout_seconds", "temperatures",
    },
    "context": {"max_tokens", "max_prompt_chars", "max_response_chars"},
    "local": {"min_delay_seconds", "max_delay_seconds"},
    "storage": {"db_path"},
    "rate_limits": {"window_seconds", "per_role", "anonymous"},
    "logging": {"level"},
}


def load_broker_config(path: Optional[str] = None) -> BrokerConfig:
    """Load and validate broker configuration from a YAML file.

    Strict validation ensures no silent misconfigurations: unknown keys
    anywhere in the file are rejected instead of ignored.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated BrokerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return BrokerConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Broker config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTION_KEYS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {}
    for name in _SECTION_KEYS:
        section = raw_config.get(name) or {}
        if not isinstance(section, dict):
            raise ValueError(f"'{name}' must be a dictionary")
        _check_keys(section, _SECTION_KEYS[name], name)
        sections[name] = section

    return BrokerConfig(
        quota=_parse_quota(sections["quota"]),
        provider=_parse_provider(sections["provider"]),
        context=ContextConfig(**sections["context"]),
        local=LocalConfig(**sections["local"]),
        storage=StorageConfig(**sections["storage"]),
        rate_limits=_parse_rate_limits(sections["rate_limits"]),
        logging=LoggingConfig(**sections["logging"]),
    )


def _check_keys(data: Dict[str, Any], allowed: set, path: str) -> None:
    unknown = set(data.keys()) - allowed
    if unknown:
        raise ValueError(f"Unknown keys in {path}: {unknown}")


def _parse_quota(data: Dict[str, Any]) -> QuotaConfig:
    kwargs = dict(data)
    if "tiers" in kwargs:
        tiers = kwargs["tiers"]
        if not isinstance(tiers, dict):
            raise ValueError("'quota.tiers' must be a dictionary")
        kwargs["tiers"] = {str(role).lower(): limit for role, limit in tiers.items()}
    if "default_role" in kwargs:
        kwargs["default_role"] = str(kwargs["default_role"]).lower()
    return QuotaConfig(**kwargs)


def _parse_provider(data: Dict[str, Any]) -> ProviderConfig:
    """Parse the provider section, including per-convention temperatures.

    Args:
        data: Provider configuration data

    Returns:
        Validated ProviderConfig

    Raises:
        ValueError: If configuration is invalid
    """
    kwargs = dict(data)

    if "fallback_models" in kwargs:
        fallbacks = kwargs["fallback_models"] or []
        if not isinstance(fallbacks, list) or not all(isinstance(m, str) for m in fallbacks):
            raise ValueError("'provider.fallback_models' must be a list of model identifiers")
        kwargs["fallback_models"] = tuple(fallbacks)

    temperatures = kwargs.pop("temperatures", None)
    if temperatures is not None:
        if not isinstance(temperatures, dict):
            raise ValueError("'provider.temperatures' must be a dictionary")
        _check_keys(temperatures, {"chat", "completion"}, "provider.temperatures")
        for convention in ("chat", "completion"):
            if convention not in temperatures:
                continue
            values = temperatures[convention]
            if not isinstance(values, dict):
                raise ValueError(f"'provider.temperatures.{convention}' must be a dictionary")
            _check_keys(values, set(VALID_MODES), f"provider.temperatures.{convention}")
            missing = [mode for mode in VALID_MODES if mode not in values]
            if missing:
                raise ValueError(
                    f"Missing {missing} in provider.temperatures.{convention}"
                )
            kwargs[f"{convention}_temperatures"] = ModeTemperatures(
                generate=float(values["generate"]),
                explain=float(values["explain"]),
            )

    return ProviderConfig(**kwargs)


def _parse_rate_limits(data: Dict[str, Any]) -> RateLimitConfig:
    kwargs = dict(data)
    if "per_role" in kwargs:
        if not isinstance(kwargs["per_role"], dict):
            raise ValueError("'rate_limits.per_role' must be a dictionary")
        kwargs["per_role"] = {str(r).lower(): v for r, v in kwargs["per_role"].items()}
    return RateLimitConfig(**kwargs)
