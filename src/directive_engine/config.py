"""Directive Engine Configuration

Configuration loading with environment variable support and sensible defaults.
The merged dictionary is converted once into frozen dataclasses
(RankingConfig, TokenBudgetConfig, ProviderSettings, EngineConfig) that are
passed by reference into the scoring, ranking, budgeting and provider layers.

Environment Variables:
    DIRECTIVE_ENGINE_CONFIG_PATH: Path to config file
        (default: directive-engine.yaml in the base directory, optional)
    DIRECTIVE_ENGINE_DIRECTIVES_PATH: Override directives.path from config
    DIRECTIVE_ENGINE_PRIMARY_PROVIDER: Override providers.primary from config
    ANTHROPIC_API_KEY: API key for the anthropic provider
    OPENAI_API_KEY: API key for the openai provider
    OPENROUTER_API_KEY: API key for the openrouter provider

Configuration Schema:
    providers:
        primary: str - Primary detection provider (default: "rule-based")
        fallbacks: list[str] - Providers tried after the primary, in order
        timeout_ms: int - Per-call provider timeout (default: 5000)
        health_check_interval_ms: int - Health check interval (default: 60000)
        enable_fallback: bool - Try fallbacks when the primary fails
        circuit_breaker: {failure_threshold, reset_timeout_ms}
        ollama: {base_url, model}
        anthropic: {base_url, model, max_tokens, api_key}
        openai: {base_url, model, max_tokens, api_key}
        openrouter: {base_url, model, max_tokens, api_key}
    ranking:
        weights: dict - Sub-score weights
        severity_multipliers: dict - MUST/SHOULD/MAY boost values
        max_candidates: int - Performance ceiling on scored candidates
        score_threshold: float - Minimum score kept (default: 0.0)
        max_items: int - Default result cap
    token_budget:
        default_budget, overhead_tokens, minimum_directive_tokens, minimum_estimate_tokens,
        max_single_directive_share, chars_per_token,
        truncation_indicator_tokens, top_n_truncatable, enable_truncation
    directives:
        path: str - Directory of YAML rule files
    vocabulary:
        extensions: dict - Extra layers/domains/technologies merged into the registry
    server:
        log_level: str - Logging level (default: "INFO")
"""

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional

import yaml

from directive_engine.errors import ConfigurationError
from directive_engine.models import DirectiveSeverity

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILENAME = "directive-engine.yaml"

# Hosted provider name → environment variable holding its API key
API_KEY_ENV_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

# Default configuration values
DEFAULT_CONFIG: dict[str, Any] = {
    "providers": {
        "primary": "rule-based",
        "fallbacks": [],
        "timeout_ms": 5000,
        "health_check_interval_ms": 60000,
        "enable_fallback": True,
        "circuit_breaker": {
            "failure_threshold": 5,
            "reset_timeout_ms": 60000,
        },
        "ollama": {
            "base_url": "http://localhost:11434",
            "model": "llama3.2",
        },
        "anthropic": {
            "base_url": "https://api.anthropic.com/v1",
            "model": "claude-3-haiku-20240307",
            "max_tokens": 150,
        },
        "openai": {
            "base_url": "https://api.openai.com/v1",
            "model": "gpt-4o-mini",
            "max_tokens": 150,
        },
        "openrouter": {
            "base_url": "https://openrouter.ai/api/v1",
            "model": "openai/gpt-4o-mini",
            "max_tokens": 150,
        },
    },
    "ranking": {
        "weights": {
            "authority": 10.0,
            "when_to_apply": 8.0,
            "layer_match": 7.0,
            "topic_overlap": 5.0,
            "severity_boost": 4.0,
            "semantic_similarity": 3.0,
        },
        "severity_multipliers": {
            "MUST": 3.0,
            "SHOULD": 2.0,
            "MAY": 1.0,
        },
        "max_candidates": 1000,
        "score_threshold": 0.0,
        "max_items": 20,
    },
    "token_budget": {
        "default_budget": 1000,
        "overhead_tokens": 20,
        "minimum_directive_tokens": 15,
        "minimum_estimate_tokens": 5,
        "max_single_directive_share": 0.4,
        "chars_per_token": 4,
        "truncation_indicator_tokens": 3,
        "top_n_truncatable": 3,
        "enable_truncation": True,
    },
    "directives": {
        "path": None,
    },
    "vocabulary": {
        "extensions": {},
    },
    "server": {
        "log_level": "INFO",
    },
}


# ============================================================================
# Typed configuration
# ============================================================================


@dataclass(frozen=True)
class ScoringWeights:
    """Weights applied to each sub-score when computing a directive's total."""

    authority: float = 10.0
    when_to_apply: float = 8.0
    layer_match: float = 7.0
    topic_overlap: float = 5.0
    severity_boost: float = 4.0
    semantic_similarity: float = 3.0


@dataclass(frozen=True)
class RankingConfig:
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    severity_multipliers: Mapping[DirectiveSeverity, float] = field(
        default_factory=lambda: {
            DirectiveSeverity.MUST: 3.0,
            DirectiveSeverity.SHOULD: 2.0,
            DirectiveSeverity.MAY: 1.0,
        }
    )
    max_candidates: int = 1000
    score_threshold: float = 0.0
    max_items: int = 20

    def __post_init__(self):
        multipliers = dict(self.severity_multipliers)
        missing = set(DirectiveSeverity) - set(multipliers)
        if missing:
            raise ConfigurationError(
                f"Missing severity multipliers: {sorted(s.value for s in missing)}"
            )
        if any(value < 0 for value in multipliers.values()):
            raise ConfigurationError("Severity multipliers must be non-negative")
        if self.max_candidates < 1:
            raise ConfigurationError("ranking.max_candidates must be at least 1")
        object.__setattr__(self, "severity_multipliers", MappingProxyType(multipliers))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RankingConfig":
        try:
            weights = ScoringWeights(**{k: float(v) for k, v in data.get("weights", {}).items()})
        except TypeError as e:
            raise ConfigurationError(f"Unknown ranking weight: {e}")
        multipliers = {
            DirectiveSeverity(str(k).upper()): float(v)
            for k, v in data.get("severity_multipliers", {}).items()
        }
        return cls(
            weights=weights,
            severity_multipliers=multipliers or RankingConfig().severity_multipliers,
            max_candidates=int(data.get("max_candidates", 1000)),
            score_threshold=float(data.get("score_threshold", 0.0)),
            max_items=int(data.get("max_items", 20)),
        )


@dataclass(frozen=True)
class TokenBudgetConfig:
    default_budget: int = 1000
    overhead_tokens: int = 20
    minimum_directive_tokens: int = 15
    minimum_estimate_tokens: int = 5
    max_single_directive_share: float = 0.4
    chars_per_token: int = 4
    truncation_indicator_tokens: int = 3
    top_n_truncatable: int = 3
    enable_truncation: bool = True

    def __post_init__(self):
        if self.chars_per_token < 1:
            raise ConfigurationError("token_budget.chars_per_token must be at least 1")
        if not 0.0 < self.max_single_directive_share <= 1.0:
            raise ConfigurationError("token_budget.max_single_directive_share must be in (0, 1]")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenBudgetConfig":
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(f"Invalid token_budget section: {e}")


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout_ms: int = 60000


@dataclass(frozen=True)
class ProviderSettings:
    """Provider chain and timing settings for the fallback coordinator."""

    primary: str = "rule-based"
    fallbacks: tuple[str, ...] = ()
    timeout_ms: int = 5000
    health_check_interval_ms: int = 60000
    enable_fallback: bool = True
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    options: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))

    @property
    def chain(self) -> tuple[str, ...]:
        """Provider names in attempt order, de-duplicated."""
        names = (self.primary,) + (self.fallbacks if self.enable_fallback else ())
        return tuple(dict.fromkeys(names))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProviderSettings":
        reserved = {
            "primary", "fallbacks", "timeout_ms", "health_check_interval_ms",
            "enable_fallback", "circuit_breaker",
        }
        return cls(
            primary=data.get("primary", "rule-based"),
            fallbacks=tuple(data.get("fallbacks") or ()),
            timeout_ms=int(data.get("timeout_ms", 5000)),
            health_check_interval_ms=int(data.get("health_check_interval_ms", 60000)),
            enable_fallback=bool(data.get("enable_fallback", True)),
            circuit_breaker=CircuitBreakerConfig(**(data.get("circuit_breaker") or {})),
            options={k: dict(v or {}) for k, v in data.items() if k not in reserved},
        )


@dataclass(frozen=True)
class EngineConfig:
    """Immutable configuration object handed to the query service."""

    ranking: RankingConfig = field(default_factory=RankingConfig)
    token_budget: TokenBudgetConfig = field(default_factory=TokenBudgetConfig)
    providers: ProviderSettings = field(default_factory=ProviderSettings)
    directives_path: Optional[Path] = None
    vocabulary_extensions: Mapping[str, Any] = field(default_factory=dict)
    log_level: str = "INFO"


# ============================================================================
# Loading
# ============================================================================


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Deep merge override dict into base dict.

    Args:
        base: Base dictionary (defaults)
        override: Override dictionary (user config)

    Returns:
        New merged dictionary with override values taking precedence
    """
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _resolve_path(path: Optional[str], base_dir: Path) -> Optional[Path]:
    """Resolve a path, making relative paths absolute from base_dir."""
    if path is None:
        return None

    path_obj = Path(path).expanduser()
    if path_obj.is_absolute():
        return path_obj
    return (base_dir / path_obj).resolve()


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file: {e}")
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file: {e}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {path}")
    return data


def load_config(
    config_path: Optional[str] = None,
    base_dir: Optional[Path] = None,
) -> dict[str, Any]:
    """
    Load configuration from YAML file with environment variable overrides.

    Configuration Loading Order (later overrides earlier):
    1. Default values (DEFAULT_CONFIG)
    2. Config file (config_path parameter, DIRECTIVE_ENGINE_CONFIG_PATH,
       or directive-engine.yaml in base_dir when present)
    3. Environment variable overrides

    Args:
        config_path: Explicit config file path (overrides DIRECTIVE_ENGINE_CONFIG_PATH)
        base_dir: Directory for relative path resolution (default: cwd)

    Returns:
        Merged configuration dictionary

    Raises:
        ConfigurationError: If an explicit config file is missing or invalid

    Examples:
        # Load with defaults (no config file required)
        config = load_config()

        # Load from specific file
        config = load_config("/path/to/directive-engine.yaml")
    """
    if base_dir is None:
        base_dir = Path.cwd()

    config = copy.deepcopy(DEFAULT_CONFIG)
    file_path = config_path or os.environ.get("DIRECTIVE_ENGINE_CONFIG_PATH")

    if file_path:
        resolved_path = _resolve_path(file_path, base_dir)
        if not resolved_path.exists():
            raise ConfigurationError(f"Config file not found: {resolved_path}")
        config = _deep_merge(config, _read_yaml(resolved_path))
        logger.info(f"Loaded configuration from: {resolved_path}")
    else:
        default_config_path = base_dir / DEFAULT_CONFIG_FILENAME
        if default_config_path.exists():
            try:
                config = _deep_merge(config, _read_yaml(default_config_path))
                logger.info(f"Loaded configuration from: {default_config_path}")
            except ConfigurationError as e:
                logger.warning(f"Ignoring default config: {e}")
        else:
            logger.debug("No config file found, using defaults")

    # Apply environment variable overrides
    directives_override = os.environ.get("DIRECTIVE_ENGINE_DIRECTIVES_PATH")
    if directives_override:
        config["directives"]["path"] = directives_override
        logger.info(f"Directives path override from env: {directives_override}")

    primary_override = os.environ.get("DIRECTIVE_ENGINE_PRIMARY_PROVIDER")
    if primary_override:
        config["providers"]["primary"] = primary_override
        logger.info(f"Primary provider override from env: {primary_override}")

    for provider_name, env_var in API_KEY_ENV_VARS.items():
        api_key = os.environ.get(env_var)
        if api_key and not config["providers"].get(provider_name, {}).get("api_key"):
            config["providers"].setdefault(provider_name, {})["api_key"] = api_key

    if config.get("directives", {}).get("path"):
        resolved = _resolve_path(config["directives"]["path"], base_dir)
        config["directives"]["path"] = str(resolved)

    return config


def build_engine_config(config: dict[str, Any]) -> EngineConfig:
    """
    Convert a merged configuration dictionary into an EngineConfig.

    Args:
        config: Configuration dictionary from load_config()

    Returns:
        Frozen EngineConfig

    Raises:
        ConfigurationError: If any section holds invalid values
    """
    try:
        return EngineConfig(
            ranking=RankingConfig.from_dict(config.get("ranking", {})),
            token_budget=TokenBudgetConfig.from_dict(config.get("token_budget", {})),
            providers=ProviderSettings.from_dict(config.get("providers", {})),
            directives_path=get_directives_path(config),
            vocabulary_extensions=dict(config.get("vocabulary", {}).get("extensions") or {}),
            log_level=str(config.get("server", {}).get("log_level", "INFO")).upper(),
        )
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}")


def get_directives_path(config: dict[str, Any], base_dir: Optional[Path] = None) -> Path:
    """
    Get directive store path from config or default.

    Default: ./directives relative to base_dir (cwd when omitted).
    """
    path_str = config.get("directives", {}).get("path")
    if path_str:
        return Path(path_str)
    return ((base_dir or Path.cwd()) / "directives").resolve()
