"""Detection Provider Interface

Defines the closed interface every context-detection strategy implements,
plus the registry and factory used to build the provider chain from
configuration.

Architecture:
    Query service → FallbackCoordinator → [DetectionProvider, ...]

    Providers are tagged with a ProviderKind (local | cloud | rule-based).
    The rule-based provider is always available and belongs last in the
    chain; model-backed providers may sit ahead of it.

Usage:
    @register_provider("ollama")
    class OllamaProvider(DetectionProvider):
        ...

    provider = create_provider("ollama", settings)
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from directive_engine.config import ProviderSettings
from directive_engine.errors import ConfigurationError
from directive_engine.models import ProviderHealth, ProviderKind, TaskContext
from directive_engine.vocabulary import VocabularyRegistry

logger = logging.getLogger(__name__)


class DetectionProvider(ABC):
    """
    Abstract interface for context-detection providers.

    Implementations raise ProviderError (or let network errors escape) when
    they cannot produce a context; the fallback coordinator converts any
    such failure into "try the next provider".
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique provider name used in configuration and diagnostics."""
        pass

    @property
    @abstractmethod
    def kind(self) -> ProviderKind:
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check whether the provider can currently serve requests.

        May perform I/O; the coordinator only calls it from the health
        monitor, never on the detection path.
        """
        pass

    @abstractmethod
    def detect_context(self, text: str) -> TaskContext:
        """
        Detect the task context for text.

        Args:
            text: Validated, non-empty task text

        Returns:
            TaskContext

        Raises:
            ProviderError: If detection fails
        """
        pass

    def health_info(self) -> Optional[ProviderHealth]:
        """Provider-specific health details; None when the provider has none."""
        return None

    def close(self) -> None:
        """Release held resources (HTTP clients, sessions)."""
        pass

    @classmethod
    def from_settings(
        cls,
        settings: ProviderSettings,
        registry: Optional[VocabularyRegistry] = None,
    ) -> "DetectionProvider":
        """Build the provider from configuration. Override for configurable providers."""
        return cls()


# Provider registry for factory function
_PROVIDER_REGISTRY: dict[str, type] = {}


def register_provider(name: str):
    """
    Decorator to register a detection provider implementation.

    Args:
        name: Provider name as used in configuration (e.g., 'ollama')

    Returns:
        Decorator function that registers the class
    """
    def decorator(cls):
        _PROVIDER_REGISTRY[name] = cls
        return cls
    return decorator


def get_available_providers() -> list[str]:
    """Return registered provider names."""
    return list(_PROVIDER_REGISTRY.keys())


def create_provider(
    name: str,
    settings: Optional[ProviderSettings] = None,
    registry: Optional[VocabularyRegistry] = None,
) -> DetectionProvider:
    """
    Factory function to create a detection provider by name.

    Args:
        name: Registered provider name
        settings: Provider settings (defaults when None)
        registry: Vocabulary registry for providers that use one

    Returns:
        DetectionProvider instance

    Raises:
        ConfigurationError: If the provider name is unknown
    """
    if name not in _PROVIDER_REGISTRY:
        available = get_available_providers()
        raise ConfigurationError(
            f"Unknown detection provider: '{name}'. Available providers: {available}"
        )
    provider_class = _PROVIDER_REGISTRY[name]
    provider = provider_class.from_settings(settings or ProviderSettings(), registry)
    logger.debug(f"Created provider {name} ({provider.kind.value})")
    return provider


def provider_options(settings: ProviderSettings, name: str) -> Mapping[str, Any]:
    """Per-provider options block (e.g. providers.ollama) from settings."""
    return settings.options.get(name, {})
