"""Rule-based detection provider.

Wraps the lexical ContextDetector. It performs no I/O, is always available,
and is the last-resort entry of every provider chain.
"""

from typing import Optional

from directive_engine.config import ProviderSettings
from directive_engine.context_detection import ContextDetector
from directive_engine.models import HealthStatus, ProviderHealth, ProviderKind, TaskContext
from directive_engine.providers.base import DetectionProvider, register_provider
from directive_engine.vocabulary import VocabularyRegistry

RULE_BASED_PROVIDER = "rule-based"


@register_provider(RULE_BASED_PROVIDER)
class RuleBasedProvider(DetectionProvider):
    """Keyword-driven detector that cannot fail for string input."""

    def __init__(self, detector: Optional[ContextDetector] = None):
        self.detector = detector or ContextDetector()

    @property
    def name(self) -> str:
        return RULE_BASED_PROVIDER

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.RULE_BASED

    def is_available(self) -> bool:
        return True

    def detect_context(self, text: str) -> TaskContext:
        return self.detector.detect(text)

    def health_info(self) -> ProviderHealth:
        return ProviderHealth(status=HealthStatus.HEALTHY, latency_ms=0.0)

    @classmethod
    def from_settings(
        cls,
        settings: ProviderSettings,
        registry: Optional[VocabularyRegistry] = None,
    ) -> "RuleBasedProvider":
        return cls(ContextDetector(registry))
