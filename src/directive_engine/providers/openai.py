"""Cloud-model detection providers for OpenAI-compatible Chat Completions APIs.

OpenAIProvider talks to api.openai.com; OpenRouterProvider reuses it against
openrouter.ai, which serves the same request and response shapes. As with the
Anthropic provider, a 429 from the model listing still counts as available.
"""

import logging
import time
from typing import Any, Optional

import httpx

from directive_engine.config import ProviderSettings
from directive_engine.errors import ProviderError
from directive_engine.models import HealthStatus, ProviderHealth, ProviderKind, TaskContext
from directive_engine.providers.base import (
    DetectionProvider,
    provider_options,
    register_provider,
)
from directive_engine.providers.model_response import (
    build_detection_prompt,
    parse_model_response,
)
from directive_engine.vocabulary import VocabularyRegistry

logger = logging.getLogger(__name__)

OPENAI_PROVIDER = "openai"
OPENROUTER_PROVIDER = "openrouter"
DEFAULT_MAX_TOKENS = 150
AVAILABLE_STATUS_CODES = (200, 429)


@register_provider(OPENAI_PROVIDER)
class OpenAIProvider(DetectionProvider):
    """Detects task context with a hosted chat-completions model."""

    provider_name = OPENAI_PROVIDER
    default_base_url = "https://api.openai.com/v1"
    default_model = "gpt-4o-mini"

    def __init__(
        self,
        api_key: Optional[str],
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout_s: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.model = model or self.default_model
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.max_tokens = max_tokens
        self.timeout_s = timeout_s
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout_s)

    @property
    def name(self) -> str:
        return self.provider_name

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.CLOUD

    def _headers(self) -> dict[str, str]:
        return {
            "authorization": f"Bearer {self.api_key or ''}",
            "content-type": "application/json",
        }

    def _completion_payload(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "temperature": 0,
            "messages": [{"role": "user", "content": prompt}],
        }

    def is_available(self) -> bool:
        if not self.api_key:
            return False
        try:
            response = self._client.get("/models", headers=self._headers())
        except httpx.HTTPError as e:
            logger.debug(f"{self.name} API not reachable: {e}")
            return False
        return response.status_code in AVAILABLE_STATUS_CODES

    def detect_context(self, text: str) -> TaskContext:
        if not self.api_key:
            raise ProviderError(self.name, "no API key configured")
        try:
            response = self._client.post(
                "/chat/completions",
                headers=self._headers(),
                json=self._completion_payload(build_detection_prompt(text)),
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"request failed: {e}") from e
        except ValueError as e:
            raise ProviderError(self.name, f"invalid response body: {e}") from e

        choices = body.get("choices") or []
        message = (choices[0].get("message") or {}) if choices else {}
        content = (message.get("content") or "").strip()
        if not content:
            raise ProviderError(self.name, "empty model response")
        return parse_model_response(content)

    def health_info(self) -> ProviderHealth:
        if not self.api_key:
            return ProviderHealth(status=HealthStatus.UNAVAILABLE, error="no API key configured")
        start = time.perf_counter()
        available = self.is_available()
        latency_ms = round((time.perf_counter() - start) * 1000, 1)
        return ProviderHealth(
            status=HealthStatus.HEALTHY if available else HealthStatus.UNAVAILABLE,
            latency_ms=latency_ms,
        )

    def close(self) -> None:
        self._client.close()

    @classmethod
    def from_settings(
        cls,
        settings: ProviderSettings,
        registry: Optional[VocabularyRegistry] = None,
    ) -> "OpenAIProvider":
        options = provider_options(settings, cls.provider_name)
        return cls(
            api_key=options.get("api_key"),
            model=options.get("model"),
            base_url=options.get("base_url"),
            max_tokens=int(options.get("max_tokens", DEFAULT_MAX_TOKENS)),
            timeout_s=settings.timeout_ms / 1000,
        )


@register_provider(OPENROUTER_PROVIDER)
class OpenRouterProvider(OpenAIProvider):
    """OpenAI-compatible provider routed through OpenRouter."""

    provider_name = OPENROUTER_PROVIDER
    default_base_url = "https://openrouter.ai/api/v1"
    default_model = "openai/gpt-4o-mini"
