"""Cloud-model detection provider backed by the Anthropic Messages API.

A 429 on the availability check still counts as available: the key is valid
and the service is up, only rate-limited.
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

ANTHROPIC_PROVIDER = "anthropic"
DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
DEFAULT_MODEL = "claude-3-haiku-20240307"
DEFAULT_MAX_TOKENS = 150
API_VERSION = "2023-06-01"
AVAILABLE_STATUS_CODES = (200, 429)


@register_provider(ANTHROPIC_PROVIDER)
class AnthropicProvider(DetectionProvider):
    """Detects task context with a hosted Claude model."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        base_url: str = DEFAULT_BASE_URL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout_s: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.max_tokens = max_tokens
        self.timeout_s = timeout_s
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout_s)

    @property
    def name(self) -> str:
        return ANTHROPIC_PROVIDER

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.CLOUD

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key or "",
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }

    def _message_payload(self, prompt: str, max_tokens: int) -> dict[str, Any]:
        return {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }

    def is_available(self) -> bool:
        if not self.api_key:
            return False
        try:
            response = self._client.post(
                "/messages",
                headers=self._headers(),
                json=self._message_payload("ping", 1),
            )
        except httpx.HTTPError as e:
            logger.debug(f"Anthropic API not reachable: {e}")
            return False
        return response.status_code in AVAILABLE_STATUS_CODES

    def detect_context(self, text: str) -> TaskContext:
        if not self.api_key:
            raise ProviderError(self.name, "no API key configured")
        try:
            response = self._client.post(
                "/messages",
                headers=self._headers(),
                json=self._message_payload(build_detection_prompt(text), self.max_tokens),
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"request failed: {e}") from e
        except ValueError as e:
            raise ProviderError(self.name, f"invalid response body: {e}") from e

        blocks = body.get("content") or []
        text_parts = [b.get("text", "") for b in blocks if b.get("type") == "text"]
        content = "".join(text_parts).strip()
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
    ) -> "AnthropicProvider":
        options = provider_options(settings, ANTHROPIC_PROVIDER)
        return cls(
            api_key=options.get("api_key"),
            model=options.get("model", DEFAULT_MODEL),
            base_url=options.get("base_url", DEFAULT_BASE_URL),
            max_tokens=int(options.get("max_tokens", DEFAULT_MAX_TOKENS)),
            timeout_s=settings.timeout_ms / 1000,
        )
