"""Local-model detection provider backed by an Ollama server.

Endpoints:
    GET  /api/tags      availability check (model must be pulled)
    POST /api/generate  non-streaming JSON completion
"""

import logging
import time
from typing import Optional

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

OLLAMA_PROVIDER = "ollama"
DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "llama3.2"


@register_provider(OLLAMA_PROVIDER)
class OllamaProvider(DetectionProvider):
    """
    Detects task context by prompting a locally hosted model.

    Attributes:
        base_url: Ollama server URL
        model: Model name (tag prefix match on availability)
        timeout_s: HTTP timeout in seconds
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout_s: float = 5.0,
        client: Optional[httpx.Client] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_s = timeout_s
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout_s)

    @property
    def name(self) -> str:
        return OLLAMA_PROVIDER

    @property
    def kind(self) -> ProviderKind:
        return ProviderKind.LOCAL

    def is_available(self) -> bool:
        try:
            response = self._client.get("/api/tags")
        except httpx.HTTPError as e:
            logger.debug(f"Ollama not reachable at {self.base_url}: {e}")
            return False
        if response.status_code != 200:
            return False
        try:
            models = response.json().get("models", [])
        except ValueError:
            return False
        return any(str(m.get("name", "")).startswith(self.model) for m in models)

    def detect_context(self, text: str) -> TaskContext:
        payload = {
            "model": self.model,
            "prompt": build_detection_prompt(text),
            "stream": False,
            "format": "json",
            "options": {"temperature": 0.1},
        }
        try:
            response = self._client.post("/api/generate", json=payload)
            response.raise_for_status()
            content = response.json().get("response", "")
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"request failed: {e}") from e
        except ValueError as e:
            raise ProviderError(self.name, f"invalid response body: {e}") from e

        if not content:
            raise ProviderError(self.name, "empty model response")
        return parse_model_response(content)

    def health_info(self) -> ProviderHealth:
        start = time.perf_counter()
        available = self.is_available()
        latency_ms = round((time.perf_counter() - start) * 1000, 1)
        return ProviderHealth(
            status=HealthStatus.HEALTHY if available else HealthStatus.UNAVAILABLE,
            latency_ms=latency_ms,
            error=None if available else f"model {self.model} not available at {self.base_url}",
        )

    def close(self) -> None:
        self._client.close()

    @classmethod
    def from_settings(
        cls,
        settings: ProviderSettings,
        registry: Optional[VocabularyRegistry] = None,
    ) -> "OllamaProvider":
        options = provider_options(settings, OLLAMA_PROVIDER)
        return cls(
            base_url=options.get("base_url", DEFAULT_BASE_URL),
            model=options.get("model", DEFAULT_MODEL),
            timeout_s=settings.timeout_ms / 1000,
        )
