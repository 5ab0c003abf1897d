"""Tests for detection providers and model response parsing."""

import json

import httpx
import pytest

from directive_engine.config import ProviderSettings
from directive_engine.errors import ConfigurationError, ProviderError
from directive_engine.models import ArchitecturalLayer, HealthStatus, ProviderKind
from directive_engine.providers import (
    AnthropicProvider,
    OllamaProvider,
    OpenAIProvider,
    OpenRouterProvider,
    RuleBasedProvider,
    create_provider,
    get_available_providers,
)
from directive_engine.providers.model_response import (
    DEFAULT_MODEL_CONFIDENCE,
    FALLBACK_PARSE_CONFIDENCE,
    build_detection_prompt,
    parse_model_response,
)

MODEL_REPLY = json.dumps(
    {
        "layer": "4-Persistence",
        "topics": ["Database", "performance"],
        "keywords": ["index", "query"],
        "technologies": ["PostgreSQL"],
        "confidence": 0.85,
    }
)


def _client(handler, base_url: str) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler), base_url=base_url)


class TestParseModelResponse:
    """Tests for parse_model_response."""

    def test_plain_json(self):
        context = parse_model_response(MODEL_REPLY)
        assert context.layer is ArchitecturalLayer.PERSISTENCE
        assert context.topics == ("database", "performance")
        assert context.technologies == ("postgresql",)
        assert context.confidence == 0.85

    def test_fenced_json(self):
        """Markdown code fences around the JSON are ignored."""
        context = parse_model_response(f"```json\n{MODEL_REPLY}\n```")
        assert context.layer is ArchitecturalLayer.PERSISTENCE

    def test_json_with_surrounding_prose(self):
        context = parse_model_response(f"Here you go: {MODEL_REPLY} Hope that helps.")
        assert context.layer is ArchitecturalLayer.PERSISTENCE

    def test_confidence_clamped(self):
        context = parse_model_response('{"layer": "3-Domain", "confidence": 1.7}')
        assert context.confidence == 1.0

    def test_non_numeric_confidence(self):
        context = parse_model_response('{"layer": "3-Domain", "confidence": "high"}')
        assert context.confidence == DEFAULT_MODEL_CONFIDENCE

    def test_unknown_layer_is_wildcard(self):
        context = parse_model_response('{"layer": "kernel", "confidence": 0.9}')
        assert context.layer is ArchitecturalLayer.WILDCARD

    def test_prose_keyword_fallback(self):
        """Replies without JSON are scanned for layer words."""
        context = parse_model_response("This is clearly a database task.")
        assert context.layer is ArchitecturalLayer.PERSISTENCE
        assert context.confidence == FALLBACK_PARSE_CONFIDENCE

    def test_prose_without_hints(self):
        context = parse_model_response("No idea, sorry.")
        assert context.layer is ArchitecturalLayer.WILDCARD
        assert context.confidence == FALLBACK_PARSE_CONFIDENCE

    def test_non_object_json(self):
        context = parse_model_response("[1, 2, 3]")
        assert context.confidence == FALLBACK_PARSE_CONFIDENCE

    def test_prompt_escapes_quotes(self):
        prompt = build_detection_prompt('Rename "user" table')
        assert "Rename 'user' table" in prompt


class TestProviderRegistry:
    """Tests for the provider factory."""

    def test_builtin_providers_registered(self):
        available = get_available_providers()
        for name in ("rule-based", "ollama", "anthropic", "openai", "openrouter"):
            assert name in available

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError, match="Unknown detection provider"):
            create_provider("gpt-local")

    def test_create_with_options(self):
        settings = ProviderSettings(
            timeout_ms=2500, options={"ollama": {"model": "mistral", "base_url": "http://gpu:11434/"}}
        )
        provider = create_provider("ollama", settings)
        try:
            assert provider.model == "mistral"
            assert provider.base_url == "http://gpu:11434"
            assert provider.timeout_s == 2.5
        finally:
            provider.close()


class TestRuleBasedProvider:
    def test_always_available(self):
        provider = RuleBasedProvider()
        assert provider.kind is ProviderKind.RULE_BASED
        assert provider.is_available()
        assert provider.health_info().status is HealthStatus.HEALTHY

    def test_detects(self):
        context = RuleBasedProvider().detect_context("Create a React component with CSS styling")
        assert context.layer is ArchitecturalLayer.PRESENTATION


class TestOllamaProvider:
    """Tests for OllamaProvider against a mocked HTTP transport."""

    def test_available_when_model_pulled(self):
        def handler(request):
            assert request.url.path == "/api/tags"
            return httpx.Response(200, json={"models": [{"name": "llama3.2:latest"}]})

        provider = OllamaProvider(client=_client(handler, "http://ollama.test"))
        assert provider.is_available() is True
        assert provider.kind is ProviderKind.LOCAL

    def test_unavailable_when_model_missing(self):
        def handler(request):
            return httpx.Response(200, json={"models": [{"name": "mistral:7b"}]})

        provider = OllamaProvider(client=_client(handler, "http://ollama.test"))
        assert provider.is_available() is False
        health = provider.health_info()
        assert health.status is HealthStatus.UNAVAILABLE
        assert "llama3.2" in health.error

    def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = OllamaProvider(client=_client(handler, "http://ollama.test"))
        assert provider.is_available() is False

    def test_detect_context(self):
        def handler(request):
            assert request.url.path == "/api/generate"
            body = json.loads(request.content)
            assert body["stream"] is False
            assert body["model"] == "llama3.2"
            return httpx.Response(200, json={"response": MODEL_REPLY})

        provider = OllamaProvider(client=_client(handler, "http://ollama.test"))
        context = provider.detect_context("Add an index to the orders table")
        assert context.layer is ArchitecturalLayer.PERSISTENCE

    def test_detect_http_error(self):
        def handler(request):
            return httpx.Response(500, text="model crashed")

        provider = OllamaProvider(client=_client(handler, "http://ollama.test"))
        with pytest.raises(ProviderError, match="ollama"):
            provider.detect_context("anything")

    def test_detect_empty_response(self):
        def handler(request):
            return httpx.Response(200, json={"response": ""})

        provider = OllamaProvider(client=_client(handler, "http://ollama.test"))
        with pytest.raises(ProviderError, match="empty model response"):
            provider.detect_context("anything")


class TestAnthropicProvider:
    """Tests for AnthropicProvider against a mocked HTTP transport."""

    def test_without_api_key(self):
        provider = AnthropicProvider(api_key=None, client=_client(lambda r: httpx.Response(200), "https://api.test/v1"))
        assert provider.is_available() is False
        assert provider.health_info().status is HealthStatus.UNAVAILABLE
        with pytest.raises(ProviderError, match="no API key"):
            provider.detect_context("anything")

    def test_detect_context(self):
        def handler(request):
            assert request.url.path == "/v1/messages"
            assert request.headers["x-api-key"] == "sk-test"
            body = json.loads(request.content)
            assert body["messages"][0]["role"] == "user"
            return httpx.Response(200, json={"content": [{"type": "text", "text": MODEL_REPLY}]})

        provider = AnthropicProvider(api_key="sk-test", client=_client(handler, "https://api.test/v1"))
        context = provider.detect_context("Add an index to the orders table")
        assert context.layer is ArchitecturalLayer.PERSISTENCE
        assert provider.kind is ProviderKind.CLOUD

    def test_rate_limited_counts_as_available(self):
        provider = AnthropicProvider(
            api_key="sk-test", client=_client(lambda r: httpx.Response(429), "https://api.test/v1")
        )
        assert provider.is_available() is True

    def test_unauthorized_is_unavailable(self):
        provider = AnthropicProvider(
            api_key="bad", client=_client(lambda r: httpx.Response(401), "https://api.test/v1")
        )
        assert provider.is_available() is False
        assert provider.health_info().status is HealthStatus.UNAVAILABLE

    def test_empty_content(self):
        provider = AnthropicProvider(
            api_key="sk-test",
            client=_client(lambda r: httpx.Response(200, json={"content": []}), "https://api.test/v1"),
        )
        with pytest.raises(ProviderError, match="empty model response"):
            provider.detect_context("anything")


def _completion(content):
    return {"choices": [{"index": 0, "message": {"role": "assistant", "content": content}}]}


class TestOpenAIProvider:
    """Tests for the OpenAI-compatible providers against a mocked HTTP transport."""

    def test_detect_context(self):
        def handler(request):
            assert request.url.path == "/v1/chat/completions"
            assert request.headers["authorization"] == "Bearer sk-test"
            body = json.loads(request.content)
            assert body["model"] == "gpt-4o-mini"
            assert body["messages"][0]["role"] == "user"
            return httpx.Response(200, json=_completion(MODEL_REPLY))

        provider = OpenAIProvider(api_key="sk-test", client=_client(handler, "https://api.test/v1"))
        context = provider.detect_context("Add an index to the orders table")
        assert context.layer is ArchitecturalLayer.PERSISTENCE
        assert provider.name == "openai"
        assert provider.kind is ProviderKind.CLOUD

    def test_availability_lists_models(self):
        seen = []

        def handler(request):
            seen.append((request.method, request.url.path))
            return httpx.Response(200, json={"data": []})

        provider = OpenAIProvider(api_key="sk-test", client=_client(handler, "https://api.test/v1"))
        assert provider.is_available() is True
        assert seen == [("GET", "/v1/models")]

    def test_without_api_key(self):
        provider = OpenAIProvider(api_key=None, client=_client(lambda r: httpx.Response(200), "https://api.test/v1"))
        assert provider.is_available() is False
        assert provider.health_info().status is HealthStatus.UNAVAILABLE
        with pytest.raises(ProviderError, match="no API key"):
            provider.detect_context("anything")

    def test_rate_limited_counts_as_available(self):
        provider = OpenAIProvider(
            api_key="sk-test", client=_client(lambda r: httpx.Response(429), "https://api.test/v1")
        )
        assert provider.is_available() is True

    def test_server_error(self):
        provider = OpenAIProvider(
            api_key="sk-test",
            client=_client(lambda r: httpx.Response(503, text="overloaded"), "https://api.test/v1"),
        )
        with pytest.raises(ProviderError, match="request failed"):
            provider.detect_context("anything")

    def test_empty_choices(self):
        provider = OpenAIProvider(
            api_key="sk-test",
            client=_client(lambda r: httpx.Response(200, json={"choices": []}), "https://api.test/v1"),
        )
        with pytest.raises(ProviderError, match="empty model response"):
            provider.detect_context("anything")

    def test_openrouter_defaults(self):
        provider = OpenRouterProvider(api_key="sk-or", client=_client(lambda r: httpx.Response(200), "https://api.test/v1"))
        assert provider.name == "openrouter"
        assert provider.base_url == "https://openrouter.ai/api/v1"
        assert provider.model == "openai/gpt-4o-mini"

    def test_openrouter_from_settings(self):
        settings = ProviderSettings(
            timeout_ms=3000,
            options={"openrouter": {"api_key": "sk-or", "model": "anthropic/claude-3-haiku"}},
        )
        provider = create_provider("openrouter", settings)
        try:
            assert isinstance(provider, OpenRouterProvider)
            assert provider.api_key == "sk-or"
            assert provider.model == "anthropic/claude-3-haiku"
            assert provider.timeout_s == 3.0
        finally:
            provider.close()
