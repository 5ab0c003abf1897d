"""Detection Provider Package

Importing this package registers the built-in providers:

    rule-based  lexical detector, always available (last resort)
    ollama      local model via an Ollama server
    anthropic   hosted model via the Anthropic Messages API
    openai      hosted model via the OpenAI Chat Completions API
    openrouter  OpenAI-compatible models routed through OpenRouter
"""

from directive_engine.providers.base import (
    DetectionProvider,
    create_provider,
    get_available_providers,
    register_provider,
)
from directive_engine.providers.anthropic import AnthropicProvider
from directive_engine.providers.ollama import OllamaProvider
from directive_engine.providers.openai import OpenAIProvider, OpenRouterProvider
from directive_engine.providers.rule_based import RULE_BASED_PROVIDER, RuleBasedProvider

__all__ = [
    "DetectionProvider",
    "create_provider",
    "get_available_providers",
    "register_provider",
    "AnthropicProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "OpenRouterProvider",
    "RuleBasedProvider",
    "RULE_BASED_PROVIDER",
]
