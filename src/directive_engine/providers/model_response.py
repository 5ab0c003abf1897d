"""Prompt construction and response parsing shared by model-backed providers.

Models are asked for a small JSON object. Replies are cleaned of markdown
fences, the first JSON object is extracted and validated, and confidence is
clamped to [0, 1]. When no JSON can be recovered the reply is scanned for
layer words instead and reported at FALLBACK_PARSE_CONFIDENCE.
"""

import json
import logging
import re
from typing import Any

from directive_engine.models import ArchitecturalLayer, TaskContext

logger = logging.getLogger(__name__)

DEFAULT_MODEL_CONFIDENCE = 0.5
FALLBACK_PARSE_CONFIDENCE = 0.3

DETECTION_PROMPT = """You are a software architect. Analyze this development task and respond with JSON only:

Task: "{text}"

Respond with this exact JSON format:
{{
  "layer": "1-Presentation|2-Application|3-Domain|4-Persistence|5-Infrastructure|*",
  "topics": ["security", "api", "database", "testing", "performance"],
  "keywords": ["key", "terms"],
  "technologies": ["React", "Node.js", "PostgreSQL"],
  "confidence": 0.8
}}

Layers:
- 1-Presentation: UI, frontend, components, styling
- 2-Application: API, services, controllers, middleware
- 3-Domain: Business logic, entities, models
- 4-Persistence: Database, storage, repositories
- 5-Infrastructure: Deployment, DevOps, monitoring
- *: General/unclear

JSON only:"""

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*|```\s*$", re.IGNORECASE)
_JSON_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)

# Words a model tends to use when it answers in prose instead of JSON
_LAYER_HINTS = (
    (ArchitecturalLayer.PRESENTATION, ("presentation", "frontend", "ui", "component")),
    (ArchitecturalLayer.APPLICATION, ("application", "api", "service", "controller")),
    (ArchitecturalLayer.DOMAIN, ("domain", "business logic", "entity")),
    (ArchitecturalLayer.PERSISTENCE, ("persistence", "database", "repository", "storage")),
    (ArchitecturalLayer.INFRASTRUCTURE, ("infrastructure", "deployment", "devops", "monitoring")),
)


def build_detection_prompt(text: str) -> str:
    """Render the context-detection prompt for a task text."""
    return DETECTION_PROMPT.format(text=text.replace('"', "'"))


def _string_list(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(item.lower() for item in value if isinstance(item, str) and item.strip())


def _parse_layer(value: Any) -> ArchitecturalLayer:
    try:
        return ArchitecturalLayer.parse(value) or ArchitecturalLayer.WILDCARD
    except ValueError:
        return ArchitecturalLayer.WILDCARD


def _clamp_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_MODEL_CONFIDENCE
    return max(0.0, min(1.0, float(value)))


def _keyword_fallback(content: str) -> TaskContext:
    lowered = content.lower()
    for layer, hints in _LAYER_HINTS:
        if any(re.search(rf"\b{re.escape(hint)}\b", lowered) for hint in hints):
            return TaskContext(layer=layer, confidence=FALLBACK_PARSE_CONFIDENCE)
    return TaskContext(layer=ArchitecturalLayer.WILDCARD, confidence=FALLBACK_PARSE_CONFIDENCE)


def parse_model_response(content: str) -> TaskContext:
    """
    Convert a model reply into a TaskContext.

    Args:
        content: Raw model output

    Returns:
        TaskContext from the JSON payload, or a low-confidence keyword-based
        context when the reply holds no usable JSON
    """
    cleaned = _FENCE_PATTERN.sub("", content.strip())
    match = _JSON_OBJECT_PATTERN.search(cleaned)
    payload = match.group(0) if match else cleaned

    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError:
        logger.debug("Model reply is not JSON, falling back to keyword parsing")
        return _keyword_fallback(content)
    if not isinstance(parsed, dict):
        return _keyword_fallback(content)

    return TaskContext(
        layer=_parse_layer(parsed.get("layer")),
        topics=_string_list(parsed.get("topics")),
        keywords=_string_list(parsed.get("keywords")),
        technologies=_string_list(parsed.get("technologies")),
        confidence=_clamp_confidence(parsed.get("confidence")),
    )
