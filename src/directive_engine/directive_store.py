"""Directive Store

In-memory document store for directives, loaded from YAML rule files.

Rule File Format (``*.yaml`` / ``*.yml``, searched recursively):
---
id: api-security
name: API Security
layer: 2-Application
topics: [security, api]
directives:
  - id: api-security-1
    section: Input Validation
    severity: MUST
    text: Validate every request body against a schema
    rationale: Unvalidated input is the root of most injection bugs
    topics: [security, validation]
    when_to_apply: [handling user input, API endpoints]
---

Directives inherit the rule's layer when they declare none, and the rule's
topics when their own topic list is empty. Index structures are rebuilt into
fresh dicts on every load and swapped in under a lock, so readers never see
a half-built index.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

from directive_engine.models import ArchitecturalLayer, Directive

logger = logging.getLogger(__name__)

RULE_FILE_PATTERNS = ("*.yaml", "*.yml")
DEFAULT_CANDIDATE_LIMIT = 500


class RuleDocument:
    """Represents a single rule file with its metadata and directives."""

    def __init__(self, file_path: Path, metadata: dict, directives: list[Directive]):
        self.file_path = file_path
        self.metadata = metadata
        self.directives = directives

        self.id = str(metadata.get("id", file_path.stem))
        self.name = str(metadata.get("name", self.id))
        self.layer = ArchitecturalLayer.parse(metadata.get("layer"))
        self.topics = [str(t).lower() for t in metadata.get("topics", []) or []]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "file_path": str(self.file_path),
            "id": self.id,
            "name": self.name,
            "layer": self.layer.value if self.layer else None,
            "topics": self.topics,
            "directive_count": len(self.directives),
        }


def _cap_by_severity(candidates: list[Directive], limit: Optional[int]) -> list[Directive]:
    """Keep at most ``limit`` candidates, MUST before SHOULD before MAY, in load order."""
    if limit is None or len(candidates) <= limit:
        return candidates
    ranked = sorted(range(len(candidates)), key=lambda i: -candidates[i].severity.priority)
    return [candidates[i] for i in sorted(ranked[:max(limit, 0)])]


class DirectiveStore:
    """Loads rule files and answers candidate queries by layer and topic."""

    def __init__(self, directives_path: Optional[Path]):
        self.directives_path = Path(directives_path) if directives_path else None
        self._lock = threading.Lock()
        self.rules: dict[str, RuleDocument] = {}
        self.directives: list[Directive] = []
        self.by_layer: dict[ArchitecturalLayer, list[int]] = {}
        self.by_topic: dict[str, list[int]] = {}
        self.load_errors: list[str] = []

        logger.info(f"DirectiveStore initialized with path: {self.directives_path}")

    def load(self) -> int:
        """
        Load all rule files under the directives path.

        Files that fail to parse are skipped and recorded in ``load_errors``.

        Returns:
            Number of directives loaded
        """
        rules: dict[str, RuleDocument] = {}
        errors: list[str] = []

        if self.directives_path is None or not self.directives_path.exists():
            logger.warning(f"Directives path does not exist: {self.directives_path}")
        else:
            for file_path in self._rule_files():
                try:
                    rule = self._parse_rule_file(file_path)
                except (yaml.YAMLError, ValueError, KeyError, TypeError) as e:
                    logger.error(f"Error parsing rule file {file_path}: {e}")
                    errors.append(f"{file_path}: {e}")
                    continue
                if rule is None:
                    continue
                if rule.id in rules:
                    logger.warning(f"Duplicate rule id {rule.id} in {file_path}, skipping")
                    continue
                rules[rule.id] = rule
                logger.debug(f"Loaded rule {rule.id} ({len(rule.directives)} directives)")

        self._swap(rules, errors)
        logger.info(f"Loaded {len(self.directives)} directives from {len(rules)} rules")
        return len(self.directives)

    def reload(self) -> int:
        """Reload all rule files (called by the file watcher)."""
        logger.info("Reloading directives...")
        return self.load()

    def _rule_files(self) -> list[Path]:
        files: set[Path] = set()
        for pattern in RULE_FILE_PATTERNS:
            files.update(self.directives_path.rglob(pattern))
        return sorted(files)

    def _parse_rule_file(self, file_path: Path) -> Optional[RuleDocument]:
        """
        Parse a rule file.

        Args:
            file_path: Path to the YAML rule file

        Returns:
            RuleDocument, or None if the file holds no rule mapping
        """
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            logger.warning(f"No rule mapping in {file_path}")
            return None

        rule_id = str(data.get("id", file_path.stem))
        rule_name = str(data.get("name", rule_id))
        rule_layer = data.get("layer")
        rule_topics = data.get("topics", []) or []

        directives = []
        for index, raw in enumerate(data.get("directives", []) or [], 1):
            entry: dict[str, Any] = dict(raw)
            entry.setdefault("id", f"{rule_id}-{index}")
            entry.setdefault("rule_id", rule_id)
            entry.setdefault("rule_name", rule_name)
            entry.setdefault("source_path", str(file_path))
            if entry.get("layer") is None:
                entry["layer"] = rule_layer
            if not entry.get("topics"):
                entry["topics"] = rule_topics
            directives.append(Directive.from_dict(entry))

        return RuleDocument(file_path, data, directives)

    def _swap(self, rules: dict[str, RuleDocument], errors: list[str]) -> None:
        directives = [d for rule in rules.values() for d in rule.directives]
        by_layer: dict[ArchitecturalLayer, list[int]] = {}
        by_topic: dict[str, list[int]] = {}
        for index, directive in enumerate(directives):
            layer = directive.layer or ArchitecturalLayer.WILDCARD
            by_layer.setdefault(layer, []).append(index)
            for topic in directive.topics:
                by_topic.setdefault(topic, []).append(index)

        with self._lock:
            self.rules = rules
            self.directives = directives
            self.by_layer = by_layer
            self.by_topic = by_topic
            self.load_errors = errors

    def fetch_candidates(
        self,
        layer: Optional[ArchitecturalLayer] = None,
        topics: Optional[Iterable[str]] = None,
        limit: Optional[int] = DEFAULT_CANDIDATE_LIMIT,
    ) -> list[Directive]:
        """
        Fetch candidate directives for ranking.

        Args:
            layer: Keep directives of this layer plus wildcard-layer ones
                (None or WILDCARD: any layer)
            topics: Keep directives sharing at least one topic, plus topic-less
                and "*"-topic directives (None or empty: any topic)
            limit: Maximum number of candidates returned (None: no cap). When
                more directives match, stronger severities are kept first

        Returns:
            Matching directives in load order
        """
        with self._lock:
            directives = self.directives
            by_layer = self.by_layer
            by_topic = self.by_topic

        indices: Optional[set[int]] = None

        if layer is not None and not layer.is_wildcard:
            indices = set(by_layer.get(layer, [])) | set(
                by_layer.get(ArchitecturalLayer.WILDCARD, [])
            )

        topic_list = [t.lower() for t in topics or []]
        if topic_list:
            topic_hits: set[int] = set(by_topic.get("*", []))
            for topic in topic_list:
                topic_hits.update(by_topic.get(topic, []))
            topic_hits.update(i for i, d in enumerate(directives) if not d.topics)
            indices = topic_hits if indices is None else indices & topic_hits

        matches = list(directives) if indices is None else [directives[i] for i in sorted(indices)]
        return _cap_by_severity(matches, limit)

    def get_directive(self, directive_id: str) -> Optional[Directive]:
        with self._lock:
            directives = self.directives
        for directive in directives:
            if directive.id == directive_id:
                return directive
        return None

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "path": str(self.directives_path) if self.directives_path else None,
                "rules": len(self.rules),
                "directives": len(self.directives),
                "layers": {layer.value: len(ids) for layer, ids in self.by_layer.items()},
                "topics": len(self.by_topic),
                "load_errors": list(self.load_errors),
            }
