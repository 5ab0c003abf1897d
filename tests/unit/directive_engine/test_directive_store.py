"""Tests for the YAML-backed directive store."""

import pytest
import yaml

from directive_engine.directive_store import DirectiveStore
from directive_engine.models import ArchitecturalLayer, DirectiveSeverity


@pytest.fixture
def store(rules_dir):
    store = DirectiveStore(rules_dir)
    store.load()
    return store


def _ids(directives):
    return [d.id for d in directives]


class TestLoad:
    """Tests for DirectiveStore.load."""

    def test_loads_all_rules(self, store):
        assert len(store.rules) == 3
        assert len(store.directives) == 6
        assert store.load_errors == []

    def test_inherits_rule_metadata(self, store):
        """Directives inherit layer and topics from their rule when missing."""
        directive = store.get_directive("api-security-2")
        assert directive.layer is ArchitecturalLayer.APPLICATION
        assert directive.topics == frozenset({"security", "api"})
        assert directive.rule_id == "api-security"
        assert directive.rule_name == "API Security"
        assert directive.source_path.endswith("api-security.yaml")

    def test_own_topics_kept(self, store):
        directive = store.get_directive("api-security-1")
        assert directive.topics == frozenset({"security", "validation"})
        assert directive.severity is DirectiveSeverity.MUST

    def test_default_ids(self, tmp_path):
        """Directive ids default to rule id plus position; rule id to file stem."""
        with open(tmp_path / "logging.yml", "w") as f:
            yaml.safe_dump({"directives": [{"text": "Use structured logs"}, {"text": "No secrets"}]}, f)
        store = DirectiveStore(tmp_path)
        assert store.load() == 2
        assert _ids(store.directives) == ["logging-1", "logging-2"]

    def test_parse_errors_recorded(self, rules_dir):
        """Broken files are skipped and reported while the rest still load."""
        (rules_dir / "broken.yaml").write_text("id: [unclosed")
        with open(rules_dir / "bad-severity.yaml", "w") as f:
            yaml.safe_dump({"id": "bad", "directives": [{"text": "x", "severity": "URGENT"}]}, f)

        store = DirectiveStore(rules_dir)
        assert store.load() == 6
        assert len(store.load_errors) == 2

    def test_duplicate_rule_id_skipped(self, rules_dir):
        with open(rules_dir / "zz-copy.yaml", "w") as f:
            yaml.safe_dump({"id": "api-security", "directives": [{"text": "dup"}]}, f)
        store = DirectiveStore(rules_dir)
        store.load()
        assert len(store.directives) == 6

    def test_missing_path(self, tmp_path):
        assert DirectiveStore(tmp_path / "missing").load() == 0
        assert DirectiveStore(None).load() == 0

    def test_reload_picks_up_changes(self, store, rules_dir):
        with open(rules_dir / "extra.yaml", "w") as f:
            yaml.safe_dump({"id": "extra", "directives": [{"text": "New rule"}]}, f)
        assert store.reload() == 7
        assert store.get_directive("extra-1") is not None


class TestFetchCandidates:
    """Tests for DirectiveStore.fetch_candidates."""

    def test_no_filters(self, store):
        assert len(store.fetch_candidates()) == 6

    def test_layer_filter_includes_wildcard(self, store):
        candidates = store.fetch_candidates(layer=ArchitecturalLayer.APPLICATION)
        assert _ids(candidates) == ["api-security-1", "api-security-2", "api-security-3", "general-1"]

    def test_wildcard_layer_is_unfiltered(self, store):
        assert len(store.fetch_candidates(layer=ArchitecturalLayer.WILDCARD)) == 6

    def test_topic_filter_includes_star_topics(self, store):
        candidates = store.fetch_candidates(topics=["Frontend"])
        assert _ids(candidates) == ["frontend-1", "frontend-2", "general-1"]

    def test_layer_and_topic_intersect(self, store):
        candidates = store.fetch_candidates(
            layer=ArchitecturalLayer.APPLICATION, topics=["performance"]
        )
        assert _ids(candidates) == ["api-security-3", "general-1"]

    def test_limit(self, store):
        assert len(store.fetch_candidates(limit=2)) == 2

    def test_limit_keeps_stronger_severities(self, store):
        """A capped fetch keeps MUST directives over weaker ones, still in load order."""
        assert _ids(store.fetch_candidates(limit=2)) == ["api-security-1", "frontend-1"]

    def test_default_limit_keeps_late_must_directives(self, bulk_rules_dir):
        store = DirectiveStore(bulk_rules_dir(may=600, must=50))
        store.load()
        candidates = store.fetch_candidates()
        severities = [d.severity for d in candidates]
        assert len(candidates) == 500
        assert severities.count(DirectiveSeverity.MUST) == 50

    def test_no_limit(self, bulk_rules_dir):
        store = DirectiveStore(bulk_rules_dir(may=600, must=50))
        store.load()
        assert len(store.fetch_candidates(limit=None)) == 650


class TestStats:
    def test_stats(self, store, rules_dir):
        stats = store.stats()
        assert stats["path"] == str(rules_dir)
        assert stats["rules"] == 3
        assert stats["directives"] == 6
        assert stats["layers"]["2-Application"] == 3
        assert stats["layers"]["*"] == 1

    def test_rule_document_to_dict(self, store):
        rule = store.rules["frontend-components"]
        data = rule.to_dict()
        assert data["layer"] == "1-Presentation"
        assert data["directive_count"] == 2

    def test_unknown_directive(self, store):
        assert store.get_directive("nope") is None
