"""Vocabulary Tables

Static keyword-to-category mappings used by context detection and scoring.

The registry is plain data: layer keywords, contextual boosters, domain
vocabularies (keywords, technologies, synonyms), a technology registry with
aliases for fuzzy matching, and the layer indicator terms used when scoring
directives. A registry is immutable once built. Extending it goes through
``VocabularyRegistry.merge()``, which returns a new registry with a new
version string and leaves the original untouched, so detectors holding the
old registry keep seeing a consistent view.

Usage:
    registry = get_default_registry()
    extended = registry.merge(
        {"domains": {"payments": {"keywords": ["invoice", "refund"]}}},
        label="payments",
    )
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from directive_engine.models import ArchitecturalLayer

DEFAULT_VOCABULARY_VERSION = "1.0"


# ============================================================================
# Registry value types
# ============================================================================


@dataclass(frozen=True)
class DomainVocabulary:
    """Keywords, technologies and synonyms that identify one topic domain."""

    name: str
    keywords: tuple[str, ...] = ()
    technologies: tuple[str, ...] = ()
    synonyms: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "synonyms", MappingProxyType(dict(self.synonyms)))

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "DomainVocabulary":
        return cls(
            name=name,
            keywords=tuple(k.lower() for k in data.get("keywords", [])),
            technologies=tuple(t.lower() for t in data.get("technologies", [])),
            synonyms={
                canonical.lower(): tuple(s.lower() for s in alternatives)
                for canonical, alternatives in (data.get("synonyms") or {}).items()
            },
        )

    def merged_with(self, other: "DomainVocabulary") -> "DomainVocabulary":
        """Union of two vocabularies for the same domain (order preserved)."""
        synonyms = dict(self.synonyms)
        for canonical, alternatives in other.synonyms.items():
            synonyms[canonical] = _unique(synonyms.get(canonical, ()) + alternatives)
        return DomainVocabulary(
            name=self.name,
            keywords=_unique(self.keywords + other.keywords),
            technologies=_unique(self.technologies + other.technologies),
            synonyms=synonyms,
        )


@dataclass(frozen=True)
class TechnologyEntry:
    """Known technology name with aliases and the domain it belongs to."""

    name: str
    aliases: tuple[str, ...] = ()
    category: str = ""


@dataclass(frozen=True)
class ContextualBooster:
    """Action verbs/patterns that add a flat bonus to one layer."""

    layer: ArchitecturalLayer
    patterns: tuple[str, ...]
    indicator: str
    boost: int = 2


@dataclass(frozen=True)
class VocabularyRegistry:
    """Immutable, versioned set of vocabulary tables."""

    version: str
    layer_keywords: Mapping[ArchitecturalLayer, tuple[str, ...]]
    boosters: tuple[ContextualBooster, ...]
    domains: Mapping[str, DomainVocabulary]
    technologies: tuple[TechnologyEntry, ...]
    layer_indicators: Mapping[ArchitecturalLayer, tuple[str, ...]]

    def __post_init__(self):
        for name in ("layer_keywords", "domains", "layer_indicators"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    def merge(self, extension: dict[str, Any], label: str = "custom") -> "VocabularyRegistry":
        """
        Produce a new registry with extra vocabulary merged in.

        Args:
            extension: Dictionary with any of:
                - layers: {layer: [keywords]}
                - domains: {domain: {keywords, technologies, synonyms}}
                - technologies: [{name, aliases, category}]
            label: Suffix appended to the version string

        Returns:
            New VocabularyRegistry; self is unchanged

        Raises:
            ValueError: If extension names an unknown layer
        """
        layer_keywords = dict(self.layer_keywords)
        for raw_layer, keywords in (extension.get("layers") or {}).items():
            layer = ArchitecturalLayer.parse(raw_layer)
            if layer is ArchitecturalLayer.WILDCARD:
                continue
            added = tuple(k.lower() for k in keywords)
            layer_keywords[layer] = _unique(layer_keywords.get(layer, ()) + added)

        domains = dict(self.domains)
        for name, data in (extension.get("domains") or {}).items():
            incoming = DomainVocabulary.from_dict(name, data)
            domains[name] = domains[name].merged_with(incoming) if name in domains else incoming

        technologies = list(self.technologies)
        known = {t.name.lower() for t in technologies}
        for data in extension.get("technologies") or []:
            if data["name"].lower() in known:
                continue
            technologies.append(
                TechnologyEntry(
                    name=data["name"],
                    aliases=tuple(a.lower() for a in data.get("aliases", [])),
                    category=data.get("category", ""),
                )
            )

        return VocabularyRegistry(
            version=f"{self.version}+{label}",
            layer_keywords=layer_keywords,
            boosters=self.boosters,
            domains=domains,
            technologies=tuple(technologies),
            layer_indicators=self.layer_indicators,
        )


def _unique(items: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(items))


# ============================================================================
# Default tables
# ============================================================================

LAYER_KEYWORDS: dict[ArchitecturalLayer, tuple[str, ...]] = {
    ArchitecturalLayer.PRESENTATION: (
        "ui", "component", "react", "vue", "angular", "css", "html", "jsx", "tsx",
        "frontend", "client", "browser", "dom", "render", "view", "template",
        "styling", "responsive", "accessibility", "user interface", "form",
        "button", "modal", "dropdown", "navigation", "layout", "theme",
        "material-ui", "bootstrap", "tailwind", "styled-components",
        "click", "hover", "input", "validation", "user experience", "ux",
        "interaction", "event handler", "onchange", "onclick", "submit",
        "display", "show", "hide", "toggle", "animation", "transition",
    ),
    ArchitecturalLayer.APPLICATION: (
        "service", "controller", "handler", "workflow", "orchestration",
        "business logic", "application logic", "use case", "command",
        "query", "mediator", "facade", "coordinator", "manager",
        "process", "pipeline", "validation", "authorization", "authentication",
        "api", "endpoint", "route", "router", "middleware", "request",
        "response", "http", "rest", "graphql", "websocket", "rpc",
        "express", "fastify", "koa", "nest", "spring", "asp.net",
        "email", "notification", "logging", "caching", "session",
        "security", "audit", "monitoring", "health check",
    ),
    ArchitecturalLayer.DOMAIN: (
        "entity", "aggregate", "value object", "domain model", "business rule",
        "domain service", "domain event", "specification", "policy",
        "invariant", "constraint", "business", "core logic", "domain logic",
        "bounded context", "ubiquitous language", "aggregate root",
        "repository pattern", "factory", "builder", "strategy pattern",
        "command pattern", "observer pattern", "state machine",
        "calculation", "algorithm", "rule engine", "decision", "condition",
        "behavior", "method", "operation", "function", "procedure",
    ),
    ArchitecturalLayer.PERSISTENCE: (
        "database", "sql", "nosql", "mongodb", "postgresql", "mysql",
        "sqlite", "redis", "elasticsearch", "repository", "dao",
        "orm", "prisma", "typeorm", "sequelize", "mongoose", "knex",
        "query", "insert", "update", "delete", "select", "join",
        "transaction", "migration", "schema", "table", "collection",
        "index", "foreign key", "primary key", "constraint",
        "persistence", "storage", "data access", "connection pool",
        "backup", "restore", "sync", "replication", "sharding",
    ),
    ArchitecturalLayer.INFRASTRUCTURE: (
        "docker", "kubernetes", "aws", "azure", "gcp", "cloud",
        "deployment", "ci/cd", "pipeline", "build", "test", "deploy",
        "infrastructure", "terraform", "ansible", "helm", "nginx",
        "monitoring", "logging", "metrics", "alerting", "scaling",
        "load balancer", "proxy", "gateway", "firewall", "security",
        "network", "dns", "ssl", "certificate", "backup",
        "jenkins", "github actions", "gitlab ci", "circleci", "travis",
        "prometheus", "grafana", "elk stack", "datadog", "newrelic",
    ),
}

CONTEXTUAL_BOOSTERS: tuple[ContextualBooster, ...] = (
    ContextualBooster(
        ArchitecturalLayer.PRESENTATION,
        ("render", "display", "show", "hide", "click", "submit", "validate"),
        "ui-action-detected",
    ),
    ContextualBooster(
        ArchitecturalLayer.APPLICATION,
        ("endpoint", "route", "/api/", "controller", "handler"),
        "api-pattern-detected",
    ),
    ContextualBooster(
        ArchitecturalLayer.DOMAIN,
        ("business rule", "calculate", "validate", "process", "logic"),
        "business-logic-detected",
    ),
    ContextualBooster(
        ArchitecturalLayer.PERSISTENCE,
        ("save", "fetch", "query", "insert", "update", "delete"),
        "data-operation-detected",
    ),
    ContextualBooster(
        ArchitecturalLayer.INFRASTRUCTURE,
        ("deploy", "configure", "setup", "install", "build"),
        "infrastructure-action-detected",
    ),
)

DOMAIN_VOCABULARY: dict[str, dict[str, Any]] = {
    "security": {
        "keywords": [
            "authentication", "authorization", "oauth", "jwt", "token", "session",
            "encryption", "hashing", "password", "security", "vulnerability",
            "xss", "csrf", "sql injection", "sanitization", "validation",
            "firewall", "ssl", "tls", "certificate", "key management",
            "access control", "permissions", "roles", "rbac", "audit",
        ],
        "technologies": [
            "bcrypt", "argon2", "passport", "auth0", "okta", "keycloak",
            "helmet", "cors", "rate-limiting", "owasp",
        ],
        "synonyms": {
            "authentication": ["auth", "login", "signin"],
            "authorization": ["authz", "permissions", "access"],
            "encryption": ["crypto", "cipher"],
        },
    },
    "api": {
        "keywords": [
            "rest", "graphql", "endpoint", "route", "middleware", "request",
            "response", "http", "status code", "header", "body", "parameter",
            "query string", "path parameter", "json", "xml", "serialization",
            "deserialization", "content type", "cors", "rate limiting",
        ],
        "technologies": [
            "express", "fastify", "koa", "nestjs", "apollo", "swagger",
            "openapi", "postman", "insomnia", "axios", "fetch",
        ],
        "synonyms": {
            "endpoint": ["api endpoint", "service endpoint"],
            "middleware": ["interceptor", "filter"],
            "serialization": ["marshalling", "encoding"],
        },
    },
    "database": {
        "keywords": [
            "query", "transaction", "migration", "schema", "index", "constraint",
            "foreign key", "primary key", "join", "aggregate", "cursor",
            "connection pool", "replication", "sharding", "backup", "restore",
            "acid", "consistency", "isolation", "durability", "normalization",
        ],
        "technologies": [
            "postgresql", "mysql", "sqlite", "mongodb", "redis", "elasticsearch",
            "prisma", "typeorm", "sequelize", "mongoose", "knex", "drizzle",
        ],
        "synonyms": {
            "database": ["db", "datastore"],
            "query": ["select", "find"],
            "migration": ["schema change", "db migration"],
        },
    },
    "testing": {
        "keywords": [
            "unit test", "integration test", "e2e test", "test case", "assertion",
            "mock", "stub", "spy", "fixture", "test data", "coverage",
            "tdd", "bdd", "test driven", "behavior driven", "snapshot",
            "regression test", "performance test", "load test",
        ],
        "technologies": [
            "jest", "vitest", "mocha", "chai", "jasmine", "cypress", "playwright",
            "selenium", "puppeteer", "testing-library", "enzyme", "sinon", "pytest",
        ],
        "synonyms": {
            "test": ["spec", "test case", "tests"],
            "mock": ["fake", "double", "stub"],
            "assertion": ["expect", "assert"],
        },
    },
    "performance": {
        "keywords": [
            "optimization", "caching", "lazy loading", "pagination", "indexing",
            "compression", "minification", "bundling", "code splitting",
            "memory usage", "cpu usage", "latency", "throughput", "scalability",
            "load balancing", "cdn", "edge computing",
        ],
        "technologies": [
            "redis", "memcached", "varnish", "nginx", "cloudflare", "webpack",
            "rollup", "esbuild", "terser", "gzip", "brotli",
        ],
        "synonyms": {
            "optimization": ["optimize", "perf"],
            "caching": ["cache", "memoization"],
            "latency": ["response time", "delay"],
        },
    },
    "deployment": {
        "keywords": [
            "ci/cd", "pipeline", "build", "deploy", "release", "environment",
            "staging", "production", "rollback", "blue-green", "canary",
            "infrastructure", "provisioning", "configuration", "monitoring",
            "logging", "alerting", "health check",
        ],
        "technologies": [
            "docker", "kubernetes", "jenkins", "github actions", "gitlab ci",
            "terraform", "ansible", "helm", "aws", "azure", "gcp",
        ],
        "synonyms": {
            "deployment": ["deploy", "release"],
            "pipeline": ["workflow", "build pipeline"],
            "environment": ["env", "stage"],
        },
    },
    "frontend": {
        "keywords": [
            "component", "state management", "routing", "styling", "responsive",
            "accessibility", "seo", "progressive web app", "single page app",
            "server side rendering", "static site generation", "hydration",
            "virtual dom", "hooks", "lifecycle", "props", "context",
        ],
        "technologies": [
            "react", "vue", "angular", "svelte", "next.js", "nuxt", "gatsby",
            "redux", "mobx", "zustand", "tailwind", "styled-components",
            "sass", "less", "webpack", "vite",
        ],
        "synonyms": {
            "component": ["widget", "element"],
            "styling": ["css", "styles"],
            "responsive": ["mobile-friendly", "adaptive"],
        },
    },
    "architecture": {
        "keywords": [
            "microservices", "monolith", "service oriented", "event driven",
            "domain driven design", "clean architecture", "hexagonal",
            "layered architecture", "mvc", "mvvm", "repository pattern",
            "factory pattern", "observer pattern", "singleton", "dependency injection",
            "inversion of control", "solid principles", "design patterns",
        ],
        "technologies": [
            "spring", "nest", "express", "fastapi", "django", "rails",
            "kafka", "rabbitmq", "redis", "elasticsearch",
        ],
        "synonyms": {
            "microservices": ["micro-services", "service mesh"],
            "dependency injection": ["di", "ioc"],
            "design patterns": ["patterns", "architectural patterns"],
        },
    },
}

# Categories line up with domain names so a registry hit can feed topic scores.
TECHNOLOGY_REGISTRY: tuple[TechnologyEntry, ...] = (
    TechnologyEntry("React", ("reactjs", "react.js"), "frontend"),
    TechnologyEntry("Vue", ("vuejs", "vue.js"), "frontend"),
    TechnologyEntry("Angular", ("angularjs", "ng"), "frontend"),
    TechnologyEntry("Svelte", ("sveltejs",), "frontend"),
    TechnologyEntry("Next.js", ("nextjs",), "frontend"),
    TechnologyEntry("Nuxt", ("nuxtjs",), "frontend"),
    TechnologyEntry("TypeScript", ("ts",), "frontend"),
    TechnologyEntry("JavaScript", ("js",), "frontend"),
    TechnologyEntry("HTML", ("html5",), "frontend"),
    TechnologyEntry("CSS", ("css3", "scss", "sass"), "frontend"),
    TechnologyEntry("Node.js", ("nodejs", "node"), "api"),
    TechnologyEntry("Express", ("expressjs",), "api"),
    TechnologyEntry("Fastify", ("fastifyjs",), "api"),
    TechnologyEntry("FastAPI", (), "api"),
    TechnologyEntry("Django", (), "architecture"),
    TechnologyEntry("Spring", ("springboot", "spring-boot"), "architecture"),
    TechnologyEntry("Python", ("py",), "backend"),
    TechnologyEntry("Java", ("jvm",), "backend"),
    TechnologyEntry("Golang", (), "backend"),
    TechnologyEntry("Rust", ("rustlang",), "backend"),
    TechnologyEntry("CSharp", (".net", "dotnet", "c#"), "backend"),
    TechnologyEntry("Ruby", ("rails", "ruby-on-rails"), "backend"),
    TechnologyEntry("PostgreSQL", ("postgres", "pg"), "database"),
    TechnologyEntry("MySQL", (), "database"),
    TechnologyEntry("MongoDB", ("mongo",), "database"),
    TechnologyEntry("Neo4j", (), "database"),
    TechnologyEntry("Redis", (), "database"),
    TechnologyEntry("Elasticsearch", ("elastic",), "database"),
    TechnologyEntry("DynamoDB", (), "database"),
    TechnologyEntry("Firestore", ("firebase",), "database"),
    TechnologyEntry("Docker", ("containerization",), "deployment"),
    TechnologyEntry("Kubernetes", ("k8s", "kube"), "deployment"),
    TechnologyEntry("AWS", ("amazon web services",), "deployment"),
    TechnologyEntry("Azure", ("microsoft azure",), "deployment"),
    TechnologyEntry("GCP", ("google cloud",), "deployment"),
    TechnologyEntry("GitHub Actions", ("github actions",), "deployment"),
    TechnologyEntry("Terraform", (), "deployment"),
    TechnologyEntry("CloudFormation", ("cfn",), "deployment"),
    TechnologyEntry("Jest", ("jestjs",), "testing"),
    TechnologyEntry("Vitest", (), "testing"),
    TechnologyEntry("Mocha", ("mochajs",), "testing"),
    TechnologyEntry("Cypress", ("cypressjs",), "testing"),
    TechnologyEntry("Selenium", ("webdriver",), "testing"),
    TechnologyEntry("Pytest", (), "testing"),
    TechnologyEntry("RSpec", (), "testing"),
    TechnologyEntry("GraphQL", (), "api"),
    TechnologyEntry("gRPC", (), "api"),
    TechnologyEntry("WebSocket", ("websockets",), "api"),
)

# Indicator terms checked against a directive's topics/text when scoring layer match.
LAYER_INDICATORS: dict[ArchitecturalLayer, tuple[str, ...]] = {
    ArchitecturalLayer.PRESENTATION: (
        "ui", "component", "react", "vue", "angular", "css", "html", "frontend",
    ),
    ArchitecturalLayer.APPLICATION: (
        "service", "controller", "api", "endpoint", "business", "logic",
    ),
    ArchitecturalLayer.DOMAIN: (
        "model", "entity", "domain", "business", "rule", "validation",
    ),
    ArchitecturalLayer.PERSISTENCE: (
        "database", "repository", "sql", "orm", "storage", "data",
    ),
    ArchitecturalLayer.INFRASTRUCTURE: (
        "deployment", "docker", "kubernetes", "config", "logging", "monitoring",
    ),
}


def build_default_registry() -> VocabularyRegistry:
    """Build a fresh registry from the default tables."""
    return VocabularyRegistry(
        version=DEFAULT_VOCABULARY_VERSION,
        layer_keywords=LAYER_KEYWORDS,
        boosters=CONTEXTUAL_BOOSTERS,
        domains={
            name: DomainVocabulary.from_dict(name, data)
            for name, data in DOMAIN_VOCABULARY.items()
        },
        technologies=TECHNOLOGY_REGISTRY,
        layer_indicators=LAYER_INDICATORS,
    )


# Singleton instance (immutable, safe to share)
_default_registry: VocabularyRegistry | None = None


def get_default_registry() -> VocabularyRegistry:
    """Get the shared default registry, building it on first use."""
    global _default_registry
    if _default_registry is None:
        _default_registry = build_default_registry()
    return _default_registry
