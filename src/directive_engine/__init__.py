"""Context-aware directive retrieval and ranking engine."""

__version__ = "0.1.0"
