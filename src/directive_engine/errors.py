"""Error taxonomy for the directive engine.

Detection-side problems (bad input, provider failures) are recovered close to
where they happen and turned into degraded results. Only structural misuse,
such as ranking without a context, is surfaced to the caller as a hard failure.
"""


class DirectiveEngineError(Exception):
    """Base class for all directive engine errors."""
    pass


class InvalidInputError(DirectiveEngineError):
    """Raised when task text or query options are malformed or oversized."""
    pass


class MissingContextError(DirectiveEngineError):
    """Raised when ranking is invoked without a task context."""
    pass


class ConfigurationError(DirectiveEngineError):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


class ProviderError(DirectiveEngineError):
    """Raised by a detection provider when it cannot produce a context."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderTimeoutError(ProviderError):
    """Raised when a provider call exceeds its per-call timeout."""
    pass


class AllProvidersFailedError(DirectiveEngineError):
    """Raised when every configured detection provider has been exhausted."""

    def __init__(self, last_error: Exception | None = None):
        detail = str(last_error) if last_error else "no providers attempted"
        super().__init__(f"All providers failed. Last error: {detail}")
        self.last_error = last_error


class DetectionCancelledError(DirectiveEngineError):
    """Raised when a caller cancels detection or its deadline passes between attempts."""
    pass
