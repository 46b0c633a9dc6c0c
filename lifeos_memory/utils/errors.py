"""
Error taxonomy shared by providers, the document store and the engine services.
"""


class LifeOSMemoryError(Exception):
    """Base exception for the memory engine."""
    pass


class ValidationError(LifeOSMemoryError):
    """Required input is missing or malformed. Raised before any provider call."""
    pass


class ProviderError(LifeOSMemoryError):
    """An embedding or language-model call failed (network, auth, quota)."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ProviderTimeoutError(ProviderError):
    """A provider call timed out. Always retryable."""

    def __init__(self, message: str):
        super().__init__(message, retryable=True)


class ParseError(LifeOSMemoryError):
    """The language model returned non-JSON or schema-violating output.

    Services resolve this internally (deterministic fallback or a typed
    ClassificationError); it is never surfaced to callers.
    """
    pass


class DocumentStoreError(LifeOSMemoryError):
    """A document store operation failed or referenced a missing document."""
    pass
