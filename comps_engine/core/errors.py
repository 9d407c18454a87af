"""
Exception types shared by the stores, the executor and the provider adapters.
"""


class EngineError(Exception):
    """Base class for everything this package raises on purpose."""


class ProviderConfigurationError(EngineError):
    """
    A provider cannot be called because its configuration is incomplete
    (typically a missing API key). Retrying cannot fix it, so the executor
    re-raises it on the first attempt.
    """

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class ProviderResponseError(EngineError):
    """A provider answered, but the payload could not be understood."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"[{provider}] {message}")


class RetryExhaustedError(EngineError):
    """Raised when every attempt of an operation failed."""

    def __init__(self, message: str, attempts: int, last_exception: Exception | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_exception = last_exception


class StoreUnavailableError(EngineError):
    """The backing key/value store could not be read or written."""
