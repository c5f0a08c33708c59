"""Domain errors (typed) for boundary detection and chunk assessment.

Provider failures are values carried inside ``Result``; they degrade one
computation and are recorded as warnings. ``InvalidInput`` is the only class
that reaches the caller directly.
"""

from dataclasses import dataclass


class DomainError(Exception):
    """Base class for domain-specific errors."""


class ValidationError(DomainError):
    """Invalid input/domain state."""


class InvalidInput(ValidationError):
    """Empty or oversized segment/chunk, or out-of-range configuration."""


@dataclass(frozen=True)
class ProviderError(DomainError):
    """A signal provider (log-prob, embedding, LLM) did not deliver."""

    message: str
    provider: str = "unknown"

    # Subclasses override; the retry policy reads it.
    retryable = False

    def __str__(self) -> str:
        return f"{type(self).__name__}[{self.provider}]: {self.message}"


@dataclass(frozen=True)
class ProviderUnavailable(ProviderError):
    """Network or authentication failure."""


@dataclass(frozen=True)
class RateLimited(ProviderError):
    """Provider throttled the request; retry with backoff."""

    retry_after_s: float | None = None

    retryable = True


@dataclass(frozen=True)
class ProviderTimeout(ProviderError):
    """A single provider call exceeded its deadline."""

    retryable = True


@dataclass(frozen=True)
class MalformedResponse(ProviderError):
    """Provider answered, but the payload could not be parsed."""

    raw: str = ""


@dataclass(frozen=True)
class OperationCancelled(ProviderError):
    """The caller's cancel signal fired before the call completed."""
