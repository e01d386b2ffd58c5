"""
Error taxonomy for provider orchestration.

Provider-level errors are recovered by the fallback chain. Only guardrail
blocks, exhaustion of every candidate, malformed requests and caller
cancellation reach the caller.
"""

from typing import List, Optional, Tuple


class ProviderGuardError(Exception):
    """Base class for all orchestration errors."""


class ValidationError(ProviderGuardError, ValueError):
    """Raised when a request is malformed, before any guardrail or provider work."""


class GuardrailBlocked(ProviderGuardError):
    """Raised when the input or output fails a blocking validator.

    The message is fixed per stage so that neither the blocked content nor
    the detection heuristic leaks to the caller.
    """

    MESSAGES = {
        "input": (
            "I'm unable to process this request. Please rephrase your question "
            "to focus on compliance-related topics."
        ),
        "output": (
            "I apologize, but I cannot provide that specific information. "
            "Please ask a different question."
        ),
    }

    def __init__(self, stage: str, validator: Optional[str] = None):
        if stage not in self.MESSAGES:
            raise ValueError(f"Unknown guardrail stage: {stage}")
        super().__init__(self.MESSAGES[stage])
        self.stage = stage
        # Kept for logging only, never rendered to the caller
        self.validator = validator


class ProviderError(ProviderGuardError):
    """Failure attributable to a single provider candidate."""

    kind = "error"

    def __init__(self, message: str, provider_id: Optional[str] = None):
        super().__init__(message)
        self.provider_id = provider_id


class ProviderTransportError(ProviderError):
    """Network, HTTP or SDK failure while calling a provider."""

    kind = "transport_error"


class ProviderTimeout(ProviderError):
    """Provider did not answer within its request timeout."""

    kind = "timeout"


class RequestCancelled(ProviderGuardError):
    """The caller cancelled the request. Never counted against a provider."""


class ServiceUnavailable(ProviderGuardError):
    """Every candidate was skipped or failed and the fallback cache missed."""

    def __init__(self, failures: List[Tuple[str, str]]):
        self.failures = list(failures)
        if self.failures:
            summary = ", ".join(f"{pid}: {reason}" for pid, reason in self.failures)
        else:
            summary = "no providers configured"
        super().__init__(f"AI service temporarily unavailable ({summary})")


class PersistenceError(ProviderGuardError):
    """Disclosure write or model-card lookup failed."""
