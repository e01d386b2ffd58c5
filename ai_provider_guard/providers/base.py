"""
Provider client interface.

Every LLM backend is a value implementing `complete`; the router never
branches on provider identity.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from ..core.models import CancelSignal


@dataclass(frozen=True)
class CompletionOptions:
    """Per-call options derived from the provider config and request."""
    model: str
    timeout: float
    framework: Optional[str] = None
    max_output_tokens: int = 1500


@dataclass(frozen=True)
class CompletionResult:
    """Raw provider answer, before output guardrails."""
    text: str
    confidence: Optional[int] = None
    sources: Tuple[str, ...] = ()
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


class ProviderClient(Protocol):
    """Capability shared by all provider clients.

    Implementations raise ProviderTimeout or ProviderTransportError on
    failure and should stop early once cancel_signal is set.
    """

    def complete(
        self,
        prompt: str,
        options: CompletionOptions,
        cancel_signal: CancelSignal,
    ) -> CompletionResult:
        ...
