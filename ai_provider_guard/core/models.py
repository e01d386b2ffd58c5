"""
Request and response types for generation.

GenerationRequest is what callers hand to the orchestrator;
GenerationResponse is what they get back.
"""

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple, TYPE_CHECKING

from .errors import RequestCancelled

if TYPE_CHECKING:
    from .guardrails import GuardrailFinding

AI_CONTRIBUTION_LEVELS = ("assisted", "partial", "autonomous")


class CancelSignal:
    """Cooperative cancellation flag shared by the caller and the router.

    Optionally carries a deadline; once it passes, the signal reads as set.
    """

    def __init__(self, deadline: Optional[float] = None):
        self._event = threading.Event()
        self._deadline = deadline

    @classmethod
    def with_timeout(cls, seconds: float) -> "CancelSignal":
        """Signal that cancels itself after the given number of seconds."""
        return cls(deadline=time.monotonic() + seconds)

    def cancel(self) -> None:
        self._event.set()

    def is_set(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._event.set()
            return True
        return False

    def wait(self, timeout: float) -> bool:
        """Block up to timeout seconds; return True if cancelled."""
        if self._deadline is not None:
            timeout = max(0.0, min(timeout, self._deadline - time.monotonic()))
        self._event.wait(timeout)
        return self.is_set()

    def raise_if_cancelled(self) -> None:
        if self.is_set():
            raise RequestCancelled("Request cancelled by caller")


@dataclass(frozen=True)
class Attachment:
    """File supplied with a request, already reduced to text."""
    name: str
    mime_type: str
    text: str


@dataclass(frozen=True)
class GenerationRequest:
    """A single chat turn, document draft or analysis request.

    `id` is the idempotency key used for the usage disclosure.
    """
    prompt: str
    framework: Optional[str] = None
    session_id: Optional[str] = None
    attachments: Tuple[Attachment, ...] = ()
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    requested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cancel_signal: CancelSignal = field(default_factory=CancelSignal, compare=False, repr=False)

    def full_text(self) -> str:
        """Prompt plus attachment text, as sent to a provider."""
        parts = [self.prompt]
        for attachment in self.attachments:
            parts.append(f"[{attachment.name}]\n{attachment.text}")
        return "\n\n".join(parts)


@dataclass(frozen=True)
class GenerationResponse:
    """Answer served to the caller, live or from the fallback cache."""
    content: str
    confidence: int
    sources: Tuple[str, ...]
    provider_id: str
    model_name: str
    from_cache: bool = False
    guardrail_findings: Tuple["GuardrailFinding", ...] = ()
    prompt_tokens: int = 0
    completion_tokens: int = 0

    def __post_init__(self):
        """Validate confidence range."""
        if not 0 <= self.confidence <= 100:
            raise ValueError("confidence must be between 0 and 100")


@dataclass(frozen=True)
class UserContext:
    """Who asked, and on what terms, for the usage disclosure."""
    user_id: str
    action_type: str = "chat"
    purpose_description: str = "AI-assisted compliance guidance"
    user_consented: bool = False
    human_oversight: bool = True
    ai_contribution: str = "assisted"
    data_used: Tuple[str, ...] = ()

    def __post_init__(self):
        """Validate user context values."""
        if not self.user_id or not self.user_id.strip():
            raise ValueError("user_id is required and cannot be empty")
        if self.ai_contribution not in AI_CONTRIBUTION_LEVELS:
            raise ValueError(f"ai_contribution must be one of: {list(AI_CONTRIBUTION_LEVELS)}")
