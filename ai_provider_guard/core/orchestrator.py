"""
Orchestrator façade.

Binds the registry, breakers, guardrails, cache, router and disclosure
recorder behind a single `generate` call.
"""

import time
from typing import Callable, Dict, Mapping, Optional, TYPE_CHECKING

from .cache import ResponseCache
from .circuit_breaker import CircuitBreaker
from .disclosure import DisclosureRecorder, DisclosureStore, ModelCardStore
from .errors import ValidationError
from .guardrails import GuardrailsPipeline
from .models import GenerationRequest, GenerationResponse, UserContext
from .registry import ProviderRegistry
from .router import ProviderRouter
from ..providers.base import ProviderClient

if TYPE_CHECKING:
    from ai_provider_guard.config.loader import OrchestratorConfig

ANONYMOUS_USER = UserContext(user_id="anonymous")


class Orchestrator:
    """Entry point for generation requests.

    Holds no request-scoped state, so one instance serves any number of
    concurrent callers.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        clients: Mapping[str, ProviderClient],
        recorder: DisclosureRecorder,
        guardrails: Optional[GuardrailsPipeline] = None,
        cache: Optional[ResponseCache] = None,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        cache_confidence_factor: float = 0.5,
        max_workers: int = 8,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.recorder = recorder
        self.breakers: Dict[str, CircuitBreaker] = {
            provider.id: CircuitBreaker(
                provider.id,
                failure_threshold=failure_threshold,
                recovery_timeout=recovery_timeout,
                clock=clock,
            )
            for provider in registry.candidates()
        }
        self.router = ProviderRouter(
            registry=registry,
            clients=clients,
            breakers=self.breakers,
            guardrails=guardrails or GuardrailsPipeline(),
            cache=cache or ResponseCache(clock=clock),
            cache_confidence_factor=cache_confidence_factor,
            max_workers=max_workers,
        )

    @classmethod
    def from_config(
        cls,
        config: "OrchestratorConfig",
        clients: Mapping[str, ProviderClient],
        model_cards: ModelCardStore,
        disclosures: DisclosureStore,
    ) -> "Orchestrator":
        """Build the full object graph from a loaded configuration."""
        registry = config.registry()
        return cls(
            registry=registry,
            clients=clients,
            recorder=DisclosureRecorder(registry, model_cards, disclosures),
            guardrails=GuardrailsPipeline(config.guardrails),
            cache=ResponseCache(ttl=config.cache.ttl, max_entries=config.cache.max_entries),
            failure_threshold=config.breaker.failure_threshold,
            recovery_timeout=config.breaker.recovery_timeout,
            cache_confidence_factor=config.cache.confidence_factor,
            max_workers=config.router.max_workers,
        )

    def generate(
        self,
        request: GenerationRequest,
        user_context: Optional[UserContext] = None,
    ) -> GenerationResponse:
        """Serve a request and record its usage disclosure.

        Args:
            request: The generation request
            user_context: Who is asking; defaults to an anonymous, non-consenting user

        Returns:
            Live response, or a cached one with `from_cache=True`

        Raises:
            ValidationError: If the request is malformed
            GuardrailBlocked: If the input failed a blocking validator
            ServiceUnavailable: If every provider failed and the cache missed
            RequestCancelled: If the caller cancelled
        """
        validate_request(request)
        response = self.router.dispatch(request)
        self.recorder.record(request, response, user_context or ANONYMOUS_USER)
        return response

    def breaker_status(self) -> Dict[str, str]:
        """Breaker state per provider id, for observability tooling."""
        return self.router.breaker_status()

    @property
    def persistence_failures(self) -> int:
        """Disclosure writes or model-card lookups that failed so far."""
        return self.recorder.persistence_failures

    def close(self) -> None:
        self.router.shutdown()


def validate_request(request: GenerationRequest) -> None:
    """Reject malformed requests before any guardrail or provider work.

    Raises:
        ValidationError: If the request is malformed
    """
    if not isinstance(request.prompt, str) or not request.prompt.strip():
        raise ValidationError("prompt is required and cannot be empty")
    if not isinstance(request.id, str) or not request.id.strip():
        raise ValidationError("request id is required and cannot be empty")
    if request.framework is not None and not isinstance(request.framework, str):
        raise ValidationError("framework must be a string")
    for attachment in request.attachments:
        if not attachment.name or not isinstance(attachment.text, str):
            raise ValidationError("attachments need a name and extracted text")
