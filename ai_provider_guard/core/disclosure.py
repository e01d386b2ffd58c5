"""
Usage disclosure recording.

Writes one append-only audit record per served request. Recording is
best-effort: persistence failures are logged and counted, never raised,
so audit gaps never block a user flow.
"""

import logging
import threading
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional, Protocol

from ai_provider_guard.storage.models import ModelCard, UsageDisclosure

from .models import GenerationRequest, GenerationResponse, UserContext
from .pricing import calculate_cost, format_cost
from .registry import ProviderRegistry
from .token_counter import TokenUsage

logger = logging.getLogger(__name__)

# Disclosure ids are derived from request ids so retries map to the same record
DISCLOSURE_NAMESPACE = uuid.UUID("6f1c9a52-4d3e-4b8e-9a57-2d0c1b7e8f31")


class ModelCardStore(Protocol):
    def find(self, model_provider: str, model_name: str) -> Optional[ModelCard]:
        ...


class DisclosureStore(Protocol):
    def insert(self, disclosure: UsageDisclosure) -> bool:
        ...


def disclosure_id_for(request_id: str) -> str:
    """Deterministic disclosure id for a request id."""
    return str(uuid.uuid5(DISCLOSURE_NAMESPACE, request_id))


class DisclosureRecorder:
    """Builds and persists UsageDisclosure records.

    Idempotent on request id: the id is derived from it and the store ignores
    a second insert for the same request.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        model_cards: ModelCardStore,
        disclosures: DisclosureStore,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.registry = registry
        self.model_cards = model_cards
        self.disclosures = disclosures
        self._now = now
        self._lock = threading.Lock()
        self.persistence_failures = 0

    def record(
        self,
        request: GenerationRequest,
        response: GenerationResponse,
        user_context: UserContext,
    ) -> Optional[UsageDisclosure]:
        """Record the disclosure for a served response.

        Returns:
            The disclosure that was built, or None if it could not be persisted
        """
        model_card_id = self._find_model_card_id(response)
        disclosure = self.build(request, response, user_context, model_card_id)

        try:
            inserted = self.disclosures.insert(disclosure)
        except Exception as e:  # Any store failure is best effort
            self._count_failure()
            logger.error(
                "Usage disclosure not recorded for request %s (provider %s): %s",
                request.id, response.provider_id, e,
            )
            return None

        if not inserted:
            logger.info("Usage disclosure for request %s already recorded", request.id)
        return disclosure

    def build(
        self,
        request: GenerationRequest,
        response: GenerationResponse,
        user_context: UserContext,
        model_card_id: Optional[str] = None,
    ) -> UsageDisclosure:
        """Assemble the disclosure record without persisting it."""
        now = self._now()
        usage = TokenUsage(
            prompt_tokens=response.prompt_tokens,
            completion_tokens=response.completion_tokens,
        )
        return UsageDisclosure(
            id=disclosure_id_for(request.id),
            request_id=request.id,
            user_id=user_context.user_id,
            action_type=user_context.action_type,
            model_provider=response.provider_id,
            model_name=response.model_name,
            model_card_id=model_card_id,
            purpose_description=user_context.purpose_description,
            ai_contribution=user_context.ai_contribution,
            user_consented=user_context.user_consented,
            consented_at=now if user_context.user_consented else None,
            human_oversight=user_context.human_oversight,
            cost_estimate=format_cost(self._estimate_cost(response, usage)),
            created_at=now,
            data_used=tuple(user_context.data_used),
            tokens_used=0 if response.from_cache else usage.total_tokens,
            guardrail_finding_count=len(response.guardrail_findings),
            served_from_cache=response.from_cache,
        )

    def _estimate_cost(self, response: GenerationResponse, usage: TokenUsage) -> Decimal:
        # A cached answer costs nothing new
        if response.from_cache or response.provider_id not in self.registry:
            return Decimal("0")
        return calculate_cost(self.registry.get(response.provider_id), usage)

    def _find_model_card_id(self, response: GenerationResponse) -> Optional[str]:
        try:
            card = self.model_cards.find(response.provider_id, response.model_name)
        except Exception as e:  # Any store failure is best effort
            self._count_failure()
            logger.error(
                "Model card lookup failed for %s/%s: %s",
                response.provider_id, response.model_name, e,
            )
            return None
        return card.id if card is not None else None

    def _count_failure(self) -> None:
        with self._lock:
            self.persistence_failures += 1
