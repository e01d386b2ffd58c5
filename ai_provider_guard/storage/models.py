"""
Data models for storage layer.

Defines the governance records persisted by the orchestrator.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

MODEL_CARD_STATUSES = ("active", "deprecated")


@dataclass(frozen=True)
class UsageDisclosure:
    """Immutable record of which model served a user action.

    Append-only: one per served request, never updated or deleted.
    """
    id: str
    request_id: str
    user_id: str
    action_type: str
    model_provider: str
    model_name: str
    model_card_id: Optional[str]
    purpose_description: str
    ai_contribution: str
    user_consented: bool
    consented_at: Optional[datetime]
    human_oversight: bool
    cost_estimate: str
    created_at: datetime
    data_used: Tuple[str, ...] = ()
    tokens_used: int = 0
    guardrail_finding_count: int = 0
    served_from_cache: bool = False

    def __post_init__(self):
        """Consent timestamp must agree with the consent flag."""
        if self.user_consented and self.consented_at is None:
            raise ValueError("consented_at is required when user_consented is true")
        if not self.user_consented and self.consented_at is not None:
            raise ValueError("consented_at must be empty when user_consented is false")


@dataclass(frozen=True)
class ModelCard:
    """Published metadata for a provider/model/version combination."""
    id: str
    model_provider: str
    model_name: str
    model_version: str
    description: str
    intended_use: str
    limitations: str
    status: str = "active"
    published_at: Optional[datetime] = None
    last_reviewed_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate card status."""
        if self.status not in MODEL_CARD_STATUSES:
            raise ValueError(f"status must be one of: {list(MODEL_CARD_STATUSES)}")
