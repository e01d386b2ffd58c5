"""
Provider catalog.

Holds the immutable, config-driven list of LLM providers in fallback order.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

# SDK families a provider can be served by
CLIENT_KINDS = ("openai", "anthropic")


@dataclass(frozen=True)
class ProviderConfig:
    """Static description of one LLM provider candidate."""
    id: str
    display_name: str
    model_name: str
    priority: int  # Lower is tried first
    max_tokens: int
    request_timeout: float  # Seconds per attempt
    cost_per_token: Decimal
    api_key_env: Optional[str] = None
    base_url: Optional[str] = None
    client: str = "openai"

    def __post_init__(self):
        """Validate provider values."""
        if not self.id or not self.id.strip():
            raise ValueError("provider id is required and cannot be empty")
        if not self.model_name or not self.model_name.strip():
            raise ValueError(f"model_name is required for provider '{self.id}'")
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens must be > 0 for provider '{self.id}'")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be > 0 for provider '{self.id}'")
        if self.cost_per_token < 0:
            raise ValueError(f"cost_per_token cannot be negative for provider '{self.id}'")
        if self.client not in CLIENT_KINDS:
            raise ValueError(f"client must be one of {list(CLIENT_KINDS)} for provider '{self.id}'")


class ProviderRegistry:
    """Ordered, read-only collection of provider configs.

    Built once and injected into the router; reloading means building a new
    registry.
    """

    def __init__(self, providers: Sequence[ProviderConfig]):
        by_id: Dict[str, ProviderConfig] = {}
        for provider in providers:
            if provider.id in by_id:
                raise ValueError(f"Duplicate provider id: {provider.id}")
            by_id[provider.id] = provider
        self._by_id = by_id
        # sorted() is stable, so equal priorities keep declaration order
        self._ordered = tuple(sorted(providers, key=lambda p: p.priority))

    def candidates(self) -> List[ProviderConfig]:
        """Providers sorted ascending by priority."""
        return list(self._ordered)

    def get(self, provider_id: str) -> ProviderConfig:
        """Look up a provider by id.

        Raises:
            KeyError: If the provider is unknown
        """
        return self._by_id[provider_id]

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._by_id
