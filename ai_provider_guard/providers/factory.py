"""
Provider client construction and health checks.
"""

import logging
from typing import Dict, Mapping

from ..core.errors import ProviderError
from ..core.models import CancelSignal
from ..core.registry import ProviderConfig
from .anthropic_client import AnthropicClient
from .base import CompletionOptions, ProviderClient
from .openai_client import OpenAICompatibleClient

logger = logging.getLogger(__name__)

HEALTH_CHECK_PROMPT = "Hello"
HEALTH_CHECK_MAX_TOKENS = 5


def build_client(provider: ProviderConfig) -> ProviderClient:
    """Create the SDK-backed client named by the provider's `client` kind.

    Raises:
        ValueError: If the kind is unknown or credentials are missing
    """
    if provider.client == "openai":
        return OpenAICompatibleClient(provider)
    if provider.client == "anthropic":
        return AnthropicClient(provider)
    raise ValueError(f"Unsupported client '{provider.client}' for provider '{provider.id}'")


def check_health(
    providers: Mapping[str, ProviderConfig],
    clients: Mapping[str, ProviderClient],
) -> Dict[str, bool]:
    """Send a minimal completion to each provider.

    Breakers are not touched; a failed check only reports False.
    """
    results = {}
    for provider_id, provider in providers.items():
        options = CompletionOptions(
            model=provider.model_name,
            timeout=provider.request_timeout,
            max_output_tokens=HEALTH_CHECK_MAX_TOKENS,
        )
        try:
            clients[provider_id].complete(HEALTH_CHECK_PROMPT, options, CancelSignal())
        except ProviderError as e:
            logger.warning("Health check failed for %s: %s", provider_id, e.kind)
            results[provider_id] = False
        else:
            results[provider_id] = True
    return results
