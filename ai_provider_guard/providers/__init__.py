"""
Provider clients for AI Provider Guard.

Each client implements the single `complete` capability used by the router.
"""

from .anthropic_client import AnthropicClient
from .base import CompletionOptions, CompletionResult, ProviderClient
from .factory import build_client, check_health
from .openai_client import OpenAICompatibleClient

__all__ = [
    "AnthropicClient",
    "CompletionOptions",
    "CompletionResult",
    "OpenAICompatibleClient",
    "ProviderClient",
    "build_client",
    "check_health",
]
