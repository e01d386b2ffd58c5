"""
Anthropic provider client.

Wraps the Anthropic Messages API behind the ProviderClient interface.
"""

import os
from typing import Any, Optional

import anthropic
from anthropic import Anthropic

from ..core.errors import ProviderTimeout, ProviderTransportError
from ..core.models import CancelSignal
from ..core.registry import ProviderConfig
from .base import CompletionOptions, CompletionResult
from .openai_client import build_system_prompt


class AnthropicClient:
    """ProviderClient backed by the Anthropic SDK.

    SDK retries are disabled, as with the OpenAI client.
    """

    def __init__(self, provider: ProviderConfig, client: Optional[Any] = None):
        """Initialize the client for one provider.

        Args:
            provider: Provider config (credentials come from `api_key_env`)
            client: Pre-built SDK client, mainly for tests

        Raises:
            ValueError: If `api_key_env` names an unset variable
        """
        self.provider = provider
        if client is not None:
            self.client = client
            return

        api_key = None
        if provider.api_key_env:
            api_key = os.environ.get(provider.api_key_env)
            if not api_key:
                raise ValueError(
                    f"Environment variable {provider.api_key_env} is not set "
                    f"for provider '{provider.id}'"
                )
        self.client = Anthropic(api_key=api_key, base_url=provider.base_url, max_retries=0)

    def complete(
        self,
        prompt: str,
        options: CompletionOptions,
        cancel_signal: CancelSignal,
    ) -> CompletionResult:
        """Create a message for the prompt.

        Raises:
            RequestCancelled: If the caller cancelled before the call
            ProviderTimeout: If the SDK timed out
            ProviderTransportError: For any other SDK or empty-response failure
        """
        cancel_signal.raise_if_cancelled()

        try:
            message = self.client.messages.create(
                model=options.model,
                max_tokens=options.max_output_tokens,
                system=build_system_prompt(options.framework),
                messages=[{"role": "user", "content": prompt}],
                timeout=options.timeout,
            )
        except anthropic.APITimeoutError as e:
            raise ProviderTimeout(
                f"{self.provider.id} timed out after {options.timeout}s", self.provider.id
            ) from e
        except anthropic.AnthropicError as e:
            raise ProviderTransportError(
                f"{self.provider.id} request failed: {type(e).__name__}", self.provider.id
            ) from e

        # Only text blocks carry the answer
        text = "".join(
            block.text for block in (message.content or ())
            if getattr(block, "type", None) == "text"
        )
        if not text:
            raise ProviderTransportError(f"{self.provider.id} returned an empty message",
                                         self.provider.id)

        usage = message.usage
        return CompletionResult(
            text=text,
            prompt_tokens=usage.input_tokens if usage else None,
            completion_tokens=usage.output_tokens if usage else None,
        )
