"""
OpenAI-compatible provider client.

Wraps OpenAI chat completions behind the ProviderClient interface. Any
backend exposing the OpenAI API (set `base_url`) works the same way.
"""

import os
from typing import Any, Optional

import openai
from openai import OpenAI

from ..core.errors import ProviderTimeout, ProviderTransportError
from ..core.models import CancelSignal
from ..core.registry import ProviderConfig
from .base import CompletionOptions, CompletionResult

FRAMEWORK_NAMES = {
    "iso27001": "ISO 27001",
    "soc2": "SOC 2",
    "fedramp": "FedRAMP",
    "nist": "NIST 800-53",
}


def build_system_prompt(framework: Optional[str]) -> str:
    """System prompt for compliance guidance, scoped to a framework if given."""
    expertise = FRAMEWORK_NAMES.get(framework or "", "multiple frameworks")
    return (
        f"You are a specialized cybersecurity compliance assistant with expertise in {expertise} "
        "including ISO 27001, SOC 2, FedRAMP, and NIST 800-53. Provide accurate, actionable "
        "compliance guidance, cite referenced documents, and highlight compliance risks or gaps."
    )


class OpenAICompatibleClient:
    """ProviderClient backed by the OpenAI SDK.

    SDK retries are disabled; the router owns fallback and the breaker owns
    back-off.
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
        self.client = OpenAI(api_key=api_key, base_url=provider.base_url, max_retries=0)

    def complete(
        self,
        prompt: str,
        options: CompletionOptions,
        cancel_signal: CancelSignal,
    ) -> CompletionResult:
        """Create a chat completion for the prompt.

        Raises:
            RequestCancelled: If the caller cancelled before the call
            ProviderTimeout: If the SDK timed out
            ProviderTransportError: For any other SDK or empty-response failure
        """
        cancel_signal.raise_if_cancelled()

        try:
            response = self.client.chat.completions.create(
                model=options.model,
                messages=[
                    {"role": "system", "content": build_system_prompt(options.framework)},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=options.max_output_tokens,
                timeout=options.timeout,
            )
        except openai.APITimeoutError as e:
            raise ProviderTimeout(
                f"{self.provider.id} timed out after {options.timeout}s", self.provider.id
            ) from e
        except openai.OpenAIError as e:
            raise ProviderTransportError(
                f"{self.provider.id} request failed: {type(e).__name__}", self.provider.id
            ) from e

        if not response.choices or not response.choices[0].message.content:
            raise ProviderTransportError(f"{self.provider.id} returned an empty completion",
                                         self.provider.id)

        usage = response.usage
        return CompletionResult(
            text=response.choices[0].message.content,
            prompt_tokens=usage.prompt_tokens if usage else None,
            completion_tokens=usage.completion_tokens if usage else None,
        )
