"""
Shared test doubles for provider routing tests.
"""

import threading
import time
from decimal import Decimal

import pytest

from ai_provider_guard.core.errors import ProviderTransportError
from ai_provider_guard.core.registry import ProviderConfig
from ai_provider_guard.providers.base import CompletionResult


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeClient:
    """ProviderClient returning canned text or raising a canned error."""

    def __init__(self, text="Answer", error=None, hang=False, delay=0.0, **result_kwargs):
        self.text = text
        self.error = error
        self.hang = hang
        self.delay = delay
        self.result_kwargs = result_kwargs
        self.calls = []
        self.released = threading.Event()

    def complete(self, prompt, options, cancel_signal):
        self.calls.append((prompt, options))
        if self.hang:
            # Blocks until the router gives up on this attempt
            cancel_signal.wait(10)
            self.released.set()
            raise ProviderTransportError("abandoned")
        if self.delay:
            # Busy provider that ignores cancellation
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return CompletionResult(text=self.text, **self.result_kwargs)


def make_provider(provider_id, priority=1, max_tokens=4000, request_timeout=5.0,
                  cost_per_token="0.00001", model_name=None):
    return ProviderConfig(
        id=provider_id,
        display_name=provider_id.title(),
        model_name=model_name or f"{provider_id}-model",
        priority=priority,
        max_tokens=max_tokens,
        request_timeout=request_timeout,
        cost_per_token=Decimal(cost_per_token),
    )


@pytest.fixture
def clock():
    return FakeClock()
