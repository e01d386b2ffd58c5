"""
Fallback routing across providers.

Dispatch Order:
1. Input guardrails - a BLOCK ends the request with no breaker impact
2. Candidates in ascending priority - token limit, breaker, call, output guardrails
3. Fallback cache - only after every candidate is exhausted

Candidates are tried one at a time, never in parallel, so a healthy primary
provider is the only one billed.
"""

import dataclasses
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Callable, Dict, List, Mapping, Tuple

from .cache import ResponseCache, fingerprint
from .circuit_breaker import CircuitBreaker
from .errors import (
    GuardrailBlocked,
    ProviderError,
    ProviderTimeout,
    ProviderTransportError,
    RequestCancelled,
    ServiceUnavailable,
)
from .guardrails import GuardrailFinding, GuardrailsPipeline
from .models import CancelSignal, GenerationRequest, GenerationResponse
from .registry import ProviderConfig, ProviderRegistry
from .token_counter import estimate_tokens
from ..providers.base import CompletionOptions, CompletionResult, ProviderClient

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 80
POLL_INTERVAL = 0.05  # Seconds between cancellation checks while waiting on a provider


class ProviderRouter:
    """Selects, calls and falls back across provider candidates.

    Holds no request-scoped state; concurrent dispatches share only the
    breakers and the cache, each of which locks internally.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        clients: Mapping[str, ProviderClient],
        breakers: Mapping[str, CircuitBreaker],
        guardrails: GuardrailsPipeline,
        cache: ResponseCache,
        cache_confidence_factor: float = 0.5,
        max_workers: int = 8,
    ):
        missing = [p.id for p in registry.candidates() if p.id not in clients]
        if missing:
            raise ValueError(f"No client configured for providers: {missing}")
        missing = [p.id for p in registry.candidates() if p.id not in breakers]
        if missing:
            raise ValueError(f"No circuit breaker configured for providers: {missing}")
        if not 0 <= cache_confidence_factor < 1:
            raise ValueError("cache_confidence_factor must be >= 0 and < 1")
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")

        self.registry = registry
        self.clients = dict(clients)
        self.breakers = dict(breakers)
        self.guardrails = guardrails
        self.cache = cache
        self.cache_confidence_factor = cache_confidence_factor
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="provider-call"
        )

    def dispatch(self, request: GenerationRequest) -> GenerationResponse:
        """Serve a request from the first healthy provider, or the cache.

        Raises:
            GuardrailBlocked: If the input failed a blocking validator
            ServiceUnavailable: If every candidate was skipped or failed and the cache missed
            RequestCancelled: If the caller cancelled
        """
        request.cancel_signal.raise_if_cancelled()

        input_check = self.guardrails.check_input(request)
        blocking = input_check.blocking_finding
        if blocking is not None:
            raise GuardrailBlocked("input", blocking.validator)

        sanitized = input_check.request
        payload = sanitized.full_text()
        failures: List[Tuple[str, str]] = []

        for provider in self.registry.candidates():
            limit = self.guardrails.check_token_limit(payload, provider)
            if limit.blocked:
                logger.info("Skipping %s for request %s: %s", provider.id, request.id, limit.detail)
                failures.append((provider.id, "token_limit"))
                continue

            breaker = self.breakers[provider.id]
            if not breaker.allow_request():
                logger.info("Skipping %s for request %s: circuit open", provider.id, request.id)
                failures.append((provider.id, "circuit_open"))
                continue

            try:
                result = self._call_provider(provider, payload, sanitized)
            except RequestCancelled:
                breaker.abandon_trial()
                logger.info("Request %s cancelled during call to %s", request.id, provider.id)
                raise
            except ProviderError as e:
                breaker.record_failure()
                logger.warning("Provider %s failed for request %s: %s",
                               provider.id, request.id, e.kind)
                failures.append((provider.id, e.kind))
                continue

            output_check = self.guardrails.check_output(result.text)
            blocking = output_check.blocking_finding
            if blocking is not None:
                breaker.record_failure()
                logger.warning("Output from %s blocked by %s for request %s",
                               provider.id, blocking.validator, request.id)
                failures.append((provider.id, "output_blocked"))
                continue

            breaker.record_success()
            response = self._build_response(
                provider, sanitized, result, output_check.content,
                input_check.findings + (limit,) + output_check.findings,
            )
            self.cache.store(fingerprint(sanitized.prompt, sanitized.framework), response)
            logger.info("Request %s served by %s", request.id, provider.id)
            return response

        cached = self.cache.lookup(fingerprint(sanitized.prompt, sanitized.framework))
        if cached is not None:
            logger.warning("All providers exhausted for request %s; serving cached response from %s",
                           request.id, cached.provider_id)
            return dataclasses.replace(
                cached,
                from_cache=True,
                confidence=int(cached.confidence * self.cache_confidence_factor),
                guardrail_findings=input_check.findings,
            )

        logger.warning("All providers exhausted for request %s and cache missed", request.id)
        raise ServiceUnavailable(failures)

    def shutdown(self) -> None:
        """Stop the worker pool without waiting for abandoned calls."""
        self._executor.shutdown(wait=False)

    def _call_provider(
        self,
        provider: ProviderConfig,
        payload: str,
        request: GenerationRequest,
    ) -> CompletionResult:
        """Call one provider, bounded by its timeout and the caller's cancel signal.

        The provider timeout starts once a worker picks the call up. Time spent
        waiting for a free worker is bounded only by the cancel signal.
        """
        cancel_signal = request.cancel_signal
        cancel_signal.raise_if_cancelled()

        options = CompletionOptions(
            model=provider.model_name,
            timeout=provider.request_timeout,
            framework=request.framework,
        )
        # A per-attempt signal lets an abandoned call see the timeout too
        attempt_signal = CancelSignal()
        started = threading.Event()
        future = self._executor.submit(
            _run_started, started, self.clients[provider.id].complete,
            payload, options, attempt_signal,
        )
        try:
            return self._await(future, started, provider, cancel_signal)
        finally:
            if not future.done():
                attempt_signal.cancel()
                future.cancel()

    def _await(
        self,
        future: "Future[CompletionResult]",
        started: threading.Event,
        provider: ProviderConfig,
        cancel_signal: CancelSignal,
    ) -> CompletionResult:
        while not started.wait(POLL_INTERVAL):
            if cancel_signal.is_set():
                raise RequestCancelled("Request cancelled while waiting for a worker")

        deadline = time.monotonic() + provider.request_timeout
        while True:
            if cancel_signal.is_set():
                raise RequestCancelled("Request cancelled by caller")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ProviderTimeout(
                    f"{provider.id} timed out after {provider.request_timeout}s", provider.id
                )
            try:
                result = future.result(timeout=min(POLL_INTERVAL, remaining))
            except FutureTimeout as e:
                if future.done():
                    # The client itself raised a timeout
                    raise ProviderTimeout(f"{provider.id} client timed out", provider.id) from e
                continue
            except (ProviderError, RequestCancelled):
                raise
            except Exception as e:
                raise ProviderTransportError(
                    f"{provider.id} client raised {type(e).__name__}", provider.id
                ) from e
            if not isinstance(result, CompletionResult) or not result.text:
                raise ProviderTransportError(f"{provider.id} returned no content", provider.id)
            return result

    def _build_response(
        self,
        provider: ProviderConfig,
        request: GenerationRequest,
        result: CompletionResult,
        content: str,
        findings: Tuple[GuardrailFinding, ...],
    ) -> GenerationResponse:
        confidence = result.confidence if result.confidence is not None else DEFAULT_CONFIDENCE
        sources = result.sources or tuple(a.name for a in request.attachments)
        prompt_tokens = result.prompt_tokens
        if prompt_tokens is None:
            prompt_tokens = estimate_tokens(request.full_text())
        completion_tokens = result.completion_tokens
        if completion_tokens is None:
            completion_tokens = estimate_tokens(result.text)
        return GenerationResponse(
            content=content,
            confidence=max(0, min(100, confidence)),
            sources=tuple(sources),
            provider_id=provider.id,
            model_name=provider.model_name,
            from_cache=False,
            guardrail_findings=findings,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )

    def breaker_status(self) -> Dict[str, str]:
        """Current breaker state per provider, in priority order."""
        return {p.id: self.breakers[p.id].state.value for p in self.registry.candidates()}


def _run_started(started: threading.Event, call: Callable[..., CompletionResult], *args):
    started.set()
    return call(*args)
