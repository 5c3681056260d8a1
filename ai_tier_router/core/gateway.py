"""
Single-attempt model invocation.

The gateway makes exactly one provider call under a timeout, classifies
any failure into the closed taxonomy and reports latency and token usage
to telemetry. Retries and fallback belong to the orchestrator.

Calls run on a thread pool so the timeout and caller cancellation are
enforced here even when a provider ignores its own timeout argument.
"""

import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Protocol

from ai_tier_router.storage.models import InvocationEvent
from .errors import FailureKind, InvocationCancelled, classify_error
from .models import InvocationOutcome, OutcomeStatus
from .pricing import PRICING_TABLE, calculate_cost
from .telemetry import TelemetrySink, safe_emit
from .token_counter import Prompt, TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 32
# How often an in-flight call checks the caller's cancel event
CANCEL_POLL_SECONDS = 0.05


@dataclass(frozen=True)
class ProviderResponse:
    """Successful provider reply."""
    text: str
    prompt_tokens: int
    completion_tokens: int
    request_id: Optional[str] = None

    @property
    def tokens_used(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ModelProvider(Protocol):
    """Anything that can generate text for a prompt with a named model.

    Implementations should honour ``timeout`` (seconds) and raise on
    failure. The gateway stops waiting at the timeout regardless.
    """

    def call(self, model_id: str, prompt: Prompt, timeout: float) -> ProviderResponse:
        ...


@dataclass(frozen=True)
class CallContext:
    """Request metadata attached to telemetry events."""
    capability: Optional[str] = None
    tier: Optional[str] = None
    user_id: Optional[str] = None


class InvocationGateway:
    """Wraps one raw call to the model provider.

    Repeating a call with the same prompt and model is safe; the gateway
    itself never repeats anything. The executor is created once (or
    injected) and shared by every call through this gateway.
    """

    def __init__(
        self,
        provider: ModelProvider,
        telemetry: Optional[TelemetrySink] = None,
        executor: Optional[Executor] = None
    ):
        self.provider = provider
        self.telemetry = telemetry
        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=DEFAULT_MAX_WORKERS,
            thread_name_prefix="model-call",
        )

    def close(self) -> None:
        """Release the thread pool if this gateway created it."""
        if self._owns_executor:
            self.executor.shutdown(wait=False)

    def invoke(
        self,
        model_id: str,
        prompt: Prompt,
        timeout: float,
        context: Optional[CallContext] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> InvocationOutcome:
        """Call the provider once.

        Args:
            model_id: Model to call
            prompt: Text or chat messages
            timeout: Seconds the provider may take
            context: Request metadata for telemetry
            cancel_event: Set by the caller to stop waiting for the reply

        Returns:
            A SUCCESS outcome, or a FAILED outcome carrying the failure kind
            and the provider's original message

        Raises:
            ValueError: If timeout is not positive
            InvocationCancelled: If cancelled before the provider answered
        """
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        context = context or CallContext()
        if cancel_event is not None and cancel_event.is_set():
            raise InvocationCancelled(f"Invocation cancelled before calling {model_id}", [model_id])

        started = time.perf_counter()
        future = self.executor.submit(self.provider.call, model_id, prompt, timeout)
        try:
            response = self._await(future, model_id, timeout, cancel_event)
        except InvocationCancelled:
            latency_ms = (time.perf_counter() - started) * 1000.0
            logger.info("Call to %s cancelled after %.1f ms", model_id, latency_ms)
            self._emit(model_id, "cancelled", latency_ms, None, context, None)
            raise
        except Exception as exc:
            latency_ms = (time.perf_counter() - started) * 1000.0
            kind = classify_error(exc)
            message = str(exc) or type(exc).__name__
            if kind == FailureKind.UNKNOWN:
                logger.warning(
                    "Unclassified provider error from %s (%s): %s",
                    model_id, type(exc).__name__, message
                )
            else:
                logger.info("Provider call to %s failed: %s (%s)", model_id, kind.value, message)
            self._emit(model_id, kind.value, latency_ms, None, context, None)
            return InvocationOutcome.failure(
                OutcomeStatus.FAILED,
                kind,
                message,
                model_used=model_id,
                attempted_models=[model_id],
                latency_ms=latency_ms,
            )

        latency_ms = (time.perf_counter() - started) * 1000.0
        usage = TokenUsage(
            prompt_tokens=response.prompt_tokens,
            completion_tokens=response.completion_tokens
        )
        cost = calculate_cost(model_id, usage) if PRICING_TABLE.has_model(model_id) else None
        self._emit(model_id, OutcomeStatus.SUCCESS.value, latency_ms, usage, context, response.request_id, cost)
        return InvocationOutcome.success(
            model_id,
            response.text,
            usage,
            attempted_models=[model_id],
            latency_ms=latency_ms,
            request_id=response.request_id,
            estimated_cost=cost,
        )

    @staticmethod
    def _await(
        future: Future,
        model_id: str,
        timeout: float,
        cancel_event: Optional[threading.Event]
    ) -> ProviderResponse:
        """Wait for the provider's reply, the deadline or cancellation.

        A reply that is already available always wins over cancellation.
        A call abandoned on timeout or cancellation may still finish on
        its worker thread; its result is discarded.
        """
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                future.cancel()
                raise TimeoutError(f"Call to {model_id} timed out after {timeout:g}s")

            window = remaining if cancel_event is None else min(remaining, CANCEL_POLL_SECONDS)
            done, _ = wait([future], timeout=window)
            if done:
                return future.result()

            if cancel_event is not None and cancel_event.is_set():
                future.cancel()
                raise InvocationCancelled(f"Invocation cancelled while waiting for {model_id}", [model_id])

    def _emit(
        self,
        model_id: str,
        outcome: str,
        latency_ms: float,
        usage: Optional[TokenUsage],
        context: CallContext,
        request_id: Optional[str],
        estimated_cost: Optional[float] = None
    ) -> None:
        event = InvocationEvent(
            timestamp=datetime.now(timezone.utc),
            model=model_id,
            outcome=outcome,
            latency_ms=latency_ms,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            total_tokens=usage.total_tokens if usage else 0,
            capability=context.capability,
            tier=context.tier,
            user_id=context.user_id,
            request_id=request_id,
            estimated_cost=estimated_cost,
        )
        safe_emit(self.telemetry, event)
