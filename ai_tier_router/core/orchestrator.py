"""
Tiered invocation orchestration.

The public entry point: resolves tier -> model, applies rate and budget
checks, tries the model and its fallbacks through the gateway, and
records usage once for the call that succeeded.

Per-request flow:

    Resolving -> DailyReservation -> RateChecking -> Invoking(candidate_i)
              -> Success | Retry(candidate_i) | NextCandidate | Aborted

Terminal states are SUCCESS, ABORTED(reason) and EXHAUSTED(last failure).
"""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt, wait_exponential

from ai_tier_router.config.loader import CatalogConfig
from ai_tier_router.storage.ledger import InMemoryUsageLedger, usage_day
from .catalog import TierCatalog
from .errors import FailureKind, InvocationCancelled, is_fallback_kind
from .fallback import FallbackResolver
from .gateway import CallContext, InvocationGateway, ModelProvider
from .models import InvocationOutcome, InvocationRequest, OutcomeStatus
from .rate_limiter import RateLimiter
from .telemetry import TelemetrySink
from .token_counter import Prompt, estimate_tokens

logger = logging.getLogger(__name__)

# Transient kinds worth repeating on the same model before falling back
RETRY_KINDS = frozenset({FailureKind.MODEL_UNAVAILABLE, FailureKind.TIMEOUT})
MAX_RETRY_DELAY_SECONDS = 30.0


class TieredOrchestrator:
    """Runs one request through policy checks and the fallback chain.

    Safe to share across threads: all mutable state lives in the rate
    limiter and the usage ledger, both of which serialize per user.
    """

    def __init__(
        self,
        catalog: TierCatalog,
        resolver: FallbackResolver,
        rate_limiter: RateLimiter,
        ledger,
        gateway: InvocationGateway,
        timezone: str = "Asia/Tokyo",
        timeout_seconds: float = 30.0,
        max_attempts: int = 3,
        retry_delay_seconds: float = 1.0,
        now: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], None]] = None
    ):
        self.catalog = catalog
        self.resolver = resolver
        self.rate_limiter = rate_limiter
        self.ledger = ledger
        self.gateway = gateway
        self.timezone = timezone
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._now = now
        self._sleep = sleep or time.sleep

    @classmethod
    def from_config(
        cls,
        config: CatalogConfig,
        provider: ModelProvider,
        ledger=None,
        telemetry: Optional[TelemetrySink] = None
    ) -> "TieredOrchestrator":
        """Wire every component from a validated configuration.

        Raises:
            ConfigurationError: If the catalog or fallback graph is invalid
        """
        catalog = TierCatalog(config.tiers)
        return cls(
            catalog=catalog,
            resolver=FallbackResolver(config.fallbacks),
            rate_limiter=RateLimiter(catalog),
            ledger=ledger if ledger is not None else InMemoryUsageLedger(),
            gateway=InvocationGateway(provider, telemetry),
            timezone=config.settings.timezone,
            timeout_seconds=config.settings.timeout_seconds,
            max_attempts=config.settings.max_attempts,
            retry_delay_seconds=config.settings.retry_delay_seconds,
        )

    def run(self, capability: str, tier: str, user_id: str, prompt: Prompt) -> InvocationOutcome:
        """Caller-facing shorthand for ``execute``."""
        return self.execute(InvocationRequest(
            capability=capability,
            tier=tier,
            user_id=user_id,
            prompt=prompt,
        ))

    def resolve_model(self, request: InvocationRequest) -> str:
        """Model for the request, honouring overrides only where the tier allows them."""
        if request.model_override:
            if self.catalog.allows_override(request.tier):
                return request.model_override
            logger.debug(
                "Ignoring model override %s: tier %s does not allow overrides",
                request.model_override, request.tier
            )
        return self.catalog.model_for(request.tier, request.capability)

    def execute(
        self,
        request: InvocationRequest,
        cancel_event: Optional[threading.Event] = None
    ) -> InvocationOutcome:
        """Run a request to a terminal outcome.

        Args:
            request: The invocation request
            cancel_event: Set by the caller to abandon the request; an
                in-flight provider call stops being waited for

        Returns:
            SUCCESS annotated with the model that answered, ABORTED when a
            policy check or a non-fallback failure stopped the request, or
            EXHAUSTED with the last candidate's failure

        Raises:
            ConfigurationError: If the tier or capability is not configured
            InvocationCancelled: If cancelled before a success was obtained
        """
        model = self.resolve_model(request)

        if not request.prompt:
            return InvocationOutcome.failure(
                OutcomeStatus.ABORTED,
                FailureKind.INVALID_INPUT,
                "prompt is required and cannot be empty",
            )

        day = usage_day(self.timezone, self._now() if self._now else None)

        daily_limit = self.catalog.daily_chat_limit_for(request.tier)
        reserved = False
        if daily_limit is not None:
            if not self.ledger.reserve_chat(request.user_id, day, daily_limit):
                logger.info("Daily chat limit %d reached for user %s", daily_limit, request.user_id)
                return InvocationOutcome.failure(
                    OutcomeStatus.ABORTED,
                    FailureKind.RATE_LIMITED,
                    f"Daily chat limit of {daily_limit} reached",
                )
            reserved = True

        billed = False
        try:
            outcome = self._check_request_limits(request)
            if outcome is None:
                outcome = self._try_candidates(model, request, cancel_event)
            if outcome.ok:
                # Record before anything else so a completed call is always billed
                self.ledger.increment(
                    request.user_id,
                    day,
                    chat_delta=0 if reserved else 1,
                    token_delta=outcome.usage.total_tokens,
                )
                billed = True
            return outcome
        finally:
            if reserved and not billed:
                self.ledger.release_chat(request.user_id, day)

    def _check_request_limits(self, request: InvocationRequest) -> Optional[InvocationOutcome]:
        """ABORTED outcome if the per-minute rate or token budget denies the request."""
        if not self.rate_limiter.check_and_consume(request.tier, request.user_id):
            return InvocationOutcome.failure(
                OutcomeStatus.ABORTED,
                FailureKind.RATE_LIMITED,
                "Requests per minute exceeded",
            )

        requested_tokens = request.estimated_tokens
        if requested_tokens is None:
            requested_tokens = estimate_tokens(request.prompt)
        if not self.rate_limiter.check_token_budget(request.tier, requested_tokens):
            budget = self.catalog.rate_limit_for(request.tier).max_tokens_per_request
            return InvocationOutcome.failure(
                OutcomeStatus.ABORTED,
                FailureKind.REQUEST_TOO_LARGE,
                f"Request of ~{requested_tokens} tokens exceeds the {budget} token budget",
            )
        return None

    def _try_candidates(
        self,
        model: str,
        request: InvocationRequest,
        cancel_event: Optional[threading.Event]
    ) -> InvocationOutcome:
        candidates = self.resolver.candidates_for(model)
        context = CallContext(
            capability=request.capability,
            tier=request.tier,
            user_id=request.user_id,
        )
        attempted = []
        last = None

        for candidate in candidates:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Request for user %s cancelled after %s", request.user_id, attempted)
                raise InvocationCancelled("Invocation cancelled by caller", attempted)

            logger.info(
                "Attempting %s for %s (user=%s, primary=%s)",
                candidate, request.capability, request.user_id, candidate == model
            )
            attempted.append(candidate)
            try:
                last = self._invoke_with_retry(candidate, request.prompt, context, cancel_event)
            except InvocationCancelled:
                logger.info("Request for user %s cancelled during %s", request.user_id, candidate)
                raise InvocationCancelled("Invocation cancelled by caller", attempted)

            if last.ok:
                last.attempted_models = list(attempted)
                if last.fallback_used:
                    logger.info("Fallback %s answered for primary %s", candidate, model)
                return last

            if not is_fallback_kind(last.failure_kind):
                logger.warning(
                    "Aborting on %s from %s: a different model will not help",
                    last.failure_kind.value, candidate
                )
                return InvocationOutcome.failure(
                    OutcomeStatus.ABORTED,
                    last.failure_kind,
                    last.message,
                    attempted_models=list(attempted),
                )

            logger.warning("Candidate %s failed with %s, trying next", candidate, last.failure_kind.value)

        logger.error(
            "All candidates failed for user %s: %s (last: %s)",
            request.user_id, attempted, last.failure_kind.value
        )
        return InvocationOutcome.failure(
            OutcomeStatus.EXHAUSTED,
            last.failure_kind,
            last.message,
            attempted_models=list(attempted),
        )

    def _invoke_with_retry(
        self,
        model_id: str,
        prompt: Prompt,
        context: CallContext,
        cancel_event: Optional[threading.Event]
    ) -> InvocationOutcome:
        """Call one model, repeating transient failures with exponential backoff.

        The final attempt's outcome is returned whether or not it succeeded.
        Backoff sleeps wake early when the request is cancelled.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_delay_seconds, max=MAX_RETRY_DELAY_SECONDS),
            retry=retry_if_result(_should_retry),
            sleep=cancel_event.wait if cancel_event is not None else self._sleep,
            before_sleep=_log_retry,
            retry_error_callback=lambda state: state.outcome.result(),
        )
        return retrying(self.gateway.invoke, model_id, prompt, self.timeout_seconds, context, cancel_event)

    def close(self) -> None:
        """Release the gateway's worker threads."""
        self.gateway.close()


def _should_retry(outcome: InvocationOutcome) -> bool:
    return not outcome.ok and outcome.failure_kind in RETRY_KINDS


def _log_retry(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome.result()
    logger.warning(
        "Retrying %s after %s (attempt %d failed: %s)",
        outcome.model_used, outcome.failure_kind.value, retry_state.attempt_number, outcome.message
    )
