"""
Shared fixtures: a scripted model provider and an orchestrator builder.
"""

import copy

import pytest

from ai_tier_router.config.loader import parse_catalog_config
from ai_tier_router.core.catalog import TierCatalog
from ai_tier_router.core.fallback import FallbackResolver
from ai_tier_router.core.gateway import InvocationGateway, ProviderResponse
from ai_tier_router.core.orchestrator import TieredOrchestrator
from ai_tier_router.core.rate_limiter import RateLimiter
from ai_tier_router.storage.ledger import InMemoryUsageLedger


TEST_CONFIG = {
    "tiers": {
        "free": {
            "models": {"characterReply": "A", "emotionDetect": "A"},
            "features": {"voiceGeneration": False, "modelOverride": False},
            "rate_limits": {"requests_per_minute": 5, "max_tokens_per_request": 1000},
        },
        "premium": {
            "models": {"characterReply": "P", "emotionDetect": "A"},
            "features": {"voiceGeneration": True, "modelOverride": True},
            "rate_limits": {"requests_per_minute": "unlimited", "max_tokens_per_request": 4000},
        },
    },
    "fallbacks": {
        "A": ["B"],
        "P": ["A", "B"],
        "m1": ["m2", "m3"],
    },
    "settings": {"timezone": "UTC", "timeout_seconds": 5, "max_attempts": 1, "retry_delay_seconds": 0},
}


class FakeProvider:
    """Provider whose reply per model is scripted by the test.

    A script entry is a ProviderResponse, an exception instance to raise,
    or a callable taking the model id. Unscripted models succeed.
    """

    def __init__(self):
        self.script = {}
        self.calls = []

    def call(self, model_id, prompt, timeout):
        self.calls.append((model_id, timeout))
        item = self.script.get(model_id)
        if callable(item) and not isinstance(item, BaseException):
            item = item(model_id)
        if isinstance(item, BaseException):
            raise item
        if item is None:
            item = ProviderResponse(text=f"reply from {model_id}", prompt_tokens=10, completion_tokens=5)
        return item

    @property
    def called_models(self):
        return [model for model, _ in self.calls]


@pytest.fixture
def test_config():
    return copy.deepcopy(TEST_CONFIG)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def make_orchestrator():
    """Build an orchestrator over the test config with a frozen rate-limit clock."""

    def build(provider, raw_config=None, ledger=None, telemetry=None, clock=lambda: 0.0, sleep=None):
        config = parse_catalog_config(copy.deepcopy(raw_config or TEST_CONFIG))
        catalog = TierCatalog(config.tiers)
        return TieredOrchestrator(
            catalog=catalog,
            resolver=FallbackResolver(config.fallbacks),
            rate_limiter=RateLimiter(catalog, clock=clock),
            ledger=ledger if ledger is not None else InMemoryUsageLedger(),
            gateway=InvocationGateway(provider, telemetry),
            timezone=config.settings.timezone,
            timeout_seconds=config.settings.timeout_seconds,
            max_attempts=config.settings.max_attempts,
            retry_delay_seconds=config.settings.retry_delay_seconds,
            sleep=sleep,
        )

    return build
