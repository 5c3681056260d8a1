"""
Unit tests for pricing calculations and token estimates.

Tests cost accuracy, rounding behavior, and error handling.
"""

import pytest
from decimal import Decimal

from ai_tier_router.core.pricing import calculate_cost, PRICING_TABLE
from ai_tier_router.core.token_counter import TokenUsage, estimate_tokens, prompt_text


class TestTokenUsage:
    """Test TokenUsage dataclass."""

    def test_total_tokens_calculation(self):
        """Verify total_tokens is computed correctly."""
        usage = TokenUsage(prompt_tokens=100, completion_tokens=50)
        assert usage.total_tokens == 150

    def test_zero_tokens(self):
        usage = TokenUsage(prompt_tokens=0, completion_tokens=0)
        assert usage.total_tokens == 0


class TestEstimateTokens:
    """Test prompt size estimates."""

    def test_empty_prompt(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens([]) == 0

    def test_text_prompt(self):
        assert estimate_tokens("abcd" * 10) == 10
        assert estimate_tokens("a") == 1

    def test_message_prompt(self):
        messages = [
            {"role": "system", "content": "abcd"},
            {"role": "user", "content": "efgh"},
        ]
        assert prompt_text(messages) == "abcd\nefgh"
        assert estimate_tokens(messages) == 3


class TestPricingTable:
    """Test pricing table functionality."""

    def test_get_supported_model(self):
        pricing = PRICING_TABLE.get_pricing("gpt-4o")
        assert pricing.prompt_cost_per_1k == Decimal("0.005")
        assert pricing.completion_cost_per_1k == Decimal("0.015")

    def test_has_model(self):
        assert PRICING_TABLE.has_model("gpt-4o-mini")
        assert not PRICING_TABLE.has_model("unknown-model")

    def test_unsupported_model_raises_error(self):
        with pytest.raises(ValueError, match="Unsupported model: unknown-model"):
            PRICING_TABLE.get_pricing("unknown-model")


class TestCostCalculation:
    """Test cost calculation accuracy and rounding."""

    def test_exact_cost_gpt4o(self):
        usage = TokenUsage(prompt_tokens=1000, completion_tokens=1000)
        # 1000/1000 * $0.005 + 1000/1000 * $0.015 = $0.02
        assert calculate_cost("gpt-4o", usage) == 0.02

    def test_exact_cost_gpt35_turbo(self):
        usage = TokenUsage(prompt_tokens=100, completion_tokens=50)
        # 0.1 * $0.0005 + 0.05 * $0.0015 = $0.000125
        assert calculate_cost("gpt-3.5-turbo", usage) == 0.000125

    def test_rounds_up_to_micro_dollar(self):
        usage = TokenUsage(prompt_tokens=1, completion_tokens=0)
        # $0.00000015 rounds up, never down to zero
        assert calculate_cost("gpt-4o-mini", usage) == 0.000001

    def test_zero_usage(self):
        assert calculate_cost("gpt-4o", TokenUsage(0, 0)) == 0.0

    def test_unsupported_model(self):
        with pytest.raises(ValueError, match="Unsupported model"):
            calculate_cost("gpt-5", TokenUsage(10, 10))
