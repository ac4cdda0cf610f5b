"""
Unit tests for pricing and token estimation.

Tests the model catalogue, provider cost and markup arithmetic.
"""

from decimal import Decimal

import pytest

from quota_guard.core.pricing import (
    MODEL_CATALOG,
    calculate_provider_cost,
    compute_billed_cost,
    get_model,
)
from quota_guard.core.token_counter import (
    TokenUsage,
    estimate_input_tokens,
    estimate_output_tokens,
    estimate_usage,
)


class TestModelCatalog:
    """Test model lookup."""

    def test_known_model(self):
        model = get_model("gpt-4-turbo")
        assert model is not None
        assert model.provider_id == "openai"
        assert model.input_cost_per_million == Decimal("10.00")
        assert model.output_cost_per_million == Decimal("30.00")

    def test_unknown_model_returns_none(self):
        assert get_model("gpt-unknown") is None

    def test_catalog_covers_all_providers(self):
        providers = {m.provider_id for m in MODEL_CATALOG.values()}
        assert providers == {"openai", "google", "anthropic"}


class TestProviderCost:
    """Test raw provider cost calculation."""

    def test_cost_per_million_tokens(self):
        model = get_model("gpt-4-turbo")
        usage = TokenUsage(prompt_tokens=1_000_000, completion_tokens=1_000_000)
        assert calculate_provider_cost(model, usage) == Decimal("40")

    def test_small_request_keeps_fractions_of_a_cent(self):
        model = get_model("gpt-4o-mini")
        usage = TokenUsage(prompt_tokens=3, completion_tokens=6)
        # 3 * 0.15 / 1e6 + 6 * 0.60 / 1e6
        assert calculate_provider_cost(model, usage) == Decimal("0.00000405")

    def test_zero_tokens(self):
        model = get_model("claude-3-opus")
        assert calculate_provider_cost(model, TokenUsage(0, 0)) == Decimal("0")


class TestBilledCost:
    """Test markup application."""

    def test_twenty_percent_markup(self):
        billed = compute_billed_cost(Decimal("0.01"), Decimal("20"))
        assert billed.provider_cost == Decimal("0.01")
        assert billed.markup_amount == Decimal("0.002")
        assert billed.billed_cost == Decimal("0.012")

    def test_zero_markup(self):
        billed = compute_billed_cost(Decimal("1.5"), 0)
        assert billed.markup_amount == Decimal("0")
        assert billed.billed_cost == Decimal("1.5")

    def test_zero_cost(self):
        billed = compute_billed_cost(0, 20)
        assert billed.billed_cost == Decimal("0")

    @pytest.mark.parametrize("cost,markup", [
        ("0.000001", "20"),
        ("3.333333", "12.5"),
        ("100", "0"),
        ("0.07", "250"),
    ])
    def test_billed_is_cost_plus_markup(self, cost, markup):
        provider_cost = Decimal(cost)
        percent = Decimal(markup)
        billed = compute_billed_cost(provider_cost, percent)
        assert billed.billed_cost == provider_cost + provider_cost * percent / 100
        assert billed.billed_cost >= provider_cost

    def test_float_inputs_do_not_leak_binary_error(self):
        billed = compute_billed_cost(0.1, 20)
        assert billed.billed_cost == Decimal("0.12")

    def test_negative_cost_rejected(self):
        with pytest.raises(ValueError):
            compute_billed_cost(Decimal("-1"), 20)

    def test_negative_markup_rejected(self):
        with pytest.raises(ValueError):
            compute_billed_cost(Decimal("1"), -5)


class TestTokenEstimation:
    """Test character-based token estimation."""

    def test_input_tokens_round_up(self):
        assert estimate_input_tokens("abcd") == 1
        assert estimate_input_tokens("abcde") == 2

    def test_output_is_twice_input_estimate(self):
        assert estimate_output_tokens("abcd") == 2
        assert estimate_output_tokens("abcde") == 3

    def test_empty_prompt(self):
        usage = estimate_usage("")
        assert usage.prompt_tokens == 0
        assert usage.completion_tokens == 0

    def test_usage_total(self):
        usage = estimate_usage("x" * 40)
        assert usage.prompt_tokens == 10
        assert usage.completion_tokens == 20
        assert usage.total_tokens == 30

    def test_negative_tokens_rejected(self):
        with pytest.raises(ValueError):
            TokenUsage(prompt_tokens=-1, completion_tokens=0)
