"""
Pricing calculations and rate management.

Handles provider cost per model and the markup applied when billing.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Union

from .token_counter import TokenUsage

ONE_MILLION = Decimal("1000000")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, str]


@dataclass(frozen=True)
class ModelConfig:
    """Per-token pricing for a specific model, quoted per million tokens."""
    provider_id: str
    model_identifier: str
    name: str
    input_cost_per_million: Decimal
    output_cost_per_million: Decimal


@dataclass(frozen=True)
class BilledCost:
    """Provider cost split into markup and billed amount."""
    provider_cost: Decimal
    markup_amount: Decimal
    billed_cost: Decimal


def _model(provider: str, identifier: str, name: str, input_cost: str, output_cost: str) -> ModelConfig:
    return ModelConfig(
        provider_id=provider,
        model_identifier=identifier,
        name=name,
        input_cost_per_million=Decimal(input_cost),
        output_cost_per_million=Decimal(output_cost),
    )


# Fixed catalogue - no dynamic fetching
MODEL_CATALOG: Dict[str, ModelConfig] = {
    model.model_identifier: model
    for model in (
        _model("openai", "gpt-4-turbo", "GPT-4 Turbo", "10.00", "30.00"),
        _model("openai", "gpt-3.5-turbo", "GPT-3.5 Turbo", "0.50", "1.50"),
        _model("openai", "gpt-4o-mini", "GPT-4o mini", "0.15", "0.60"),
        _model("openai", "o3-mini", "OpenAI o3-mini", "2.00", "6.00"),
        _model("openai", "o3", "OpenAI o3", "12.00", "36.00"),
        _model("openai", "o4-mini", "OpenAI o4-mini", "1.00", "3.00"),
        _model("google", "gemini-1.5-pro", "Gemini 1.5 Pro", "3.50", "10.50"),
        _model("google", "gemini-2.0-flash", "Gemini 2.0 Flash", "0.70", "2.10"),
        _model("google", "gemini-2.5-flash", "Gemini 2.5 Flash", "1.00", "3.00"),
        _model("anthropic", "claude-3-opus", "Claude 3 Opus", "15.00", "75.00"),
        _model("anthropic", "claude-3.5-sonnet", "Claude 3.5 Sonnet", "3.00", "15.00"),
        _model("anthropic", "claude-3.5-haiku", "Claude 3.5 Haiku", "0.25", "1.25"),
        _model("anthropic", "claude-3.7-sonnet", "Claude 3.7 Sonnet", "3.00", "15.00"),
        _model("anthropic", "claude-4-opus", "Claude 4 Opus", "15.00", "75.00"),
        _model("anthropic", "claude-4-sonnet", "Claude 4 Sonnet", "3.00", "15.00"),
    )
}


def get_model(model_id: str) -> Optional[ModelConfig]:
    """Look up a model by identifier; None when it is not in the catalogue."""
    return MODEL_CATALOG.get(model_id)


def calculate_provider_cost(model: ModelConfig, usage: TokenUsage) -> Decimal:
    """Raw upstream cost of a call, unrounded.

    Args:
        model: Model pricing
        usage: Token usage data

    Returns:
        Provider cost in dollars
    """
    input_cost = Decimal(usage.prompt_tokens) * model.input_cost_per_million / ONE_MILLION
    output_cost = Decimal(usage.completion_tokens) * model.output_cost_per_million / ONE_MILLION
    return input_cost + output_cost


def compute_billed_cost(provider_cost: Number, markup_percent: Number) -> BilledCost:
    """Apply the markup to a provider cost.

    ``markup_amount = provider_cost * markup_percent / 100`` and
    ``billed_cost = provider_cost + markup_amount``. Decimal arithmetic keeps
    fractions of a cent exact; no rounding is applied here.

    Args:
        provider_cost: Raw cost charged by the upstream provider
        markup_percent: Markup percentage, e.g. 20 for 20%

    Returns:
        BilledCost with markup and billed amounts

    Raises:
        ValueError: If either input is negative
    """
    cost = Decimal(str(provider_cost))
    percent = Decimal(str(markup_percent))
    if cost < 0:
        raise ValueError("provider_cost must be >= 0")
    if percent < 0:
        raise ValueError("markup_percent must be >= 0")

    markup_amount = cost * percent / HUNDRED
    return BilledCost(
        provider_cost=cost,
        markup_amount=markup_amount,
        billed_cost=cost + markup_amount,
    )
