"""
Simulated upstream provider.

Produces mock completions priced from the model catalogue and injects
provider-side failures at a configurable rate.
"""

import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from quota_guard.core.pricing import ModelConfig, calculate_provider_cost
from quota_guard.core.token_counter import TokenUsage, estimate_usage

from .errors import OVERLOADED_ERROR, SERVER_ERROR, UNAVAILABLE_ERROR, GatewayError

PROVIDER_ERRORS = {
    "openai": (
        500,
        "The server had an error while processing your request. Sorry about that!",
        SERVER_ERROR,
    ),
    "anthropic": (
        529,
        "Anthropic API is temporarily overloaded. Please try again.",
        OVERLOADED_ERROR,
    ),
    "google": (
        503,
        "The service is currently unavailable.",
        UNAVAILABLE_ERROR,
    ),
}


@dataclass(frozen=True)
class SimulatedCompletion:
    content: str
    usage: TokenUsage
    provider_cost: Decimal
    cache_hit: bool
    latency_ms: int


class ProviderSimulator:
    """Mock provider. Pass a seeded ``random.Random`` for deterministic runs."""

    def __init__(
        self,
        failure_rate: float = 0.01,
        cache_hit_rate: float = 0.01,
        rng: Optional[random.Random] = None,
    ):
        self.failure_rate = failure_rate
        self.cache_hit_rate = cache_hit_rate
        self.rng = rng or random.Random()

    def provider_failure(self, model: ModelConfig) -> Optional[GatewayError]:
        """Roll for a provider-side failure; None when the call goes through."""
        if self.rng.random() >= self.failure_rate:
            return None
        mapped = PROVIDER_ERRORS.get(model.provider_id)
        if mapped is None:
            return None
        status_code, message, error_type = mapped
        return GatewayError(status_code, error_type, message, code=f"{model.provider_id}_error")

    def failure_latency_ms(self) -> int:
        return self.rng.randint(10, 109)

    def complete(self, prompt: str, model: ModelConfig) -> SimulatedCompletion:
        usage = estimate_usage(prompt)
        return SimulatedCompletion(
            content=f"[Mock Response] Input Prompt: {prompt}.",
            usage=usage,
            provider_cost=calculate_provider_cost(model, usage),
            cache_hit=self.rng.random() < self.cache_hit_rate,
            latency_ms=self.rng.randint(50, 449),
        )
