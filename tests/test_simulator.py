"""
Unit tests for the simulated provider and gateway error mapping.
"""

import random
from decimal import Decimal

from quota_guard.core.pricing import get_model
from quota_guard.core.quota import KeyStatus
from quota_guard.gateway.errors import GatewayError, internal_error, quota_rejection
from quota_guard.gateway.simulator import ProviderSimulator


class TestProviderSimulator:
    """Test mock completions and injected failures."""

    def test_completion_is_priced_from_catalogue(self):
        simulator = ProviderSimulator(failure_rate=0, cache_hit_rate=0, rng=random.Random(1))

        completion = simulator.complete("x" * 400, get_model("gpt-3.5-turbo"))

        assert completion.usage.prompt_tokens == 100
        assert completion.usage.completion_tokens == 200
        # 100 * 0.50 / 1e6 + 200 * 1.50 / 1e6
        assert completion.provider_cost == Decimal("0.00035")
        assert completion.cache_hit is False
        assert 50 <= completion.latency_ms < 450

    def test_no_failure_at_zero_rate(self):
        simulator = ProviderSimulator(failure_rate=0, rng=random.Random(1))
        model = get_model("o3")
        assert all(simulator.provider_failure(model) is None for _ in range(100))

    def test_failure_at_full_rate(self):
        simulator = ProviderSimulator(failure_rate=1, rng=random.Random(1))

        error = simulator.provider_failure(get_model("o3"))

        assert error.status_code == 500
        assert error.code == "openai_error"
        assert 10 <= simulator.failure_latency_ms() < 110

    def test_seeded_runs_are_deterministic(self):
        first = ProviderSimulator(0.5, 0.5, random.Random(42))
        second = ProviderSimulator(0.5, 0.5, random.Random(42))
        model = get_model("gpt-4o-mini")

        outcomes = [first.provider_failure(model) is None for _ in range(20)]
        assert outcomes == [second.provider_failure(model) is None for _ in range(20)]


class TestGatewayErrors:
    """Test error payloads and quota mapping."""

    def test_payload_omits_empty_fields(self):
        assert internal_error().to_payload() == {
            "error": {"message": "Internal Server Error", "type": "api_error"}
        }

    def test_payload_with_code_and_details(self):
        error = GatewayError(400, "invalid_request_error", "Bad Request", code="x", details={"a": 1})
        assert error.to_payload()["error"] == {
            "message": "Bad Request", "type": "invalid_request_error", "code": "x", "details": {"a": 1},
        }

    def test_only_limit_pressure_is_429(self):
        assert quota_rejection(KeyStatus.LIMIT_EXCEEDED).status_code == 429
        for status in (KeyStatus.INACTIVE, KeyStatus.EXPIRED, KeyStatus.NOT_FOUND):
            error = quota_rejection(status)
            assert error.status_code == 403
            assert error.error_type == "authentication_error"
