import pytest

from meterproxy.billing.cost import COST_RATES, DEFAULT_RATE, compute_cost, is_premium_model


class TestComputeCost:
    def test_known_model_rates(self):
        assert compute_cost("claude-opus-4-6", 1_000_000, 0) == 15.0
        assert compute_cost("claude-opus-4-6", 0, 1_000_000) == 75.0
        assert compute_cost("claude-sonnet-4-5-20250929", 1_000_000, 1_000_000) == 18.0

    def test_unknown_model_uses_default_rate(self):
        cost = compute_cost("some-future-model", 1_000_000, 1_000_000)
        assert cost == DEFAULT_RATE["input"] + DEFAULT_RATE["output"]

    def test_zero_tokens_cost_nothing(self):
        assert compute_cost("claude-opus-4-6", 0, 0) == 0.0

    @pytest.mark.parametrize("model", [*COST_RATES, "unknown"])
    def test_non_negative_and_non_decreasing(self, model):
        counts = [0, 1, 10, 999, 50_000, 1_000_000]
        for i, tokens in enumerate(counts):
            assert compute_cost(model, tokens, 0) >= 0
            assert compute_cost(model, 0, tokens) >= 0
            if i:
                assert compute_cost(model, tokens, 100) >= compute_cost(model, counts[i - 1], 100)
                assert compute_cost(model, 100, tokens) >= compute_cost(model, 100, counts[i - 1])

    def test_custom_rate_table(self):
        rates = {"cheap": {"input": 1.0, "output": 2.0}}
        assert compute_cost("cheap", 2_000_000, 1_000_000, rates=rates) == 4.0


class TestPremiumModels:
    def test_opus_family_is_premium(self):
        assert is_premium_model("claude-opus-4-6")
        assert is_premium_model("claude-opus-4-1-20250805")

    def test_other_models_are_not_premium(self):
        assert not is_premium_model("claude-sonnet-4-5-20250929")
        assert not is_premium_model("claude-haiku-4-5")
        assert not is_premium_model("")
        assert not is_premium_model(None)
