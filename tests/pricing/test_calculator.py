import pytest

from llm_service.core.usage import UsageStats
from llm_service.pricing import ModelPricing, PricingTable, calculate_cost, load_pricing, resolve_model_pricing


def test_bundled_table_loads() -> None:
    table = load_pricing()
    assert len(table) > 0
    pricing = table.resolve("anthropic", "claude-sonnet-4-5")
    assert pricing is not None
    assert pricing.input_per_mtok == 3.0
    assert pricing.cached_input_per_mtok == 0.3


def test_resolve_prefers_longest_contained_id() -> None:
    table = PricingTable([
        ModelPricing("openai", "gpt-4o", 2.5, 10.0),
        ModelPricing("openai", "gpt-4o-mini", 0.15, 0.6),
    ])
    assert table.resolve("openai", "gpt-4o-mini-2024-07-18").model_id == "gpt-4o-mini"
    assert table.resolve("openai", "gpt-4o-2024-08-06").model_id == "gpt-4o"
    assert table.resolve("anthropic", "gpt-4o") is None


def test_resolve_model_pricing_unknown_model() -> None:
    assert resolve_model_pricing("openai", "totally-new-model", PricingTable()) is None


def test_cost_with_cached_rate() -> None:
    pricing = ModelPricing("anthropic", "claude-sonnet-4-5", 3.0, 15.0, 0.3)
    cost = calculate_cost(UsageStats(input_tokens=1_000_000, output_tokens=500_000, cached_tokens=250_000), pricing)

    assert cost.input_cost == pytest.approx(2.25)
    assert cost.cached_input_cost == pytest.approx(0.075)
    assert cost.output_cost == pytest.approx(7.5)
    assert cost.total_cost == pytest.approx(9.825)
    assert cost.to_dict()["currency"] == "USD"


def test_cost_without_cached_rate_bills_input_rate() -> None:
    pricing = ModelPricing("openai", "gpt-5", 1.25, 10.0)
    cost = calculate_cost(UsageStats(input_tokens=1_000_000, output_tokens=1_000_000, cached_tokens=400_000), pricing)
    assert cost.total_cost == pytest.approx(11.25)


def test_cached_tokens_are_capped_at_input() -> None:
    pricing = ModelPricing("openai", "gpt-5", 1.25, 10.0, 0.125)
    cost = calculate_cost(UsageStats(input_tokens=100, output_tokens=0, cached_tokens=500), pricing)
    assert cost.cached_tokens == 100
    assert cost.input_cost == 0


def test_cost_cached_subset_of_input() -> None:
    pricing = ModelPricing("anthropic", "claude-sonnet-4-5", 3.0, 15.0, 0.3)
    cost = calculate_cost(UsageStats(input_tokens=1_000_000, output_tokens=500_000, cached_tokens=600_000), pricing)
    assert cost.total_cost == pytest.approx(8.88)


def test_cost_without_cache() -> None:
    pricing = ModelPricing("openai", "gpt-5", 1.25, 10.0, 0.125)
    cost = calculate_cost(UsageStats(input_tokens=1_000_000, output_tokens=1_000_000), pricing)
    assert cost.total_cost == pytest.approx(11.25)
