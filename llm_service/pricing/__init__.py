"""Pricing module for per-vendor token cost calculation."""

from .calculator import (
    CostBreakdown,
    ModelPricing,
    PricingTable,
    calculate_cost,
    load_pricing,
    read_pricing_csv,
    resolve_model_pricing,
)

__all__ = [
    "ModelPricing",
    "CostBreakdown",
    "PricingTable",
    "load_pricing",
    "read_pricing_csv",
    "resolve_model_pricing",
    "calculate_cost",
]
