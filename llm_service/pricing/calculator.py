"""Cost calculation from token usage and model pricing data.

Loads default pricing from the bundled CSV. Prices are USD per million
tokens. Cached tokens are a subset of input tokens: they are billed at the
cached rate and the remaining input tokens at the normal input rate.
"""

import csv
import os
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Optional

from ..core.usage import UsageStats
from ..logging import get_logger

logger = get_logger(__name__)

TOKENS_PER_MILLION = 1_000_000


@dataclass
class ModelPricing:
    """Pricing for a single provider model."""
    provider: str
    model_id: str
    input_per_mtok: float
    output_per_mtok: float
    cached_input_per_mtok: Optional[float] = None


@dataclass
class CostBreakdown:
    """Cost of one usage record or turn."""
    input_cost: float = 0.0
    cached_input_cost: float = 0.0
    output_cost: float = 0.0
    total_cost: float = 0.0

    input_tokens: int = 0
    cached_tokens: int = 0
    output_tokens: int = 0

    provider: str = ""
    model_id: str = ""
    currency: str = "USD"

    def to_dict(self) -> dict[str, Any]:
        """Convert to plain dict for serialization."""
        return asdict(self)


def _parse_rate(value: Optional[str]) -> Optional[float]:
    if value is None or not str(value).strip():
        return None
    return float(value)


def read_pricing_csv(path: str) -> list[ModelPricing]:
    """Read ``provider,model_id,input_per_mtok,output_per_mtok,cached_input_per_mtok`` rows."""
    rows: list[ModelPricing] = []
    with open(path, "r", newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            rows.append(ModelPricing(
                provider=row["provider"].strip(),
                model_id=row["model_id"].strip(),
                input_per_mtok=float(row["input_per_mtok"]),
                output_per_mtok=float(row["output_per_mtok"]),
                cached_input_per_mtok=_parse_rate(row.get("cached_input_per_mtok")),
            ))
    return rows


class PricingTable:
    """Lookup of :class:`ModelPricing` by provider and model.

    Example:
        >>> table = PricingTable([ModelPricing("openai", "gpt-5", 1.25, 10.0)])
        >>> table.resolve("openai", "gpt-5-2025-08-07").model_id
        'gpt-5'
    """

    def __init__(self, entries: Iterable[ModelPricing] = ()):
        self._entries: dict[tuple[str, str], ModelPricing] = {}
        for entry in entries:
            self.add(entry)

    @classmethod
    def from_csv(cls, path: str) -> "PricingTable":
        return cls(read_pricing_csv(path))

    def add(self, entry: ModelPricing) -> None:
        self._entries[(entry.provider, entry.model_id)] = entry

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> list[ModelPricing]:
        return list(self._entries.values())

    def resolve(self, provider: str, model: str) -> Optional[ModelPricing]:
        """Exact match first, then the longest model id contained in *model*.

        Matching stays within *provider*, so dated or prefixed names like
        ``claude-sonnet-4-5-20250929`` resolve to their base entry.
        """
        exact = self._entries.get((provider, model))
        if exact is not None:
            return exact
        candidates = [e for (p, _), e in self._entries.items() if p == provider]
        for entry in sorted(candidates, key=lambda e: len(e.model_id), reverse=True):
            if entry.model_id in model:
                return entry
        return None


_pricing_cache: Optional[PricingTable] = None


def load_pricing() -> PricingTable:
    """Load the bundled pricing table (cached after first load)."""
    global _pricing_cache
    if _pricing_cache is not None:
        return _pricing_cache
    csv_path = os.path.join(os.path.dirname(__file__), "models.csv")
    _pricing_cache = PricingTable.from_csv(csv_path)
    return _pricing_cache


def resolve_model_pricing(provider: str, model: str, table: Optional[PricingTable] = None) -> Optional[ModelPricing]:
    """Resolve *model* against *table* (defaults to the bundled table)."""
    pricing = (table or load_pricing()).resolve(provider, model)
    if pricing is None:
        logger.debug("Unknown model for cost calculation", provider=provider, model=model)
    return pricing


def calculate_cost(usage: UsageStats, pricing: ModelPricing) -> CostBreakdown:
    """Price one usage record.

    Without a cached rate, cached tokens are billed at the input rate.
    """
    input_tokens = max(0, usage.input_tokens or 0)
    cached = min(max(0, usage.cached_tokens or 0), input_tokens)
    output_tokens = max(0, usage.output_tokens or 0)
    uncached = input_tokens - cached

    cached_rate = pricing.cached_input_per_mtok
    if cached_rate is None:
        cached_rate = pricing.input_per_mtok

    input_cost = uncached / TOKENS_PER_MILLION * pricing.input_per_mtok
    cached_cost = cached / TOKENS_PER_MILLION * cached_rate
    output_cost = output_tokens / TOKENS_PER_MILLION * pricing.output_per_mtok

    return CostBreakdown(
        input_cost=round(input_cost, 6),
        cached_input_cost=round(cached_cost, 6),
        output_cost=round(output_cost, 6),
        total_cost=round(input_cost + cached_cost + output_cost, 6),
        input_tokens=input_tokens,
        cached_tokens=cached,
        output_tokens=output_tokens,
        provider=pricing.provider,
        model_id=pricing.model_id,
    )
