"""Sampling parameter resolution and model capability detection.

The capability checks are pure regular-expression policies over model ids,
so they can be tested without touching any vendor API.
"""

from __future__ import annotations

import os
import re
from typing import TYPE_CHECKING, Any, Optional

import yaml

from ..logging import get_logger
from .types import ModelOverrides, SamplingParams
from .vendors import Vendor, capabilities_for

if TYPE_CHECKING:
    from ..context import ConversationContext

logger = get_logger(__name__)

DEFAULT_THINKING_BUDGET = 2048

REASONING_EFFORTS = ("low", "medium", "high")

# ── Capability patterns ─────────────────────────────────────────────────

THINKING_MODEL_PATTERNS: dict[str, tuple[re.Pattern, ...]] = {
    "anthropic": tuple(
        re.compile(p, re.IGNORECASE)
        for p in (
            r"claude-4",
            r"claude-opus-4",
            r"claude-sonnet-4",
            r"claude-haiku-4",
            r"claude-3-7-sonnet",
            r"claude-3\.7",
            r"claude-3-5-sonnet",
            r"claude-3\.5-sonnet",
        )
    ),
    "gemini": (re.compile(r"gemini.*?(2\.5|(?:^|-)3[-.])", re.IGNORECASE),),
}

_GEMINI_VERSION = re.compile(r"(2\.5|(?:^|-)3[-.])", re.IGNORECASE)
_GEMINI_PERSISTENCE = re.compile(r"gemini.*?(2\.5|(?:^|-)3\.)", re.IGNORECASE)
_OPENAI_REASONING = re.compile(r"^o[135](-|$)|^gpt-5", re.IGNORECASE)
_FIREWORKS_MODEL = re.compile(r"^accounts/fireworks", re.IGNORECASE)
_OPENROUTER_PREFIX = re.compile(r"^openrouter/", re.IGNORECASE)


def _is_openrouter(model: str) -> bool:
    lower = model.lower()
    return lower.startswith("openrouter/") or "openrouter" in lower


def _is_claude_thinking(model: str) -> bool:
    return any(p.search(model) for p in THINKING_MODEL_PATTERNS["anthropic"])


def _is_gemini_thinking(model: str) -> bool:
    return any(p.search(model) for p in THINKING_MODEL_PATTERNS["gemini"])


def supports_extended_thinking(model: Optional[str]) -> bool:
    """True for Claude 3.5 Sonnet+/3.7+/4.x and Gemini 2.5+/3.x models."""
    if not model:
        return False
    openrouter = _is_openrouter(model)
    clean = _OPENROUTER_PREFIX.sub("", model) if openrouter else model
    if _is_gemini_thinking(clean) or (openrouter and _GEMINI_VERSION.search(clean)):
        return True
    return _is_claude_thinking(clean)


def supports_reasoning_effort(model: Optional[str]) -> bool:
    """True when the model accepts a low/medium/high reasoning effort."""
    if not model:
        return False
    return bool(
        _OPENAI_REASONING.search(model)
        or _is_claude_thinking(model)
        or _is_gemini_thinking(model)
        or _FIREWORKS_MODEL.search(model)
        or _is_openrouter(model)
    )


def supports_reasoning_persistence(provider: Optional[str], model: Optional[str]) -> bool:
    """True when prior reasoning should be sent back to the vendor on later turns."""
    if not provider or not model:
        return False
    if provider == "openai":
        return bool(_OPENAI_REASONING.search(model))
    if provider == "anthropic":
        return _is_claude_thinking(model)
    if provider == "gemini":
        return bool(_GEMINI_PERSISTENCE.search(model))
    return provider in ("fireworks", "openrouter")


_PREFIX_PROVIDERS = {
    "openrouter": "openrouter",
    "openai": "openai",
    "anthropic": "anthropic",
    "gemini": "gemini",
    "google": "gemini",
    "fireworks": "fireworks",
    "xai": "xai",
}

_MODEL_PROVIDER_PATTERNS = (
    (re.compile(r"^(gpt-|o[135]|chatgpt|text-|dall-e|whisper|tts)", re.IGNORECASE), "openai"),
    (re.compile(r"^claude", re.IGNORECASE), "anthropic"),
    (re.compile(r"^gemini", re.IGNORECASE), "gemini"),
    (re.compile(r"^grok", re.IGNORECASE), "xai"),
    (_FIREWORKS_MODEL, "fireworks"),
)


def provider_from_model(model: Optional[str]) -> str:
    """Guess the provider id from a model id; ``"unknown"`` if nothing matches.

    An explicit ``provider:model`` prefix wins over name patterns.
    """
    if not model:
        return "unknown"
    lower = model.lower().strip()
    if ":" in lower:
        prefix = lower.split(":", 1)[0].strip()
        if prefix in _PREFIX_PROVIDERS:
            return _PREFIX_PROVIDERS[prefix]
    if _is_openrouter(lower):
        return "openrouter"
    for pattern, provider in _MODEL_PROVIDER_PATTERNS:
        if pattern.search(model):
            return provider
    return "unknown"


# ── Bundled model defaults ──────────────────────────────────────────────

_defaults_cache: dict[str, dict[str, dict[str, Any]]] | None = None


def load_model_defaults() -> dict[str, dict[str, dict[str, Any]]]:
    """Load the bundled ``model_defaults.yaml`` (cached after first load)."""
    global _defaults_cache
    if _defaults_cache is not None:
        return _defaults_cache

    path = os.path.join(os.path.dirname(__file__), "model_defaults.yaml")
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    _defaults_cache = {
        str(provider): {str(model): dict(settings or {}) for model, settings in (models or {}).items()}
        for provider, models in data.items()
    }
    return _defaults_cache


def get_model_defaults(provider: str, model: str) -> ModelOverrides:
    settings = load_model_defaults().get(provider, {}).get(model)
    return ModelOverrides.from_dict(settings) if settings else ModelOverrides()


# ── Resolver ────────────────────────────────────────────────────────────

def resolve_sampling(
    provider: str,
    model: str,
    context: Optional["ConversationContext"] = None,
    request_reasoning_effort: Optional[str] = None,
    defaults: Optional[ModelOverrides] = None,
) -> SamplingParams:
    """Merge request, per-model, context and bundled defaults.

    Precedence for reasoning effort is request, per-model override, context,
    bundled defaults. Temperature from a per-model override is used
    verbatim; the context's normalised 0-1 temperature is clamped or scaled
    by the vendor's ``temperature_scale``.

    Args:
        provider: Resolved provider id.
        model: Resolved model id.
        context: Conversation context carrying overrides and defaults.
        request_reasoning_effort: Per-call reasoning effort.
        defaults: Bundled defaults; loaded from YAML when omitted.
    """
    if defaults is None:
        defaults = get_model_defaults(provider, model)
    override = context.override_for(model) if context is not None else None
    override = override or ModelOverrides()

    ctx_temperature = getattr(context, "temperature", None)
    if override.temperature is not None:
        temperature = override.temperature
    elif isinstance(ctx_temperature, (int, float)):
        scale = capabilities_for(Vendor.parse(provider), model).temperature_scale
        if scale == 1.0:
            temperature = max(0, min(ctx_temperature, 1))
        else:
            temperature = ctx_temperature * scale
    else:
        temperature = defaults.temperature

    reasoning_effort = (
        request_reasoning_effort
        or override.reasoning_effort
        or getattr(context, "reasoning_effort", None)
        or defaults.reasoning_effort
    )

    thinking_capable = supports_extended_thinking(model)

    # First explicit True/False wins; thinking-capable models opt in otherwise
    include_default = getattr(context, "include_thoughts", None)
    if override.include_thoughts is not None:
        include_thoughts = bool(override.include_thoughts)
    elif include_default is not None:
        include_thoughts = bool(include_default)
    elif defaults.include_thoughts is not None:
        include_thoughts = bool(defaults.include_thoughts)
    else:
        include_thoughts = thinking_capable

    ctx_budget = getattr(context, "thinking_budget", None)
    if isinstance(override.thinking_budget, int):
        thinking_budget: Optional[int] = override.thinking_budget
    elif isinstance(ctx_budget, int):
        thinking_budget = ctx_budget
    elif isinstance(defaults.thinking_budget, int):
        thinking_budget = defaults.thinking_budget
    elif include_thoughts and thinking_capable:
        thinking_budget = DEFAULT_THINKING_BUDGET
    else:
        thinking_budget = None

    params = SamplingParams(
        temperature=temperature,
        reasoning_effort=reasoning_effort,
        include_thoughts=include_thoughts,
        thinking_budget=thinking_budget,
    )
    logger.debug("Resolved sampling", provider=provider, model=model, thinking_capable=thinking_capable, **vars(params))
    return params
