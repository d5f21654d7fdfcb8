"""The closed set of supported vendors and their capability flags."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import UnknownProviderError


class WireShape(str, Enum):
    """How a vendor expects the conversation on the wire."""
    ROLE_ARRAY = "role_array"            # [{"role": "system"|"user"|"assistant", ...}]
    SYSTEM_MESSAGES = "system_messages"  # system blocks held apart from user/assistant messages


class Vendor(str, Enum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GEMINI = "gemini"
    FIREWORKS = "fireworks"
    XAI = "xai"
    OPENROUTER = "openrouter"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Vendor":
        """Return the vendor for *value* (case-insensitive).

        Raises:
            UnknownProviderError: for an empty or unrecognised id.
        """
        if isinstance(value, Vendor):
            return value
        if not value:
            raise UnknownProviderError(None)
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise UnknownProviderError(value) from None


_ANTHROPIC_ROUTED = re.compile(r"claude|anthropic", re.IGNORECASE)


@dataclass(frozen=True)
class VendorCapabilities:
    """Per-vendor behaviour switches.

    Attributes:
        wire_shape: Message layout the vendor expects.
        dedupe_stream_text: Apply overlap suppression to streamed text.
            Vendors known to send clean deltas get verbatim appends.
        embeds_reasoning: Re-send prior assistant reasoning inline as
            ``<think>...</think>``.
        temperature_scale: Multiplier from the normalised 0-1 temperature
            to the vendor's native range. 1.0 means clamp to [0, 1].
    """
    wire_shape: WireShape
    dedupe_stream_text: bool
    embeds_reasoning: bool
    temperature_scale: float


def capabilities_for(vendor: Vendor, model: Optional[str] = None) -> VendorCapabilities:
    if vendor is Vendor.ANTHROPIC:
        return VendorCapabilities(WireShape.SYSTEM_MESSAGES, False, False, 1.0)
    elif vendor is Vendor.OPENAI:
        return VendorCapabilities(WireShape.ROLE_ARRAY, False, False, 2.0)
    elif vendor is Vendor.XAI:
        return VendorCapabilities(WireShape.ROLE_ARRAY, False, False, 2.0)
    elif vendor is Vendor.GEMINI:
        return VendorCapabilities(WireShape.ROLE_ARRAY, True, False, 2.0)
    elif vendor is Vendor.FIREWORKS:
        return VendorCapabilities(WireShape.ROLE_ARRAY, True, True, 2.0)
    elif vendor is Vendor.OPENROUTER:
        shape = WireShape.SYSTEM_MESSAGES if model and _ANTHROPIC_ROUTED.search(model) else WireShape.ROLE_ARRAY
        return VendorCapabilities(shape, True, False, 1.0)
    raise UnknownProviderError(str(vendor))
