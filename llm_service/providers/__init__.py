"""Provider adapters.

Adapters are selected by an explicit match over :class:`Vendor`; a vendor
without a branch here is unsupported.
"""

from ..core.errors import UnsupportedProviderError
from ..core.protocols import ProviderAdapter
from ..core.vendors import Vendor
from .anthropic import AnthropicAdapter
from .base import TaskStreamHandle
from .openai import OpenAIAdapter, OpenAICompatibleAdapter


def default_adapter(vendor: Vendor) -> ProviderAdapter:
    """Return the SDK-backed adapter for *vendor*.

    Raises:
        UnsupportedProviderError: If no adapter exists for *vendor*.
    """
    if vendor is Vendor.ANTHROPIC:
        return AnthropicAdapter()
    elif vendor is Vendor.OPENAI:
        return OpenAIAdapter()
    elif vendor in (Vendor.GEMINI, Vendor.FIREWORKS, Vendor.XAI, Vendor.OPENROUTER):
        return OpenAICompatibleAdapter(vendor)
    raise UnsupportedProviderError(vendor.value)


__all__ = [
    'AnthropicAdapter',
    'OpenAIAdapter',
    'OpenAICompatibleAdapter',
    'TaskStreamHandle',
    'default_adapter',
]
