"""OpenAI and OpenAI-compatible provider implementations."""

from .client import (
    BASE_URLS,
    OpenAIAdapter,
    OpenAICompatibleAdapter,
    build_response_format,
    convert_usage,
    safe_tool_names,
)

__all__ = [
    'OpenAIAdapter',
    'OpenAICompatibleAdapter',
    'BASE_URLS',
    'build_response_format',
    'convert_usage',
    'safe_tool_names',
]
