"""Anthropic provider implementation."""

from .client import AnthropicAdapter, convert_usage

__all__ = [
    'AnthropicAdapter',
    'convert_usage',
]
