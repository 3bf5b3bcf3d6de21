# -*- coding: utf-8 -*-

"""
Lookup table from `ProviderKind` to adapter instance.
"""

import logging
from typing import Dict, Optional

from ..batching.pricing import PricingTable
from ..utils.clients import get_api_key
from .anthropic_provider import AnthropicAdapter
from .base import ProviderAdapter, ProviderKind
from .gemini_provider import GeminiAdapter
from .grok_provider import GrokAdapter
from .openai_provider import OpenAIAdapter


ADAPTER_CLASSES = {
    ProviderKind.OPENAI: OpenAIAdapter,
    ProviderKind.ANTHROPIC: AnthropicAdapter,
    ProviderKind.GEMINI: GeminiAdapter,
    ProviderKind.GROK: GrokAdapter,
}


class ProviderRegistry:
    """Maps each provider kind to the adapter that serves it."""

    def __init__(self, adapters: Optional[Dict[ProviderKind, ProviderAdapter]] = None):
        self._adapters = dict(adapters or {})

    def register(self, kind: ProviderKind, adapter: ProviderAdapter):
        self._adapters[ProviderKind(kind)] = adapter

    def get(self, kind: ProviderKind) -> ProviderAdapter:
        """
        Get the adapter of a provider.

        Raises:
            KeyError: If no adapter is registered for `kind`.
        """
        try:
            return self._adapters[ProviderKind(kind)]
        except KeyError:
            raise KeyError(f"No adapter registered for provider: {kind}") from None

    def __contains__(self, kind):
        return ProviderKind(kind) in self._adapters

    def kinds(self):
        return list(self._adapters)


def create_default_registry(
        pricing: PricingTable,
        api_keys: Optional[Dict[str, str]] = None,
        max_output_tokens: int = 4096
    ) -> ProviderRegistry:
    """
    Build a registry with one adapter per supported provider.

    Args:
        pricing (PricingTable): Pricing table shared by every adapter.
        api_keys (dict | None): Explicit keys by provider name. Providers
            without an explicit key read it from the environment. Adapters
            without any key are still registered; their calls fail with
            `AuthError`.
        max_output_tokens (int): Default output token cap.

    Returns:
        ProviderRegistry: The registry.
    """
    api_keys = api_keys or {}
    registry = ProviderRegistry()
    for kind, adapter_cls in ADAPTER_CLASSES.items():
        api_key = api_keys.get(kind.value) or get_api_key(kind.value)
        if api_key is None:
            logging.debug(f"No API key configured for {kind.value}")
        registry.register(kind, adapter_cls(pricing, api_key=api_key, max_output_tokens=max_output_tokens))
    return registry
