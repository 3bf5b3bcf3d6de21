"""
Provider adapters for the ABAI batch engine.

Every vendor is reached through the same contract:

    response = await adapter.complete(CompletionRequest(model_id, prompt, ...))

which returns a `ProviderResponse` (content, tokens, USD cost, latency) or
raises one of the normalized `ProviderError` kinds. Adapters are selected
by `ProviderKind` through a `ProviderRegistry`; model ids are routed to a
provider by `parse_model_id`.

Example Usage:
    import abai_batch as ab

    pricing = ab.PricingTable.load()
    registry = ab.providers.create_default_registry(pricing)
    kind, model = ab.providers.parse_model_id('claude-3-5-haiku-latest')
    adapter = registry.get(kind)
"""

from .base import (
    AuthError,
    CacheOptions,
    CompletionRequest,
    InvalidRequestError,
    ProviderAdapter,
    ProviderError,
    ProviderKind,
    ProviderResponse,
    ProviderServerError,
    RateLimitError,
    RawCompletion,
    RETRYABLE_ERRORS,
    TransientNetworkError,
)
from .routing import infer_provider, parse_model_id
from .registry import ProviderRegistry, create_default_registry
from .openai_provider import OpenAIAdapter
from .anthropic_provider import AnthropicAdapter
from .gemini_provider import GeminiAdapter
from .grok_provider import GrokAdapter

__all__ = [
    'AuthError',
    'CacheOptions',
    'CompletionRequest',
    'InvalidRequestError',
    'ProviderAdapter',
    'ProviderError',
    'ProviderKind',
    'ProviderResponse',
    'ProviderServerError',
    'RateLimitError',
    'RawCompletion',
    'RETRYABLE_ERRORS',
    'TransientNetworkError',
    'infer_provider',
    'parse_model_id',
    'ProviderRegistry',
    'create_default_registry',
    'OpenAIAdapter',
    'AnthropicAdapter',
    'GeminiAdapter',
    'GrokAdapter',
]
