# -*- coding: utf-8 -*-

"""
Common provider contract: normalized completion requests and responses,
the provider error taxonomy, and the adapter base class every vendor
adapter implements.
"""

import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Optional

from ..batching.pricing import PricingTable, count_tokens


class ProviderKind(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    GROK = "grok"


#=============================================================================
# Error taxonomy
#=============================================================================

class ProviderError(Exception):
    """Base class for normalized provider failures."""
    retryable = False

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class AuthError(ProviderError):
    """Missing or invalid API key."""
    retryable = False


class InvalidRequestError(ProviderError):
    """Request rejected as malformed (bad schema, unknown model, ...)."""
    retryable = False


class RateLimitError(ProviderError):
    retryable = True


class TransientNetworkError(ProviderError):
    """Connection failures and timeouts."""
    retryable = True


class ProviderServerError(ProviderError):
    retryable = True


RETRYABLE_ERRORS = (RateLimitError, TransientNetworkError, ProviderServerError)


#=============================================================================
# Request / response
#=============================================================================

@dataclass
class CacheOptions:
    enabled: bool = False
    ttl: Literal['5m', '1h'] = '5m'

    def __post_init__(self):
        if self.ttl not in ('5m', '1h'):
            raise ValueError(f"Invalid cache TTL '{self.ttl}'. Expected '5m' or '1h'.")


@dataclass
class CompletionRequest:
    model_id: str
    prompt: str
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    json_mode: bool = False
    json_schema: Optional[dict] = None
    cache: CacheOptions = field(default_factory=CacheOptions)
    max_output_tokens: Optional[int] = None


@dataclass
class ProviderResponse:
    content: str
    tokens_in: int
    tokens_out: int
    cost_usd: float
    latency_ms: int
    raw: Any = None
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0


@dataclass
class RawCompletion:
    """What a vendor call returns before normalization."""
    content: str
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    raw: Any = None


#=============================================================================
# Adapter base
#=============================================================================

class ProviderAdapter:
    """
    Base class for vendor adapters.

    Subclasses implement `_send` (the vendor wire call, returning a
    `RawCompletion`) and `_translate_error` (vendor exception to
    `ProviderError`). `complete` takes care of timing, token fallback
    estimation and cost accounting. Adapters hold no per-call state and
    are safe to share between concurrent tasks.
    """
    kind: ProviderKind
    default_model: str = ""

    def __init__(self, pricing: PricingTable, api_key: Optional[str] = None,
                 max_output_tokens: int = 4096):
        self.pricing = pricing
        self.api_key = api_key
        self.max_output_tokens = max_output_tokens
        self._client = None

    @property
    def client(self):
        if not self.api_key:
            raise AuthError(
                f"Missing API key for provider: {self.kind.value}. "
                "Please configure the API key in your environment or .env file.",
                provider=self.kind.value
            )
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def _create_client(self):
        # Created lazily on first access to `client`.
        raise NotImplementedError

    async def _send(self, model: str, request: CompletionRequest) -> RawCompletion:
        raise NotImplementedError

    def _translate_error(self, exc: Exception) -> Optional[ProviderError]:
        """Return the normalized error for a vendor exception, or None if unknown."""
        return None

    def model_name(self, model_id: str) -> str:
        """
        Strip the provider prefix from a model id, with the same rules as
        `parse_model_id`. Ids routed to another provider are kept as they are.
        """
        from .routing import parse_model_id

        model_id = (model_id or '').strip()
        if not model_id:
            return self.default_model
        kind, name = parse_model_id(model_id)
        return name if kind is self.kind else model_id

    async def complete(self, request: CompletionRequest) -> ProviderResponse:
        """
        Send one completion request and normalize the result.

        Args:
            request (CompletionRequest): Normalized request.

        Returns:
            ProviderResponse: Content, token usage, USD cost and latency.

        Raises:
            ProviderError: One of the normalized error kinds.
        """
        model = self.model_name(request.model_id)

        start = time.perf_counter()
        try:
            completion = await self._send(model, request)
        except ProviderError:
            raise
        except Exception as e:
            error = self._translate_error(e)
            if error is None:
                raise
            raise error from e
        latency_ms = int((time.perf_counter() - start) * 1000)

        tokens_in = completion.tokens_in
        if tokens_in is None:
            prompt_text = "\n".join(filter(None, [request.system_prompt, request.prompt]))
            tokens_in = count_tokens(prompt_text, self.kind.value, model)
        tokens_out = completion.tokens_out
        if tokens_out is None:
            tokens_out = count_tokens(completion.content, self.kind.value, model)

        cost = self.pricing.cost(
            model_id=f"{self.kind.value}/{model}",
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cache_creation_tokens=completion.cache_creation_tokens,
            cache_read_tokens=completion.cache_read_tokens,
            cache_ttl=request.cache.ttl,
        )
        logging.debug(f"{self.kind.value}/{model}: {tokens_in} in, {tokens_out} out, "
                      f"${cost:.6f}, {latency_ms} ms")

        return ProviderResponse(
            content=completion.content,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost_usd=cost,
            latency_ms=latency_ms,
            raw=completion.raw,
            cache_creation_tokens=completion.cache_creation_tokens,
            cache_read_tokens=completion.cache_read_tokens,
        )


def status_code_error(status_code: Optional[int], message: str, provider: str) -> ProviderError:
    """Map an HTTP status code to the normalized error taxonomy."""
    if status_code in (401, 403):
        return AuthError(message, provider=provider)
    if status_code == 429:
        return RateLimitError(message, provider=provider)
    if status_code in (408, 409):
        return TransientNetworkError(message, provider=provider)
    if status_code is not None and status_code >= 500:
        return ProviderServerError(message, provider=provider)
    return InvalidRequestError(message, provider=provider)
