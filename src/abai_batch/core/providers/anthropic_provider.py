# -*- coding: utf-8 -*-

import json

import anthropic

from .base import (
    AuthError,
    CompletionRequest,
    InvalidRequestError,
    ProviderAdapter,
    ProviderKind,
    ProviderServerError,
    RateLimitError,
    RawCompletion,
    TransientNetworkError,
    status_code_error,
)


# Older Claude 3 models reject larger output token limits
OUTPUT_TOKEN_CAPS = [
    (('claude-3-5-sonnet', 'claude-3-5-haiku'), 8192),
    (('claude-3-',), 4096),
]

JSON_INSTRUCTION = "Respond only with a single valid JSON value and no surrounding text."


def cap_output_tokens(model: str, max_tokens: int) -> int:
    for fragments, cap in OUTPUT_TOKEN_CAPS:
        if any(fragment in model for fragment in fragments):
            return min(max_tokens, cap)
    return max_tokens


def build_system_blocks(request: CompletionRequest) -> list:
    """
    Build the `system` content blocks of a messages call.

    Claude has no JSON response mode, so JSON mode and JSON schemas are
    requested through the system prompt. When prompt caching is enabled the
    last system block is marked with `cache_control`.
    """
    parts = []
    if request.system_prompt:
        parts.append(request.system_prompt)
    if request.json_schema:
        parts.append(f"{JSON_INSTRUCTION} The JSON must conform to this schema:\n"
                     f"{json.dumps(request.json_schema)}")
    elif request.json_mode:
        parts.append(JSON_INSTRUCTION)
    if not parts:
        return []

    block = {"type": "text", "text": "\n\n".join(parts)}
    if request.cache.enabled:
        cache_control = {"type": "ephemeral"}
        if request.cache.ttl == '1h':
            cache_control["ttl"] = "1h"
        block["cache_control"] = cache_control
    return [block]


class AnthropicAdapter(ProviderAdapter):
    """Adapter for the Anthropic messages API."""
    kind = ProviderKind.ANTHROPIC
    default_model = "claude-3-5-sonnet-20241022"

    def _create_client(self):
        return anthropic.AsyncAnthropic(api_key=self.api_key, max_retries=0)

    async def _send(self, model: str, request: CompletionRequest) -> RawCompletion:
        params = {
            "model": model,
            "messages": [{"role": "user", "content": request.prompt}],
            "max_tokens": cap_output_tokens(model, request.max_output_tokens or self.max_output_tokens),
        }
        system = build_system_blocks(request)
        if system:
            params["system"] = system
        if request.temperature is not None:
            # Claude accepts temperatures in 0..1
            params["temperature"] = min(request.temperature, 1.0)

        response = await self.client.messages.create(**params)

        content = "".join(block.text for block in response.content if block.type == "text")
        usage = response.usage
        return RawCompletion(
            content=content,
            tokens_in=usage.input_tokens,
            tokens_out=usage.output_tokens,
            cache_creation_tokens=getattr(usage, "cache_creation_input_tokens", 0) or 0,
            cache_read_tokens=getattr(usage, "cache_read_input_tokens", 0) or 0,
            raw=response.model_dump(),
        )

    def _translate_error(self, exc):
        provider = self.kind.value
        message = str(exc)
        if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
            return AuthError(message, provider=provider)
        if isinstance(exc, anthropic.RateLimitError):
            return RateLimitError(message, provider=provider)
        if isinstance(exc, anthropic.APIConnectionError):
            return TransientNetworkError(message, provider=provider)
        if isinstance(exc, (anthropic.BadRequestError, anthropic.NotFoundError,
                            anthropic.UnprocessableEntityError)):
            return InvalidRequestError(message, provider=provider)
        if isinstance(exc, anthropic.InternalServerError):
            return ProviderServerError(message, provider=provider)
        if isinstance(exc, anthropic.APIStatusError):
            # 529 overloaded and other vendor-specific codes
            return status_code_error(exc.status_code, message, provider)
        return None
