# -*- coding: utf-8 -*-

import httpx
from google import genai
from google.genai import errors

from .base import (
    CompletionRequest,
    ProviderAdapter,
    ProviderKind,
    RawCompletion,
    TransientNetworkError,
    status_code_error,
)


class GeminiAdapter(ProviderAdapter):
    """Adapter for Google Gemini through the google-genai SDK."""
    kind = ProviderKind.GEMINI
    default_model = "gemini-2.0-flash"

    def _create_client(self):
        return genai.Client(api_key=self.api_key)

    def build_config(self, request: CompletionRequest) -> dict:
        config = {"max_output_tokens": request.max_output_tokens or self.max_output_tokens}
        if request.system_prompt:
            config["system_instruction"] = request.system_prompt
        if request.temperature is not None:
            config["temperature"] = request.temperature
        if request.json_schema:
            config["response_mime_type"] = "application/json"
            config["response_json_schema"] = request.json_schema
        elif request.json_mode:
            config["response_mime_type"] = "application/json"
        return config

    async def _send(self, model: str, request: CompletionRequest) -> RawCompletion:
        response = await self.client.aio.models.generate_content(
            model=model,
            contents=request.prompt,
            config=self.build_config(request),
        )

        tokens_in = tokens_out = None
        cache_read = 0
        usage = response.usage_metadata
        if usage is not None:
            cache_read = usage.cached_content_token_count or 0
            if usage.prompt_token_count is not None:
                tokens_in = usage.prompt_token_count - cache_read
            tokens_out = usage.candidates_token_count

        return RawCompletion(
            content=response.text or "",
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cache_read_tokens=cache_read,
            raw=response.model_dump(mode="json", exclude_none=True),
        )

    def _translate_error(self, exc):
        if isinstance(exc, errors.APIError):
            return status_code_error(exc.code, str(exc), self.kind.value)
        if isinstance(exc, httpx.TransportError):
            return TransientNetworkError(str(exc), provider=self.kind.value)
        return None
