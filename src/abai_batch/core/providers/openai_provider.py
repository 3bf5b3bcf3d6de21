# -*- coding: utf-8 -*-

import openai

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


def is_reasoning_model(model: str) -> bool:
    """o-series models take `max_completion_tokens` and no temperature."""
    return len(model) > 1 and model[0] == 'o' and model[1].isdigit()


def build_chat_params(model: str, request: CompletionRequest, max_output_tokens: int) -> dict:
    """
    Build the parameters of a chat completions call.

    Args:
        model (str): Model name without provider prefix.
        request (CompletionRequest): Normalized request.
        max_output_tokens (int): Default output token cap.

    Returns:
        dict: Keyword arguments for `chat.completions.create`.
    """
    messages = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})
    messages.append({"role": "user", "content": request.prompt})

    params = {"model": model, "messages": messages}
    max_tokens = request.max_output_tokens or max_output_tokens
    if is_reasoning_model(model):
        if max_tokens:
            params["max_completion_tokens"] = max_tokens
    else:
        if max_tokens:
            params["max_tokens"] = max_tokens
        if request.temperature is not None:
            params["temperature"] = request.temperature

    if request.json_schema:
        params["response_format"] = {
            "type": "json_schema",
            "json_schema": {
                "name": request.json_schema.get("title", "response"),
                "schema": request.json_schema,
                "strict": False,
            },
        }
    elif request.json_mode:
        # The API refuses json_object mode unless the word "json" appears in the messages
        if not any("json" in (m["content"] or "").lower() for m in messages):
            raise InvalidRequestError(
                "JSON mode requires the prompt or system prompt to mention JSON",
                provider="openai"
            )
        params["response_format"] = {"type": "json_object"}

    return params


def translate_openai_error(exc: Exception, provider: str):
    """Map openai SDK exceptions (also used for OpenAI-compatible APIs) to provider errors."""
    message = str(exc)
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return AuthError(message, provider=provider)
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(message, provider=provider)
    if isinstance(exc, openai.APIConnectionError):  # includes APITimeoutError
        return TransientNetworkError(message, provider=provider)
    if isinstance(exc, (openai.BadRequestError, openai.NotFoundError,
                        openai.UnprocessableEntityError)):
        return InvalidRequestError(message, provider=provider)
    if isinstance(exc, openai.InternalServerError):
        return ProviderServerError(message, provider=provider)
    if isinstance(exc, openai.APIStatusError):
        return status_code_error(exc.status_code, message, provider)
    return None


class OpenAIAdapter(ProviderAdapter):
    """Adapter for the OpenAI chat completions API."""
    kind = ProviderKind.OPENAI
    default_model = "gpt-4o"
    base_url = None

    def _create_client(self):
        # Retries are owned by the row processor
        return openai.AsyncOpenAI(api_key=self.api_key, base_url=self.base_url, max_retries=0)

    async def _send(self, model: str, request: CompletionRequest) -> RawCompletion:
        params = build_chat_params(model, request, self.max_output_tokens)
        response = await self.client.chat.completions.create(**params)

        content = ""
        if response.choices:
            content = response.choices[0].message.content or ""

        tokens_in = tokens_out = None
        cache_read = 0
        if response.usage is not None:
            tokens_in = response.usage.prompt_tokens
            tokens_out = response.usage.completion_tokens
            details = getattr(response.usage, "prompt_tokens_details", None)
            cache_read = getattr(details, "cached_tokens", 0) or 0
            tokens_in -= cache_read

        return RawCompletion(
            content=content,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cache_read_tokens=cache_read,
            raw=response.model_dump(),
        )

    def _translate_error(self, exc):
        return translate_openai_error(exc, self.kind.value)
