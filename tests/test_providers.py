from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import openai
import pytest
from google.genai import errors as genai_errors

from abai_batch.core.providers.anthropic_provider import (
    JSON_INSTRUCTION,
    AnthropicAdapter,
    build_system_blocks,
    cap_output_tokens,
)
from abai_batch.core.providers.base import (
    AuthError,
    CacheOptions,
    CompletionRequest,
    InvalidRequestError,
    ProviderKind,
    ProviderServerError,
    RateLimitError,
    TransientNetworkError,
    status_code_error,
)
from abai_batch.core.providers.gemini_provider import GeminiAdapter
from abai_batch.core.providers.grok_provider import XAI_BASE_URL, GrokAdapter
from abai_batch.core.providers.openai_provider import OpenAIAdapter, build_chat_params
from abai_batch.core.providers.registry import ProviderRegistry, create_default_registry
from abai_batch.core.providers.routing import infer_provider, parse_model_id


OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"


#=============================================================================
# Routing
#=============================================================================

@pytest.mark.parametrize("model_id, expected", [
    ("openai/gpt-4o", (ProviderKind.OPENAI, "gpt-4o")),
    ("anthropic/claude-3-5-haiku-latest", (ProviderKind.ANTHROPIC, "claude-3-5-haiku-latest")),
    ("GEMINI/gemini-2.0-flash", (ProviderKind.GEMINI, "gemini-2.0-flash")),
    ("grok/grok-3", (ProviderKind.GROK, "grok-3")),
    ("claude-3-haiku-20240307", (ProviderKind.ANTHROPIC, "claude-3-haiku-20240307")),
    ("o3-mini", (ProviderKind.OPENAI, "o3-mini")),
    ("models/gemini-1.5-flash", (ProviderKind.GEMINI, "models/gemini-1.5-flash")),
    ("llama-3-70b", (ProviderKind.OPENAI, "llama-3-70b")),
])
def test_parse_model_id(model_id, expected):
    assert parse_model_id(model_id) == expected


@pytest.mark.parametrize("model_id", ["", "   ", "openai/"])
def test_parse_model_id_rejects_missing_model(model_id):
    with pytest.raises(InvalidRequestError):
        parse_model_id(model_id)


def test_infer_provider_substring_rules():
    assert infer_provider("my-grok-finetune") is ProviderKind.GROK
    assert infer_provider("custom-claude") is ProviderKind.ANTHROPIC


#=============================================================================
# Error taxonomy
#=============================================================================

@pytest.mark.parametrize("status, error_cls", [
    (401, AuthError),
    (403, AuthError),
    (429, RateLimitError),
    (408, TransientNetworkError),
    (500, ProviderServerError),
    (529, ProviderServerError),
    (400, InvalidRequestError),
    (404, InvalidRequestError),
])
def test_status_code_error(status, error_cls):
    error = status_code_error(status, "msg", "openai")
    assert type(error) is error_cls
    assert error.provider == "openai"


def test_retryable_classification_is_fixed_per_kind():
    assert RateLimitError("x").retryable
    assert TransientNetworkError("x").retryable
    assert ProviderServerError("x").retryable
    assert not AuthError("x").retryable
    assert not InvalidRequestError("x").retryable


#=============================================================================
# OpenAI
#=============================================================================

def test_build_chat_params_regular_model():
    request = CompletionRequest(model_id="gpt-4o", prompt="hi", system_prompt="be brief", temperature=0.3)
    params = build_chat_params("gpt-4o", request, 256)
    assert params["messages"] == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hi"},
    ]
    assert params["max_tokens"] == 256
    assert params["temperature"] == 0.3


def test_build_chat_params_reasoning_model_drops_temperature():
    request = CompletionRequest(model_id="o3", prompt="hi", temperature=0.3, max_output_tokens=100)
    params = build_chat_params("o3", request, 256)
    assert params["max_completion_tokens"] == 100
    assert "temperature" not in params
    assert "max_tokens" not in params


def test_build_chat_params_json_schema_and_json_mode():
    schema = {"title": "answer", "type": "object", "properties": {"a": {"type": "string"}}}
    params = build_chat_params("gpt-4o", CompletionRequest(model_id="gpt-4o", prompt="x", json_schema=schema), 10)
    assert params["response_format"]["type"] == "json_schema"
    assert params["response_format"]["json_schema"]["name"] == "answer"

    params = build_chat_params("gpt-4o", CompletionRequest(model_id="gpt-4o", prompt="Reply in JSON", json_mode=True), 10)
    assert params["response_format"] == {"type": "json_object"}

    with pytest.raises(InvalidRequestError):
        build_chat_params("gpt-4o", CompletionRequest(model_id="gpt-4o", prompt="hello", json_mode=True), 10)


def _chat_response(content="hello", prompt_tokens=100, completion_tokens=20, cached=30):
    response = MagicMock()
    response.choices = [SimpleNamespace(message=SimpleNamespace(content=content))]
    response.usage = SimpleNamespace(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        prompt_tokens_details=SimpleNamespace(cached_tokens=cached),
    )
    response.model_dump.return_value = {"id": "chatcmpl-1"}
    return response


def _openai_client(create):
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


@pytest.mark.anyio
async def test_openai_adapter_normalizes_usage_and_cost(pricing):
    adapter = OpenAIAdapter(pricing, api_key="sk-test")
    create = AsyncMock(return_value=_chat_response())
    adapter._client = _openai_client(create)

    response = await adapter.complete(CompletionRequest(model_id="openai/gpt-4o-mini", prompt="hi"))

    assert create.await_args.kwargs["model"] == "gpt-4o-mini"
    assert response.content == "hello"
    assert response.tokens_in == 70
    assert response.tokens_out == 20
    assert response.cache_read_tokens == 30
    assert response.cost_usd == pytest.approx((70 * 1.0 + 20 * 2.0) / 1_000_000)
    assert response.raw == {"id": "chatcmpl-1"}
    assert response.latency_ms >= 0


@pytest.mark.anyio
async def test_openai_adapter_translates_sdk_errors(pricing):
    request = httpx.Request("POST", OPENAI_URL)
    adapter = OpenAIAdapter(pricing, api_key="sk-test")

    adapter._client = _openai_client(AsyncMock(side_effect=openai.RateLimitError(
        "slow down", response=httpx.Response(429, request=request), body=None)))
    with pytest.raises(RateLimitError):
        await adapter.complete(CompletionRequest(model_id="gpt-4o-mini", prompt="hi"))

    adapter._client = _openai_client(AsyncMock(side_effect=openai.APIConnectionError(request=request)))
    with pytest.raises(TransientNetworkError):
        await adapter.complete(CompletionRequest(model_id="gpt-4o-mini", prompt="hi"))

    adapter._client = _openai_client(AsyncMock(side_effect=openai.AuthenticationError(
        "bad key", response=httpx.Response(401, request=request), body=None)))
    with pytest.raises(AuthError):
        await adapter.complete(CompletionRequest(model_id="gpt-4o-mini", prompt="hi"))


@pytest.mark.anyio
async def test_adapter_without_api_key_raises_auth_error(pricing):
    adapter = OpenAIAdapter(pricing, api_key=None)
    with pytest.raises(AuthError, match="Missing API key"):
        await adapter.complete(CompletionRequest(model_id="gpt-4o-mini", prompt="hi"))


def test_grok_adapter_uses_xai_endpoint(pricing):
    adapter = GrokAdapter(pricing, api_key="xai-test")
    assert adapter.kind is ProviderKind.GROK
    assert adapter.base_url == XAI_BASE_URL
    assert adapter.model_name("grok/grok-3") == "grok-3"
    assert adapter.model_name("openai/gpt-4o") == "openai/gpt-4o"
    assert adapter.model_name("GROK/grok-3") == "grok-3"
    assert adapter.model_name("") == "grok-3"


#=============================================================================
# Anthropic
#=============================================================================

def test_cap_output_tokens():
    assert cap_output_tokens("claude-3-haiku-20240307", 8000) == 4096
    assert cap_output_tokens("claude-3-5-haiku-latest", 10000) == 8192
    assert cap_output_tokens("claude-sonnet-4-20250514", 10000) == 10000


def test_build_system_blocks_json_and_caching():
    assert build_system_blocks(CompletionRequest(model_id="m", prompt="p")) == []

    schema = {"type": "object"}
    request = CompletionRequest(
        model_id="m", prompt="p", system_prompt="You are terse.",
        json_schema=schema, cache=CacheOptions(enabled=True, ttl='1h'),
    )
    [block] = build_system_blocks(request)
    assert block["text"].startswith("You are terse.")
    assert JSON_INSTRUCTION in block["text"]
    assert '{"type": "object"}' in block["text"]
    assert block["cache_control"] == {"type": "ephemeral", "ttl": "1h"}

    [block] = build_system_blocks(CompletionRequest(model_id="m", prompt="p", json_mode=True))
    assert block["text"] == JSON_INSTRUCTION
    assert "cache_control" not in block


def test_cache_options_reject_unknown_ttl():
    with pytest.raises(ValueError):
        CacheOptions(enabled=True, ttl='10m')


def _anthropic_client(create):
    return SimpleNamespace(messages=SimpleNamespace(create=create))


def _message_response():
    response = MagicMock()
    response.content = [SimpleNamespace(type="text", text="Hello"), SimpleNamespace(type="tool_use"),
                        SimpleNamespace(type="text", text=" there")]
    response.usage = SimpleNamespace(
        input_tokens=100,
        output_tokens=20,
        cache_creation_input_tokens=50,
        cache_read_input_tokens=200,
    )
    response.model_dump.return_value = {"id": "msg_1"}
    return response


@pytest.mark.anyio
@pytest.mark.parametrize("ttl, write_rate", [('5m', 1.25), ('1h', 2.0)])
async def test_anthropic_adapter_normalizes_usage_and_cache_cost(pricing, ttl, write_rate):
    adapter = AnthropicAdapter(pricing, api_key="sk-ant-test")
    create = AsyncMock(return_value=_message_response())
    adapter._client = _anthropic_client(create)

    response = await adapter.complete(CompletionRequest(
        model_id="anthropic/claude-3-5-haiku-latest", prompt="hi", temperature=1.5,
        cache=CacheOptions(enabled=True, ttl=ttl),
    ))

    params = create.await_args.kwargs
    assert params["model"] == "claude-3-5-haiku-latest"
    assert params["temperature"] == 1.0
    assert params["messages"] == [{"role": "user", "content": "hi"}]
    assert response.content == "Hello there"
    assert (response.tokens_in, response.tokens_out) == (100, 20)
    assert (response.cache_creation_tokens, response.cache_read_tokens) == (50, 200)
    assert response.cost_usd == pytest.approx((100 * 1.0 + 20 * 5.0 + 50 * write_rate + 200 * 0.1) / 1_000_000)
    assert response.raw == {"id": "msg_1"}


@pytest.mark.anyio
@pytest.mark.parametrize("make_error, error_cls", [
    (lambda r: anthropic.AuthenticationError("bad key", response=httpx.Response(401, request=r), body=None),
     AuthError),
    (lambda r: anthropic.PermissionDeniedError("denied", response=httpx.Response(403, request=r), body=None),
     AuthError),
    (lambda r: anthropic.RateLimitError("slow down", response=httpx.Response(429, request=r), body=None),
     RateLimitError),
    (lambda r: anthropic.BadRequestError("bad", response=httpx.Response(400, request=r), body=None),
     InvalidRequestError),
    (lambda r: anthropic.InternalServerError("oops", response=httpx.Response(500, request=r), body=None),
     ProviderServerError),
    (lambda r: anthropic.APIStatusError("overloaded", response=httpx.Response(529, request=r), body=None),
     ProviderServerError),
    (lambda r: anthropic.APIConnectionError(request=r), TransientNetworkError),
    (lambda r: anthropic.APITimeoutError(request=r), TransientNetworkError),
])
async def test_anthropic_adapter_translates_sdk_errors(pricing, make_error, error_cls):
    adapter = AnthropicAdapter(pricing, api_key="sk-ant-test")
    error = make_error(httpx.Request("POST", ANTHROPIC_URL))
    adapter._client = _anthropic_client(AsyncMock(side_effect=error))

    with pytest.raises(error_cls) as excinfo:
        await adapter.complete(CompletionRequest(model_id="claude-3-5-haiku-latest", prompt="hi"))
    assert excinfo.value.provider == "anthropic"
    assert excinfo.value.__cause__ is error


#=============================================================================
# Gemini
#=============================================================================

def test_gemini_build_config(pricing):
    adapter = GeminiAdapter(pricing, api_key="g-test", max_output_tokens=512)
    config = adapter.build_config(CompletionRequest(
        model_id="gemini-2.0-flash", prompt="p", system_prompt="sys",
        temperature=0.5, json_schema={"type": "object"},
    ))
    assert config == {
        "max_output_tokens": 512,
        "system_instruction": "sys",
        "temperature": 0.5,
        "response_mime_type": "application/json",
        "response_json_schema": {"type": "object"},
    }


def _gemini_client(generate_content):
    return SimpleNamespace(aio=SimpleNamespace(models=SimpleNamespace(generate_content=generate_content)))


@pytest.mark.anyio
async def test_gemini_adapter_normalizes_usage_and_cost(pricing):
    adapter = GeminiAdapter(pricing, api_key="g-test")
    response = MagicMock()
    response.text = "hi"
    response.usage_metadata = SimpleNamespace(
        prompt_token_count=100, cached_content_token_count=40, candidates_token_count=10)
    response.model_dump.return_value = {"model_version": "gemini-2.0-flash"}
    generate = AsyncMock(return_value=response)
    adapter._client = _gemini_client(generate)

    result = await adapter.complete(CompletionRequest(model_id="Gemini/gemini-2.0-flash", prompt="p"))

    assert generate.await_args.kwargs["model"] == "gemini-2.0-flash"
    assert generate.await_args.kwargs["contents"] == "p"
    assert result.content == "hi"
    assert (result.tokens_in, result.cache_read_tokens, result.tokens_out) == (60, 40, 10)
    assert result.cost_usd == pytest.approx((60 * 0.1 + 10 * 0.4) / 1_000_000)
    assert result.raw == {"model_version": "gemini-2.0-flash"}


@pytest.mark.anyio
async def test_gemini_adapter_estimates_tokens_without_usage(pricing):
    adapter = GeminiAdapter(pricing, api_key="g-test")
    response = MagicMock()
    response.text = None
    response.usage_metadata = None
    response.model_dump.return_value = {}
    adapter._client = _gemini_client(AsyncMock(return_value=response))

    result = await adapter.complete(CompletionRequest(model_id="gemini-2.0-flash", prompt="count these words"))

    assert result.content == ""
    assert result.tokens_in > 0
    assert result.cache_read_tokens == 0


def _gemini_api_error(error_cls, code, status):
    return error_cls(code, {"error": {"code": code, "message": "failed", "status": status}})


@pytest.mark.anyio
@pytest.mark.parametrize("error, error_cls", [
    (_gemini_api_error(genai_errors.ClientError, 401, "UNAUTHENTICATED"), AuthError),
    (_gemini_api_error(genai_errors.ClientError, 403, "PERMISSION_DENIED"), AuthError),
    (_gemini_api_error(genai_errors.ClientError, 429, "RESOURCE_EXHAUSTED"), RateLimitError),
    (_gemini_api_error(genai_errors.ClientError, 400, "INVALID_ARGUMENT"), InvalidRequestError),
    (_gemini_api_error(genai_errors.ServerError, 503, "UNAVAILABLE"), ProviderServerError),
    (httpx.ConnectError("connection refused"), TransientNetworkError),
    (httpx.ReadTimeout("timed out"), TransientNetworkError),
])
async def test_gemini_adapter_translates_sdk_errors(pricing, error, error_cls):
    adapter = GeminiAdapter(pricing, api_key="g-test")
    adapter._client = _gemini_client(AsyncMock(side_effect=error))

    with pytest.raises(error_cls) as excinfo:
        await adapter.complete(CompletionRequest(model_id="gemini-2.0-flash", prompt="p"))
    assert excinfo.value.provider == "gemini"
    assert excinfo.value.__cause__ is error


#=============================================================================
# Registry
#=============================================================================

def test_default_registry_has_every_provider(pricing, monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "")
    monkeypatch.setenv("GOOGLE_API_KEY", "google-key")
    registry = create_default_registry(pricing, api_keys={"openai": "explicit"})

    assert set(registry.kinds()) == set(ProviderKind)
    assert registry.get(ProviderKind.OPENAI).api_key == "explicit"
    assert registry.get("gemini").api_key == "google-key"


def test_registry_get_unknown_provider():
    with pytest.raises(KeyError):
        ProviderRegistry().get(ProviderKind.GROK)
