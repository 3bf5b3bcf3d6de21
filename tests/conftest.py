"""Shared fixtures: a scripted fake provider and a small pricing table."""

import asyncio

import pytest

from abai_batch.core.batching.pricing import PricingTable
from abai_batch.core.batching.processor import RowProcessor
from abai_batch.core.batching.scheduler import BatchScheduler
from abai_batch.core.batching.store import InMemoryJobStore
from abai_batch.core.providers.base import ProviderAdapter, ProviderKind, RawCompletion
from abai_batch.core.providers.registry import ProviderRegistry


PRICING = [
    {"id": "gpt-4o-mini", "provider": "openai", "pricing": {"prompt": 1.0, "completion": 2.0}},
    {"id": "claude-3-5-haiku-latest", "provider": "anthropic",
     "pricing": {"prompt": 1.0, "completion": 5.0, "cacheWrite5m": 1.25, "cacheWrite1h": 2.0, "cacheRead": 0.1}},
    {"id": "gemini-2.0-flash", "provider": "gemini", "pricing": {"prompt": 0.1, "completion": 0.4}},
    {"id": "grok-3", "provider": "grok", "pricing": {"prompt": -1, "completion": -1}},
]


class FakeAdapter(ProviderAdapter):
    """
    Provider double. `script` maps a prompt to the outcomes of its successive
    calls: an exception is raised, a string is returned as content. Prompts
    without a script are echoed back.
    """

    def __init__(self, pricing, kind=ProviderKind.OPENAI, script=None, delay=0.0,
                 failure_delay=0.0, api_key="test-key"):
        super().__init__(pricing, api_key=api_key)
        self.kind = kind
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.delay = delay
        self.failure_delay = failure_delay
        self.calls = []
        self.models = []
        self.in_flight = 0
        self.peak_in_flight = 0

    def _create_client(self):
        return object()

    async def _send(self, model, request):
        self.client  # raises AuthError without an API key
        self.calls.append(request.prompt)
        self.models.append(model)
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            outcomes = self.script.get(request.prompt)
            outcome = outcomes.pop(0) if outcomes else f"echo: {request.prompt}"
            if isinstance(outcome, Exception):
                if self.failure_delay:
                    await asyncio.sleep(self.failure_delay)
                raise outcome
            if self.delay:
                await asyncio.sleep(self.delay)
            return RawCompletion(content=outcome, tokens_in=10, tokens_out=5)
        finally:
            self.in_flight -= 1

    def attempts_for(self, prompt):
        return self.calls.count(prompt)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def pricing():
    return PricingTable.from_list(PRICING)


@pytest.fixture
def fake_adapter(pricing):
    return FakeAdapter(pricing)


def make_processor(*adapters, max_retries=2, request_timeout=5.0):
    registry = ProviderRegistry({adapter.kind: adapter for adapter in adapters})
    return RowProcessor(
        registry,
        max_retries=max_retries,
        request_timeout=request_timeout,
        backoff_min=0,
        backoff_max=0,
    )


def make_scheduler(*adapters, store=None, concurrency=3, max_retries=2, **kwargs):
    return BatchScheduler(
        store if store is not None else InMemoryJobStore(),
        make_processor(*adapters, max_retries=max_retries),
        concurrency=concurrency,
        **kwargs,
    )


def rows_for(*prompts, model="openai/gpt-4o-mini"):
    return [{"prompt": prompt, "model": model} for prompt in prompts]
