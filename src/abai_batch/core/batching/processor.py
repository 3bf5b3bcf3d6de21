# -*- coding: utf-8 -*-

"""
Row processor: runs one row end to end against its provider, with bounded
retry on transient failures.
"""

import json
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from tenacity import (AsyncRetrying, before_sleep_log, retry_if_exception_type,
                      stop_after_attempt, wait_exponential)

from ..providers.base import (
    AuthError,
    CacheOptions,
    CompletionRequest,
    InvalidRequestError,
    ProviderError,
    RETRYABLE_ERRORS,
    TransientNetworkError,
)
from ..providers.registry import ProviderRegistry
from ..providers.routing import parse_model_id
from .limiter import ConcurrencyLimiter, Permit
from .models import Row, RowStatus
from .parse import substitute_template_vars


logger = logging.getLogger(__name__)


@dataclass
class RowOutcome:
    """Terminal outcome of one row, reported to the scheduler."""
    row: Row
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.row.status is RowStatus.SUCCESS


def error_status(error: Exception) -> RowStatus:
    """Terminal row status for a failure that ended processing."""
    if isinstance(error, AuthError):
        return RowStatus.ERROR_MISSING_KEY
    if isinstance(error, InvalidRequestError):
        return RowStatus.ERROR_INVALID_RESPONSE
    return RowStatus.ERROR_API


def build_completion_request(row: Row, cache: Optional[CacheOptions] = None,
                             max_output_tokens: Optional[int] = None) -> CompletionRequest:
    """
    Resolve the prompt template and request options of a row.

    The row's prompt is replaced by the resolved text.

    Raises:
        InvalidRequestError: On missing template variables or an invalid JSON schema.
    """
    prompt, missing = substitute_template_vars(row.prompt, row.original_data)
    if missing:
        raise InvalidRequestError(f"Missing template variables: {', '.join(missing)}")
    row.prompt = prompt

    json_schema = None
    if row.json_schema:
        try:
            json_schema = json.loads(row.json_schema)
        except json.JSONDecodeError as e:
            raise InvalidRequestError(f"Invalid JSON schema: {e}") from e
        if not isinstance(json_schema, dict):
            raise InvalidRequestError("JSON schema must be a JSON object")

    return CompletionRequest(
        model_id=row.model_id,
        prompt=prompt,
        system_prompt=row.system_prompt,
        temperature=row.temperature,
        json_mode=row.json_mode,
        json_schema=json_schema,
        cache=cache or CacheOptions(),
        max_output_tokens=max_output_tokens,
    )


class RowProcessor:
    """
    Executes rows against the providers of a `ProviderRegistry`.

    Args:
        registry (ProviderRegistry): Provider adapters.
        max_retries (int): Retries after the first attempt for retryable errors.
        request_timeout (float): Seconds before a provider call is abandoned.
        backoff_min (float): Minimum wait between retries, in seconds.
        backoff_max (float): Maximum wait between retries, in seconds.
        cache (CacheOptions | None): Prompt caching options for every request.
        max_output_tokens (int | None): Output token cap for every request.
    """

    def __init__(
            self,
            registry: ProviderRegistry,
            max_retries: int = 3,
            request_timeout: float = 60.0,
            backoff_min: float = 1.0,
            backoff_max: float = 10.0,
            cache: Optional[CacheOptions] = None,
            max_output_tokens: Optional[int] = None
        ):
        self.registry = registry
        self.max_retries = max_retries
        self.request_timeout = request_timeout
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max
        self.cache = cache or CacheOptions()
        self.max_output_tokens = max_output_tokens

    def build_request(self, row: Row) -> CompletionRequest:
        return build_completion_request(row, cache=self.cache, max_output_tokens=self.max_output_tokens)

    async def _call(self, adapter, request: CompletionRequest):
        try:
            return await asyncio.wait_for(adapter.complete(request), timeout=self.request_timeout)
        except asyncio.TimeoutError as e:
            raise TransientNetworkError(
                f"Request timed out after {self.request_timeout:g} seconds",
                provider=adapter.kind.value
            ) from e

    async def process(self, row: Row) -> RowOutcome:
        """
        Process one row and leave it in a terminal status.

        Provider failures never escape: they are recorded on the row.

        Args:
            row (Row): A pending or in-flight row.

        Returns:
            RowOutcome: The finalized row and the error that ended it, if any.
        """
        if row.status is not RowStatus.IN_FLIGHT:
            row.mark_in_flight()
        row.attempts = 0

        try:
            kind, _ = parse_model_id(row.model_id)
            adapter = self.registry.get(kind)
            request = self.build_request(row)

            retrying = AsyncRetrying(
                retry=retry_if_exception_type(RETRYABLE_ERRORS),
                stop=stop_after_attempt(self.max_retries + 1),
                wait=wait_exponential(multiplier=self.backoff_min, min=self.backoff_min, max=self.backoff_max),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            )
            async for attempt in retrying:
                with attempt:
                    row.attempts += 1
                    response = await self._call(adapter, request)

        except ProviderError as e:
            status = error_status(e)
            logging.warning(f"Row {row.id} ({row.model_id}) failed with {status.value} "
                            f"after {row.attempts} attempt(s): {e}")
            row.fail(status, str(e))
            return RowOutcome(row, error=e)
        except Exception as e:
            logging.exception(f"Unexpected error while processing row {row.id}")
            row.fail(RowStatus.ERROR_API, f"Unexpected error: {e}")
            return RowOutcome(row, error=e)

        row.succeed(
            response=response.content,
            tokens_in=response.tokens_in,
            tokens_out=response.tokens_out,
            cost=response.cost_usd,
            latency_ms=response.latency_ms,
        )
        logging.debug(f"Row {row.id} succeeded in {row.attempts} attempt(s), "
                      f"{response.latency_ms} ms, ${response.cost_usd:.6f}")
        return RowOutcome(row)

    async def run(self, row: Row, permit: Permit, limiter: ConcurrencyLimiter,
                  outcomes: asyncio.Queue):
        """
        Process a row admitted under `permit` and report its outcome on `outcomes`.

        An outcome is queued for every admitted row, even when `process` itself
        raises, so the scheduler never waits on a row that will not report.
        """
        try:
            outcome = await self.process(row)
        except Exception as e:
            logging.exception(f"Row {row.id} could not be processed")
            if not row.is_terminal:
                row.fail(RowStatus.ERROR_API, f"Unexpected error: {e}")
            outcome = RowOutcome(row, error=e)
        finally:
            limiter.release(permit)
        await outcomes.put(outcome)
