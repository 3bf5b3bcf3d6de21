# -*- coding: utf-8 -*-
"""
Native OpenAI Batch API variant.

Instead of dispatching rows one by one, the whole set of rows is uploaded
as a JSONL file and processed by OpenAI within its completion window.
This path only supports OpenAI models and does not go through the batch
scheduler or the job state store.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import openai
from tenacity import (retry, retry_if_exception_type, stop_after_attempt,
                      wait_exponential)

from ..providers.base import InvalidRequestError, ProviderKind
from ..providers.openai_provider import build_chat_params
from ..providers.routing import parse_model_id
from ..utils.misc import ensure_output_path, mask_path, write_json, write_jsonl
from .models import Row
from .pricing import PricingTable
from .processor import build_completion_request
from .scheduler import build_rows


CHAT_COMPLETIONS_ENDPOINT = "/v1/chat/completions"
COMPLETION_WINDOW = "24h"

# The Batch API bills half the synchronous price
NATIVE_BATCH_DISCOUNT = 0.5


retry_on_transient_openai_errors = retry(
    retry=retry_if_exception_type((
        openai.RateLimitError,
        openai.InternalServerError,
        openai.APIConnectionError,
        openai.APITimeoutError,
    )),
    wait=wait_exponential(min=2, max=60),
    stop=stop_after_attempt(5),
    reraise=True
)


@dataclass
class NativeResult:
    custom_id: str
    row_index: int
    model_id: str
    content: Optional[str] = None
    tokens_in: int = 0
    tokens_out: int = 0
    cost: float = 0.0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def custom_id_for(row: Row) -> str:
    return f"row-{row.row_index}"


def build_native_batch_requests(rows: List[dict], max_output_tokens: int = 4096) -> List[dict]:
    """
    Build the JSONL request lines of a native batch.

    Args:
        rows (list): Submission rows (see `build_rows`).
        max_output_tokens (int): Output token cap per request.

    Returns:
        list: One request dict per row.

    Raises:
        ValueError: If a row is invalid or targets a non-OpenAI model.
    """
    requests = []
    for row in build_rows("native", rows):
        kind, model = parse_model_id(row.model_id)
        if kind is not ProviderKind.OPENAI:
            raise ValueError(f"Row {row.id}: native batches only support OpenAI models, got '{row.model_id}'")
        try:
            request = build_completion_request(row)
            body = build_chat_params(model, request, max_output_tokens)
        except InvalidRequestError as e:
            raise ValueError(f"Row {row.id}: {e}") from e
        requests.append({
            "custom_id": custom_id_for(row),
            "method": "POST",
            "url": CHAT_COMPLETIONS_ENDPOINT,
            "body": body,
        })
    return requests


@retry_on_transient_openai_errors
def _upload_and_create(client: openai.OpenAI, input_file: Path, metadata: dict):
    with open(input_file, 'rb') as f:
        batch_file = client.files.create(file=f, purpose='batch')
    return client.batches.create(
        input_file_id=batch_file.id,
        endpoint=CHAT_COMPLETIONS_ENDPOINT,
        completion_window=COMPLETION_WINDOW,
        metadata=metadata,
    )


def submit_native_batch(
        client: openai.OpenAI,
        rows: List[dict],
        workdir: str | Path,
        max_output_tokens: int = 4096,
        description: Optional[str] = None
    ) -> str:
    """
    Submit rows as a native OpenAI batch.

    The request file (`input.jsonl`) and the batch metadata
    (`batch_metadata.json`) are written to `workdir`.

    Args:
        client: OpenAI API client.
        rows (list): Submission rows.
        workdir (str | Path): Folder for the request file and metadata.
        max_output_tokens (int): Output token cap per request.
        description (str | None): Stored in the batch metadata.

    Returns:
        str: The batch id.
    """
    if not rows:
        raise ValueError("Cannot submit an empty native batch")

    workdir = Path(workdir)
    ensure_output_path(workdir, description="Native batch folder")
    input_file = workdir / "input.jsonl"
    write_jsonl(build_native_batch_requests(rows, max_output_tokens), input_file)

    logging.info(f"Launching native batch for {mask_path(input_file)} ({len(rows)} requests)...")
    batch = _upload_and_create(client, input_file, {"description": description or "abai-batch"})
    write_json(batch.model_dump(), workdir / "batch_metadata.json")

    logging.info(f"Native batch created with ID: {batch.id}")
    return batch.id


@retry_on_transient_openai_errors
def check_native_batch_status(client: openai.OpenAI, batch_id: str) -> str:
    """
    Check the status of a native batch.

    Returns:
        str: The OpenAI batch status ('validating', 'in_progress', 'completed', ...).
    """
    batch = client.batches.retrieve(batch_id)
    status = batch.status
    if status == "failed":
        logging.error(f"Batch {batch_id} failed with error: {batch.errors}")
    elif status == "in_progress" and batch.request_counts:
        completed = batch.request_counts.completed
        total = batch.request_counts.total
        percentage = completed / total * 100 if total else 0
        logging.info(f"Batch {batch_id} is in progress, {completed} requests completed ({percentage:.2f}%)")
    elif status == "completed":
        created_at = datetime.fromtimestamp(batch.created_at).isoformat()
        logging.info(f"Batch {batch_id} (created {created_at}) has completed with output file ID: {batch.output_file_id}")
    else:
        logging.info(f"Batch {batch_id} is in status: {status}")
    return status


def parse_native_output_line(line: dict, pricing: Optional[PricingTable] = None) -> NativeResult:
    """Turn one line of a batch output or error file into a `NativeResult`."""
    custom_id = line.get("custom_id", "")
    row_index = int(custom_id.rsplit("-", 1)[-1]) if custom_id.startswith("row-") else -1
    response = line.get("response") or {}
    body = response.get("body") or {}
    model = body.get("model", "")

    error = line.get("error")
    if error or response.get("status_code", 200) != 200:
        message = (error or body.get("error") or {}).get("message") or f"HTTP {response.get('status_code')}"
        return NativeResult(custom_id, row_index, f"openai/{model}" if model else "", error=message)

    usage = body.get("usage") or {}
    tokens_in = usage.get("prompt_tokens", 0)
    tokens_out = usage.get("completion_tokens", 0)
    choices = body.get("choices") or [{}]
    cost = 0.0
    if pricing is not None and model:
        cost = pricing.cost(f"openai/{model}", tokens_in, tokens_out) * NATIVE_BATCH_DISCOUNT

    return NativeResult(
        custom_id=custom_id,
        row_index=row_index,
        model_id=f"openai/{model}",
        content=(choices[0].get("message") or {}).get("content"),
        tokens_in=tokens_in,
        tokens_out=tokens_out,
        cost=cost,
    )


@retry_on_transient_openai_errors
def retrieve_native_batch_results(
        client: openai.OpenAI,
        batch_id: str,
        pricing: Optional[PricingTable] = None
    ) -> List[NativeResult]:
    """
    Download the results of a finished native batch.

    Args:
        client: OpenAI API client.
        batch_id (str): The batch id.
        pricing (PricingTable | None): Used to compute per-row costs.

    Returns:
        list: Results ordered by row index, failed requests included.

    Raises:
        RuntimeError: If the batch is not finished yet.
    """
    batch = client.batches.retrieve(batch_id)
    if batch.status not in ("completed", "expired", "cancelled", "failed"):
        raise RuntimeError(f"Batch {batch_id} is not finished (status: {batch.status})")

    results = []
    for file_id in (batch.output_file_id, batch.error_file_id):
        if not file_id:
            continue
        content = client.files.content(file_id).text
        for line in content.splitlines():
            if line.strip():
                results.append(parse_native_output_line(json.loads(line), pricing))

    logging.info(f"Retrieved {len(results)} results for batch {batch_id}")
    return sorted(results, key=lambda r: r.row_index)


@retry_on_transient_openai_errors
def cancel_native_batch(client: openai.OpenAI, batch_id: str):
    """
    Cancel a native batch using its ID.

    Args:
        client: OpenAI API client.
        batch_id (str): The ID of the batch to cancel.
    """
    logging.info(f"Cancelling batch {batch_id}...")
    client.batches.cancel(batch_id)
    logging.info(f"Batch {batch_id} cancelled.")
