import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from abai_batch.core.batching.native import (
    build_native_batch_requests,
    cancel_native_batch,
    parse_native_output_line,
    retrieve_native_batch_results,
    submit_native_batch,
)


ROWS = [
    {"prompt": "Describe {{animal}}", "model": "gpt-4o-mini", "system": "Be short", "data": {"animal": "a cat"}},
    {"prompt": "Return json", "model": "openai/gpt-4o-mini", "json_mode": True},
]


def output_line(index, content="ok", prompt_tokens=1000, completion_tokens=500):
    return {
        "custom_id": f"row-{index}",
        "response": {
            "status_code": 200,
            "body": {
                "model": "gpt-4o-mini",
                "choices": [{"message": {"content": content}}],
                "usage": {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
            },
        },
        "error": None,
    }


def test_build_requests_targets_chat_completions():
    requests = build_native_batch_requests(ROWS, max_output_tokens=256)

    assert [r["custom_id"] for r in requests] == ["row-0", "row-1"]
    assert all(r["url"] == "/v1/chat/completions" and r["method"] == "POST" for r in requests)
    body = requests[0]["body"]
    assert body["model"] == "gpt-4o-mini"
    assert body["max_tokens"] == 256
    assert body["messages"] == [
        {"role": "system", "content": "Be short"},
        {"role": "user", "content": "Describe a cat"},
    ]
    assert requests[1]["body"]["response_format"] == {"type": "json_object"}


@pytest.mark.parametrize("row", [
    {"prompt": "hi", "model": "anthropic/claude-3-5-haiku-latest"},
    {"prompt": "", "model": "gpt-4o-mini"},
    {"prompt": "Describe {{animal}}", "model": "gpt-4o-mini"},
])
def test_build_requests_rejects_unsupported_rows(row):
    with pytest.raises(ValueError):
        build_native_batch_requests([row])


def test_parse_output_line_applies_batch_discount(pricing):
    result = parse_native_output_line(output_line(3), pricing)

    assert result.succeeded
    assert (result.row_index, result.model_id, result.content) == (3, "openai/gpt-4o-mini", "ok")
    assert result.cost == pytest.approx((1000 * 1.0 + 500 * 2.0) / 1_000_000 * 0.5)


def test_parse_error_line():
    line = {
        "custom_id": "row-1",
        "response": {"status_code": 400, "body": {"error": {"message": "bad request"}}},
        "error": None,
    }
    result = parse_native_output_line(line)
    assert not result.succeeded
    assert result.error == "bad request"
    assert result.row_index == 1


def test_submit_writes_requests_and_metadata(tmp_path):
    client = MagicMock()
    client.files.create.return_value = SimpleNamespace(id="file-1")
    batch = MagicMock(id="batch-1")
    batch.model_dump.return_value = {"id": "batch-1", "status": "validating"}
    client.batches.create.return_value = batch

    batch_id = submit_native_batch(client, ROWS, tmp_path / "native", description="test run")

    assert batch_id == "batch-1"
    lines = (tmp_path / "native" / "input.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    metadata = json.loads((tmp_path / "native" / "batch_metadata.json").read_text(encoding="utf-8"))
    assert metadata["status"] == "validating"
    kwargs = client.batches.create.call_args.kwargs
    assert kwargs["input_file_id"] == "file-1"
    assert kwargs["metadata"] == {"description": "test run"}


def test_submit_empty_batch_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        submit_native_batch(MagicMock(), [], tmp_path)


def test_retrieve_merges_output_and_error_files(pricing):
    client = MagicMock()
    client.batches.retrieve.return_value = SimpleNamespace(
        status="completed", output_file_id="out", error_file_id="err"
    )
    error = {"custom_id": "row-0", "response": None, "error": {"message": "expired"}}
    files = {
        "out": json.dumps(output_line(1)) + "\n\n",
        "err": json.dumps(error) + "\n",
    }
    client.files.content.side_effect = lambda file_id: SimpleNamespace(text=files[file_id])

    results = retrieve_native_batch_results(client, "batch-1", pricing)

    assert [r.row_index for r in results] == [0, 1]
    assert results[0].error == "expired"
    assert results[1].content == "ok"


def test_retrieve_unfinished_batch():
    client = MagicMock()
    client.batches.retrieve.return_value = SimpleNamespace(status="in_progress")
    with pytest.raises(RuntimeError):
        retrieve_native_batch_results(client, "batch-1")


def test_cancel_native_batch():
    client = MagicMock()
    cancel_native_batch(client, "batch-1")
    client.batches.cancel.assert_called_once_with("batch-1")
