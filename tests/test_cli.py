import json

import pytest
from click.testing import CliRunner

from abai_batch.cli import cli
from abai_batch.core.batching.models import JobStatus, RowStatus
from abai_batch.core.batching.scheduler import build_rows
from abai_batch.core.batching.store import FileJobStore
from abai_batch.core.providers.base import AuthError

from conftest import PRICING, FakeAdapter, make_scheduler, rows_for


@pytest.fixture
def workspace(tmp_path, monkeypatch, pricing):
    pricing_file = tmp_path / "pricing.json"
    pricing_file.write_text(json.dumps(PRICING), encoding="utf-8")
    config = tmp_path / "config.yaml"
    config.write_text(f"backoff_min: 0\nbackoff_max: 0\npricing_file: {pricing_file}\n", encoding="utf-8")
    state_dir = tmp_path / "state"

    adapter = FakeAdapter(pricing, script={"broken": [AuthError("invalid key")]})
    monkeypatch.setattr(
        "abai_batch.cli.utils.create_scheduler",
        lambda settings: make_scheduler(adapter, store=FileJobStore(settings.resolved_state_dir),
                                        concurrency=settings.concurrency)
    )

    runner = CliRunner()

    def invoke(*args):
        return runner.invoke(cli, ["--config", str(config), "--state-dir", str(state_dir), *args])

    invoke.tmp_path = tmp_path
    invoke.store = lambda: FileJobStore(state_dir)
    invoke.adapter = adapter
    return invoke


def write_csv(path, *prompts):
    path.write_text("prompt\n" + "".join(f"{p}\n" for p in prompts), encoding="utf-8")
    return path


def test_run_exports_results_and_summary(workspace):
    input_file = write_csv(workspace.tmp_path / "prompts.csv", "one", "two")
    output = workspace.tmp_path / "out" / "results.csv"

    result = workspace("run", str(input_file), "-m", "gpt-4o-mini", "-o", str(output))

    assert result.exit_code == 0, result.output
    assert "Status       : completed" in result.output
    assert output.exists()
    assert (output.parent / "results_summary.txt").exists()
    assert (output.parent / "results_summary.json").exists()
    assert sorted(workspace.adapter.calls) == ["one", "two"]

    [job] = workspace.store().list_jobs()
    assert job.file_name == "prompts.csv"
    assert job.completed_rows == 2


def test_run_reports_failed_rows(workspace):
    input_file = write_csv(workspace.tmp_path / "prompts.csv", "fine", "broken")

    result = workspace("run", str(input_file), "-m", "gpt-4o-mini", "-c", "1")

    assert result.exit_code == 0, result.output
    assert "completed with errors" in result.output
    assert "invalid key (x1)" in result.output


def test_run_requires_a_model(workspace):
    input_file = write_csv(workspace.tmp_path / "prompts.csv", "one")
    result = workspace("run", str(input_file))
    assert result.exit_code == 1
    assert workspace.adapter.calls == []


def test_run_rejects_invalid_concurrency(workspace):
    input_file = write_csv(workspace.tmp_path / "prompts.csv", "one")
    result = workspace("run", str(input_file), "-m", "gpt-4o-mini", "-c", "0")
    assert result.exit_code == 2


def test_inspect_finished_job(workspace):
    input_file = write_csv(workspace.tmp_path / "prompts.csv", "one", "two", "three")
    assert workspace("run", str(input_file), "-m", "gpt-4o-mini", "-p", "demo").exit_code == 0
    [job] = workspace.store().list_jobs()

    result = workspace("status", job.id)
    assert result.exit_code == 0
    assert "Progress  : 3/3 (100.00%)" in result.output
    assert "Succeeded : 3" in result.output

    result = workspace("list-jobs", "-p", "demo")
    assert job.id in result.output
    assert job.id not in workspace("list-jobs", "-p", "other").output
    assert job.id not in workspace("list-jobs", "-s", "failed").output

    result = workspace("summary", job.id)
    assert "Total     : 3" in result.output

    export = workspace.tmp_path / "export.jsonl"
    assert workspace("results", job.id, "-o", str(export)).exit_code == 0
    records = [json.loads(line) for line in export.read_text(encoding="utf-8").splitlines()]
    assert [r["response"] for r in records] == ["echo: one", "echo: two", "echo: three"]


def test_unknown_job_exits_with_error(workspace):
    for command in ("status", "summary", "cancel", "resume"):
        assert workspace(command, "missing-job").exit_code == 1


def seed_interrupted_job(store, *prompts):
    job = store.create_job("proj", "in.csv", len(prompts))
    rows = build_rows(job.id, rows_for(*prompts))
    rows[0].succeed("earlier", 10, 5, 0.5, 3)
    rows[1].mark_in_flight()
    for row in rows:
        store.add_result(row)
    store.update_job_status(job.id, status=JobStatus.RUNNING, completed_rows=1, total_cost=0.5)
    return job


def test_resume_interrupted_job(workspace):
    job = seed_interrupted_job(workspace.store(), "done", "again", "waiting")

    result = workspace("resume", job.id)

    assert result.exit_code == 0, result.output
    assert "Status       : completed" in result.output
    assert sorted(workspace.adapter.calls) == ["again", "waiting"]
    stored = workspace.store().get_job(job.id)
    assert stored.status is JobStatus.COMPLETED
    assert stored.completed_rows == 3
    responses = [row.response for row in workspace.store().list_results(job.id)]
    assert responses == ["earlier", "echo: again", "echo: waiting"]


def test_resume_every_interrupted_job(workspace):
    first = seed_interrupted_job(workspace.store(), "done", "again")
    second = seed_interrupted_job(workspace.store(), "old", "new")

    assert workspace("resume", "-p", "proj").exit_code == 0

    assert sorted(workspace.adapter.calls) == ["again", "new"]
    for job in (first, second):
        assert workspace.store().get_job(job.id).status is JobStatus.COMPLETED


def test_cancel_interrupted_job(workspace):
    job = seed_interrupted_job(workspace.store(), "done", "again")

    assert workspace("cancel", job.id).exit_code == 0

    assert workspace.store().get_job(job.id).status is JobStatus.CANCELLED
    statuses = [row.status for row in workspace.store().list_results(job.id)]
    assert statuses == [RowStatus.SUCCESS, RowStatus.PENDING]
    # A cancelled job is left alone
    assert workspace("cancel", job.id).exit_code == 0
    assert workspace.adapter.calls == []


def test_invalid_settings_file(workspace, tmp_path):
    config = tmp_path / "bad.yaml"
    config.write_text("workers: 3\n", encoding="utf-8")
    result = CliRunner().invoke(cli, ["--config", str(config), "list-jobs"])
    assert result.exit_code == 1


def test_estimate_input_tokens(workspace):
    input_file = workspace.tmp_path / "prompts.jsonl"
    lines = [{"prompt": "x" * 4000, "model": "gemini-2.0-flash"}] * 2
    input_file.write_text("\n".join(json.dumps(line) for line in lines), encoding="utf-8")

    result = workspace("estimate", str(input_file))
    assert result.exit_code == 0, result.output
    assert "gemini/gemini-2.0-flash: 2 rows, 2,000 input tokens" in result.output
    assert "Estimated total cost: $0.0002 (input tokens only)" in result.output

    result = workspace("estimate", str(input_file), "--with-output")
    assert "Estimated total cost: $0.0035 (upper bound)" in result.output


def test_models_listing(workspace):
    result = workspace("models", "--provider", "anthropic")
    assert result.exit_code == 0
    assert "anthropic/claude-3-5-haiku-latest" in result.output
    assert "cache read $0.1" in result.output
    assert "gpt-4o-mini" not in result.output

    result = workspace("models", "--provider", "grok")
    assert "pricing not available" in result.output
