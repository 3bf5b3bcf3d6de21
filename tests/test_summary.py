import json

import polars as pl
import pytest

from abai_batch.core.batching.models import Job, JobStatus, Row, RowStatus
from abai_batch.core.batching.summary import (
    export_results,
    format_job_summary,
    get_job_summary_dict,
    save_job_summary,
)


@pytest.fixture
def finished_job():
    job = Job(project_id="proj", file_name="in.csv", total_rows=3)
    job.transition(JobStatus.RUNNING)

    rows = [Row(job_id=job.id, row_index=i, prompt=f"p{i}", model_id="openai/gpt-4o-mini",
                original_data={"n": i}) for i in range(3)]
    rows[0].succeed("a", tokens_in=10, tokens_out=4, cost=0.1, latency_ms=100)
    rows[1].succeed("b", tokens_in=20, tokens_out=6, cost=0.2, latency_ms=300)
    rows[2].fail(RowStatus.ERROR_API, "server exploded")
    for row in rows:
        job.record_outcome(row)
    job.transition(JobStatus.COMPLETED)
    return job, rows


def test_summary_dict(finished_job):
    job, rows = finished_job
    summary = get_job_summary_dict(job, rows)

    assert summary["rows"]["completed"] == 2
    assert summary["rows"]["failed"] == 1
    assert summary["rows"]["by_status"] == {"success": 2, "error-api": 1}
    assert summary["tokens"]["total"] == 40
    assert summary["tokens"]["completion_stats"]["avg"] == 5
    assert summary["latency_ms"]["avg"] == 200
    assert summary["latency_ms"]["max"] == 300
    assert summary["costs"]["total"] == pytest.approx(0.3)
    assert summary["costs"]["avg_per_success"] == pytest.approx(0.15)
    assert summary["models"]["openai/gpt-4o-mini"]["failed"] == 1
    assert summary["errors"] == [{"message": "[error-api] server exploded", "count": 1}]
    assert summary["duration"] is not None


def test_format_marks_completed_with_errors(finished_job):
    text = format_job_summary(get_job_summary_dict(*finished_job))
    assert "Status       : completed with errors" in text
    assert "server exploded (x1)" in text


def test_save_job_summary_writes_text_and_json(finished_job, tmp_path):
    job, rows = finished_job
    path = tmp_path / "out" / "summary.txt"
    summary = save_job_summary(job, rows, path, save_dict=True)

    assert path.read_text(encoding="utf-8").startswith(f"Job ID       : {job.id}")
    assert json.loads(path.with_suffix(".json").read_text(encoding="utf-8")) == summary


@pytest.mark.parametrize("file_type", ["csv", "parquet"])
def test_export_tabular_results(finished_job, tmp_path, file_type):
    _, rows = finished_job
    path = export_results(rows, tmp_path / f"results.{file_type}")

    df = pl.read_csv(path) if file_type == "csv" else pl.read_parquet(path)
    assert df.height == 3
    assert df["status"].to_list() == ["success", "success", "error-api"]
    assert df["error_message"].to_list()[2] == "server exploded"


def test_export_jsonl_keeps_template_data(finished_job, tmp_path):
    _, rows = finished_job
    path = export_results(rows, tmp_path / "results.out", file_type="jsonl")
    records = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
    assert [r["data"] for r in records] == [{"n": 0}, {"n": 1}, {"n": 2}]


def test_export_rejects_unknown_type(finished_job, tmp_path):
    with pytest.raises(ValueError):
        export_results(finished_job[1], tmp_path / "results.xlsx")
