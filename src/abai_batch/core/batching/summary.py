# -*- coding: utf-8 -*-

import json
import logging
from collections import Counter
from statistics import mean, stdev
from pathlib import Path
from typing import List, Literal, Optional

import polars as pl

from ..utils.misc import mask_path, write_jsonl
from .models import Job, Row, RowStatus


EXPORT_COLUMNS = [
    'row_index', 'id', 'model_id', 'prompt', 'system_prompt', 'status',
    'response', 'tokens_in', 'tokens_out', 'cost', 'latency_ms', 'attempts',
    'error_message',
]


def _stats(values: List[float]) -> dict:
    if not values:
        return {"avg": 0.0, "std": 0.0, "min": 0, "max": 0}
    return {
        "avg": mean(values),
        "std": stdev(values) if len(values) > 1 else 0.0,
        "min": min(values),
        "max": max(values),
    }


def get_job_summary_dict(job: Job, rows: List[Row]) -> dict:
    """
    Generate a summary dictionary from a job and its rows.

    Args:
        job (Job): Job record.
        rows (list): Rows of the job.

    Returns:
        dict: The formatted summary dictionary.
    """
    status_counter = Counter(row.status.value for row in rows)
    successful = [row for row in rows if row.status is RowStatus.SUCCESS]

    duration = None
    if job.completed_at is not None:
        duration = (job.completed_at - job.created_at).total_seconds()

    by_model = {}
    for row in rows:
        entry = by_model.setdefault(row.model_id, {
            "rows": 0, "success": 0, "failed": 0,
            "tokens_in": 0, "tokens_out": 0, "cost": 0.0,
        })
        entry["rows"] += 1
        if row.status is RowStatus.SUCCESS:
            entry["success"] += 1
        elif row.status.is_error:
            entry["failed"] += 1
        entry["tokens_in"] += row.tokens_in
        entry["tokens_out"] += row.tokens_out
        entry["cost"] += row.cost

    errors = Counter(
        f"[{row.status.value}] {row.error_message}"
        for row in rows if row.status.is_error
    )

    tokens_in = sum(row.tokens_in for row in rows)
    tokens_out = sum(row.tokens_out for row in rows)
    summary = {
        "job_id": job.id,
        "project_id": job.project_id,
        "file_name": job.file_name,
        "status": job.status.value,
        "created_at": job.created_at.isoformat(),
        "completed_at": job.completed_at.isoformat() if job.completed_at else "N/A",
        "duration": duration,
        "rows": {
            "total": job.total_rows,
            "completed": job.completed_rows,
            "failed": job.failed_rows,
            "pending": status_counter.get(RowStatus.PENDING.value, 0),
            "by_status": dict(status_counter),
        },
        "tokens": {
            "prompt": tokens_in,
            "completion": tokens_out,
            "total": tokens_in + tokens_out,
            "completion_stats": _stats([row.tokens_out for row in successful]),
        },
        "latency_ms": _stats([row.latency_ms for row in successful]),
        "costs": {
            "total": job.total_cost,
            "avg_per_success": job.total_cost / len(successful) if successful else 0.0,
        },
        "models": by_model,
    }
    if errors:
        summary["errors"] = [{"message": message, "count": count} for message, count in errors.most_common()]
    return summary


def format_job_summary(summary: dict) -> str:
    """Render a summary dictionary as plain text."""
    total = summary['rows']['total']
    completed = summary['rows']['completed']
    failed = summary['rows']['failed']
    status = summary['status']
    if status == 'completed' and failed:
        status = 'completed with errors'

    lines = [
        f"Job ID       : {summary['job_id']}",
        f"Project      : {summary['project_id']}",
        f"File         : {summary['file_name'] or 'N/A'}",
        f"Status       : {status}",
        f"Created at   : {summary['created_at']}",
        f"Completed at : {summary['completed_at']}",
        f"Duration     : {summary['duration'] if summary['duration'] is not None else 'N/A'} seconds",
        "",
        "=== Row Counts ===",
        f"Total     : {total}",
        f"Completed : {completed} ({(completed / total * 100) if total else 0:.2f}%)",
        f"Failed    : {failed} ({(failed / total * 100) if total else 0:.2f}%)",
        f"Pending   : {summary['rows']['pending']}",
        "",
        "=== Token Usage ===",
        f"Total prompt tokens        : {summary['tokens']['prompt']:,}",
        f"Total completion tokens    : {summary['tokens']['completion']:,}",
        f"  - Avg. completion tokens : {summary['tokens']['completion_stats']['avg']:.2f}",
        f"  - Std. completion tokens : {summary['tokens']['completion_stats']['std']:.2f}",
        f"  - Max. completion tokens : {summary['tokens']['completion_stats']['max']}",
        f"  - Min. completion tokens : {summary['tokens']['completion_stats']['min']}",
        f"Total tokens               : {summary['tokens']['total']:,}",
        "",
        "=== Latency (successful rows) ===",
        f"Avg. : {summary['latency_ms']['avg']:.0f} ms",
        f"Std. : {summary['latency_ms']['std']:.0f} ms",
        f"Max. : {summary['latency_ms']['max']} ms",
        f"Min. : {summary['latency_ms']['min']} ms",
        "",
        "=== Costs (USD) ===",
        f"Total cost           : ${summary['costs']['total']:.4f}",
        f"Avg. per success row : ${summary['costs']['avg_per_success']:.6f}",
    ]

    if len(summary['models']) > 0:
        lines += ["", "=== Models ==="]
        for model, entry in summary['models'].items():
            lines.append(f"{model}: {entry['success']}/{entry['rows']} succeeded, "
                         f"{entry['tokens_in']:,} in / {entry['tokens_out']:,} out, ${entry['cost']:.4f}")

    if summary.get('errors'):
        lines += ["", "=== Errors ==="]
        for error in summary['errors']:
            lines.append(f"- {error['message']} (x{error['count']})")

    return "\n".join(lines)


def save_job_summary(
        job: Job,
        rows: List[Row],
        summary_path: str | Path,
        save_dict: bool = False
    ) -> dict:
    """
    Write the text summary of a job.

    Args:
        job (Job): Job record.
        rows (list): Rows of the job.
        summary_path (str | Path): Path of the text summary.
        save_dict (bool): If True, saves the summary dictionary as a JSON file alongside the summary text.

    Returns:
        dict: The summary dictionary.
    """
    summary_dict = get_job_summary_dict(job, rows)
    summary_path = Path(summary_path)
    summary_path.parent.mkdir(parents=True, exist_ok=True)

    with open(summary_path, "w", encoding="utf-8") as f:
        f.write(format_job_summary(summary_dict))
    logging.info(f"Job summary saved to {mask_path(summary_path)}")

    if save_dict:
        json_path = summary_path.with_suffix('.json')
        with open(json_path, "w", encoding="utf-8") as jf:
            json.dump(summary_dict, jf, indent=2, ensure_ascii=False)
        logging.info(f"Job summary dict saved to {mask_path(json_path)}")

    return summary_dict


def export_results(
        rows: List[Row],
        path: str | Path,
        file_type: Optional[Literal['jsonl', 'csv', 'parquet']] = None
    ) -> Path:
    """
    Export row results to a file.

    Args:
        rows (list): Rows to export.
        path (str | Path): Output file.
        file_type (str | None): 'jsonl', 'csv' or 'parquet'. Inferred from the
            file extension when None.

    Returns:
        Path: The written file.
    """
    path = Path(path)
    file_type = file_type or path.suffix.lstrip('.').lower()
    if file_type not in ('jsonl', 'csv', 'parquet'):
        raise ValueError(f"Unsupported export file type '{file_type}'. Expected jsonl, csv or parquet.")
    path.parent.mkdir(parents=True, exist_ok=True)

    records = []
    for row in rows:
        record = {column: getattr(row, column) for column in EXPORT_COLUMNS}
        record['status'] = row.status.value
        records.append(record)

    if file_type == 'jsonl':
        for record, row in zip(records, rows):
            record['data'] = row.original_data
        write_jsonl(records, path)
    else:
        schema = {
            'row_index': pl.Int64, 'id': pl.Utf8, 'model_id': pl.Utf8,
            'prompt': pl.Utf8, 'system_prompt': pl.Utf8, 'status': pl.Utf8,
            'response': pl.Utf8, 'tokens_in': pl.Int64, 'tokens_out': pl.Int64,
            'cost': pl.Float64, 'latency_ms': pl.Int64, 'attempts': pl.Int64,
            'error_message': pl.Utf8,
        }
        df = pl.DataFrame(records, schema=schema)
        if file_type == 'csv':
            df.write_csv(path)
        else:
            df.write_parquet(path)

    logging.info(f"Exported {len(rows)} rows to {mask_path(path)}")
    return path
