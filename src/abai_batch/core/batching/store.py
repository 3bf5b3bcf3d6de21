# -*- coding: utf-8 -*-

"""
Job state store: persistence contract for jobs and row results, with an
in-memory implementation and a file-backed one.

File layout of `FileJobStore`:

    <root>/
        <job_id>/
            job.json        # Job record, rewritten atomically on each update
            results.jsonl   # Row records, appended; the last record per row_index wins
"""

import copy
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from ..utils.misc import ensure_output_path, mask_path, read_json, read_jsonl, write_json, write_jsonl
from .models import Job, JobCreationError, JobNotFoundError, JobStatus, JobStoreError, Row


JOB_FILENAME = "job.json"
RESULTS_FILENAME = "results.jsonl"


class JobStore:
    """
    Persistence contract used by the batch scheduler.

    Every method returns copies, so callers never share mutable state with
    the store. Implementations raise `JobStoreError` when the underlying
    storage fails.
    """

    def create_job(self, project_id: str, file_name: str, total_rows: int) -> Job:
        raise NotImplementedError

    def get_job(self, job_id: str) -> Optional[Job]:
        raise NotImplementedError

    def update_job_status(
            self,
            job_id: str,
            status: Optional[JobStatus] = None,
            completed_rows: Optional[int] = None,
            failed_rows: Optional[int] = None,
            total_cost: Optional[float] = None,
            completed_at: Optional[datetime] = None
        ) -> Job:
        """
        Apply a partial update to a job. `completed_at` overrides the
        timestamp stamped when the job reaches a terminal status, so the
        stored record matches the caller's copy.
        """
        raise NotImplementedError

    def add_result(self, row: Row) -> Row:
        """Insert or replace the row with the same (job_id, row_index)."""
        raise NotImplementedError

    def list_results(self, job_id: str) -> List[Row]:
        """Rows of a job ordered by row_index ascending."""
        raise NotImplementedError

    def list_jobs(self, project_id: Optional[str] = None) -> List[Job]:
        """Jobs, newest first, optionally restricted to a project."""
        raise NotImplementedError


def apply_job_update(job: Job, status=None, completed_rows=None, failed_rows=None, total_cost=None,
                     completed_at=None):
    """Apply a partial update to a job record."""
    if status is not None:
        status = JobStatus(status)
        if status is not job.status:
            job.transition(status)
    if completed_at is not None and job.is_terminal:
        job.completed_at = completed_at
    if completed_rows is not None:
        job.completed_rows = completed_rows
    if failed_rows is not None:
        job.failed_rows = failed_rows
    if total_cost is not None:
        job.total_cost = total_cost
    return job


#=============================================================================
# In-memory store
#=============================================================================

class InMemoryJobStore(JobStore):
    """Process-local store, for tests and one-shot runs."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._rows: Dict[str, Dict[int, Row]] = {}
        self._lock = threading.Lock()

    def create_job(self, project_id, file_name, total_rows):
        job = Job(project_id=project_id, file_name=file_name or "", total_rows=total_rows)
        with self._lock:
            self._jobs[job.id] = job
            self._rows[job.id] = {}
        return copy.deepcopy(job)

    def get_job(self, job_id):
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    def update_job_status(self, job_id, status=None, completed_rows=None, failed_rows=None, total_cost=None,
                          completed_at=None):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            apply_job_update(job, status, completed_rows, failed_rows, total_cost, completed_at)
            return copy.deepcopy(job)

    def add_result(self, row):
        with self._lock:
            if row.job_id not in self._jobs:
                raise JobNotFoundError(f"Job not found: {row.job_id}")
            self._rows[row.job_id][row.row_index] = copy.deepcopy(row)
        return copy.deepcopy(row)

    def list_results(self, job_id):
        with self._lock:
            rows = self._rows.get(job_id, {})
            return [copy.deepcopy(rows[i]) for i in sorted(rows)]

    def list_jobs(self, project_id=None):
        with self._lock:
            jobs = [copy.deepcopy(j) for j in self._jobs.values()
                    if project_id is None or j.project_id == project_id]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)


#=============================================================================
# File-backed store
#=============================================================================

class FileJobStore(JobStore):
    """
    Durable store keeping one directory per job under `root`.

    Job records are rewritten atomically; row results are appended to a
    JSON Lines file and compacted when read.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self._lock = threading.Lock()
        try:
            ensure_output_path(self.root, description="Job state directory")
        except OSError as e:
            raise JobStoreError(f"Cannot create job state directory {mask_path(self.root)}: {e}") from e

    def _job_dir(self, job_id: str) -> Path:
        return self.root / job_id

    def _read_job(self, job_id: str) -> Optional[Job]:
        path = self._job_dir(job_id) / JOB_FILENAME
        if not path.exists():
            return None
        try:
            return Job.from_dict(read_json(path))
        except (OSError, ValueError, TypeError, KeyError) as e:
            raise JobStoreError(f"Cannot read job record {mask_path(path)}: {e}") from e

    def _write_job(self, job: Job):
        path = self._job_dir(job.id) / JOB_FILENAME
        try:
            write_json(job.to_dict(), path)
        except OSError as e:
            raise JobStoreError(f"Cannot write job record {mask_path(path)}: {e}") from e

    def create_job(self, project_id, file_name, total_rows):
        job = Job(project_id=project_id, file_name=file_name or "", total_rows=total_rows)
        with self._lock:
            try:
                self._job_dir(job.id).mkdir(parents=True, exist_ok=False)
                (self._job_dir(job.id) / RESULTS_FILENAME).touch()
            except OSError as e:
                raise JobCreationError(f"Cannot create job directory for {job.id}: {e}") from e
            self._write_job(job)
        logging.debug(f"Created job {job.id} in {mask_path(self.root)}")
        return job

    def get_job(self, job_id):
        with self._lock:
            return self._read_job(job_id)

    def update_job_status(self, job_id, status=None, completed_rows=None, failed_rows=None, total_cost=None,
                          completed_at=None):
        with self._lock:
            job = self._read_job(job_id)
            if job is None:
                raise JobNotFoundError(f"Job not found: {job_id}")
            apply_job_update(job, status, completed_rows, failed_rows, total_cost, completed_at)
            self._write_job(job)
            return job

    def add_result(self, row):
        with self._lock:
            results_path = self._job_dir(row.job_id) / RESULTS_FILENAME
            if not results_path.exists():
                raise JobNotFoundError(f"Job not found: {row.job_id}")
            try:
                write_jsonl([row.to_dict()], results_path, append=True)
            except OSError as e:
                raise JobStoreError(f"Cannot append result to {mask_path(results_path)}: {e}") from e
        return copy.deepcopy(row)

    def list_results(self, job_id):
        with self._lock:
            results_path = self._job_dir(job_id) / RESULTS_FILENAME
            if not results_path.exists():
                return []
            try:
                records = read_jsonl(results_path)
            except (OSError, ValueError) as e:
                raise JobStoreError(f"Cannot read results {mask_path(results_path)}: {e}") from e
        rows = {}
        for record in records:
            rows[record['row_index']] = record
        return [Row.from_dict(rows[i]) for i in sorted(rows)]

    def list_jobs(self, project_id=None):
        jobs = []
        with self._lock:
            for job_file in self.root.glob(f"*/{JOB_FILENAME}"):
                job = self._read_job(job_file.parent.name)
                if job is not None and (project_id is None or job.project_id == project_id):
                    jobs.append(job)
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)
