# -*- coding: utf-8 -*-

"""
Data model for batch jobs: jobs, rows, progress events and the
job-level error hierarchy.
"""

import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES


class RowStatus(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in-flight"
    SUCCESS = "success"
    ERROR_API = "error-api"
    ERROR_MISSING_KEY = "error-missing-key"
    ERROR_INVALID_RESPONSE = "error-invalid-response"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_ROW_STATUSES

    @property
    def is_error(self) -> bool:
        return self.is_terminal and self is not RowStatus.SUCCESS


TERMINAL_JOB_STATUSES = frozenset({
    JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED
})
TERMINAL_ROW_STATUSES = frozenset({
    RowStatus.SUCCESS,
    RowStatus.ERROR_API,
    RowStatus.ERROR_MISSING_KEY,
    RowStatus.ERROR_INVALID_RESPONSE,
})

# One-way lifecycle: pending -> running -> {completed, failed, cancelled}
_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.RUNNING, JobStatus.FAILED, JobStatus.CANCELLED},
    JobStatus.RUNNING: {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED},
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


#=============================================================================
# Errors
#=============================================================================

class BatchEngineError(Exception):
    """Base class for job-level errors raised by the batch engine."""


class JobNotFoundError(BatchEngineError):
    pass


class JobCreationError(BatchEngineError):
    """The job record (or its rows) could not be created."""


class JobStoreError(BatchEngineError):
    """The job state store failed to read or persist a record."""


class JobFailedError(BatchEngineError):
    """A job hit a fatal, job-level error and was marked as failed."""

    def __init__(self, job_id: str, message: str):
        super().__init__(f"Job {job_id} failed: {message}")
        self.job_id = job_id


class InvalidJobTransition(BatchEngineError):
    pass


class RowAlreadyFinalized(BatchEngineError):
    pass


class InputParseError(BatchEngineError):
    """The batch input file cannot be parsed at all."""


#=============================================================================
# Entities
#=============================================================================

@dataclass
class Job:
    """A collection of rows submitted together and tracked as one unit."""
    project_id: str
    file_name: str = ""
    total_rows: int = 0
    id: str = field(default_factory=new_id)
    status: JobStatus = JobStatus.PENDING
    completed_rows: int = 0
    failed_rows: int = 0
    total_cost: float = 0.0
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def finished_rows(self) -> int:
        return self.completed_rows + self.failed_rows

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(self, status: JobStatus):
        """
        Move the job to a new status, enforcing the one-way lifecycle.

        Raises:
            InvalidJobTransition: If the transition is not allowed.
        """
        status = JobStatus(status)
        if status not in _ALLOWED_TRANSITIONS.get(self.status, set()):
            raise InvalidJobTransition(
                f"Job {self.id} cannot go from '{self.status.value}' to '{status.value}'"
            )
        self.status = status
        if status.is_terminal and self.completed_at is None:
            self.completed_at = utcnow()

    def record_outcome(self, row: "Row"):
        """Fold one terminal row outcome into the aggregate counters."""
        if not row.status.is_terminal:
            raise ValueError(f"Row {row.row_index} is not terminal ({row.status.value})")
        if row.status is RowStatus.SUCCESS:
            self.completed_rows += 1
        else:
            self.failed_rows += 1
        self.total_cost += row.cost
        if self.finished_rows > self.total_rows:
            raise ValueError(
                f"Job {self.id} counted {self.finished_rows} outcomes for {self.total_rows} rows"
            )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        data["created_at"] = self.created_at.isoformat()
        data["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Job":
        data = dict(data)
        data["status"] = JobStatus(data.get("status", "pending"))
        data["created_at"] = _parse_datetime(data.get("created_at")) or utcnow()
        data["completed_at"] = _parse_datetime(data.get("completed_at"))
        return cls(**data)


@dataclass
class Row:
    """One unit of work in a batch job: a prompt targeted at one model."""
    job_id: str
    row_index: int
    prompt: str
    model_id: str
    id: str = ""
    original_data: dict = field(default_factory=dict)
    system_prompt: Optional[str] = None
    temperature: Optional[float] = None
    json_mode: bool = False
    json_schema: Optional[str] = None
    status: RowStatus = RowStatus.PENDING
    response: Optional[str] = None
    cost: float = 0.0
    tokens_in: int = 0
    tokens_out: int = 0
    latency_ms: int = 0
    attempts: int = 0
    error_message: Optional[str] = None

    def __post_init__(self):
        self.status = RowStatus(self.status)
        if not self.id:
            self.id = f"row-{self.row_index + 1}"

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def mark_in_flight(self):
        if self.is_terminal:
            raise RowAlreadyFinalized(f"Row {self.row_index} of job {self.job_id} is already {self.status.value}")
        self.status = RowStatus.IN_FLIGHT

    def reset_for_resume(self):
        """An in-flight row found after a restart lost its attempt; run it again."""
        if self.status is RowStatus.IN_FLIGHT:
            self.status = RowStatus.PENDING
            self.attempts = 0

    def succeed(self, response: str, tokens_in: int, tokens_out: int, cost: float, latency_ms: int):
        self._ensure_open()
        self.status = RowStatus.SUCCESS
        self.response = response
        self.tokens_in = tokens_in
        self.tokens_out = tokens_out
        self.cost = cost
        self.latency_ms = latency_ms
        self.error_message = None

    def fail(self, status: RowStatus, message: str, latency_ms: int = 0):
        status = RowStatus(status)
        if not status.is_error:
            raise ValueError(f"'{status.value}' is not an error status")
        self._ensure_open()
        self.status = status
        self.error_message = message
        self.latency_ms = latency_ms

    def _ensure_open(self):
        if self.is_terminal:
            raise RowAlreadyFinalized(f"Row {self.row_index} of job {self.job_id} is already {self.status.value}")

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Row":
        return cls(**data)


@dataclass
class ProgressEvent:
    """Snapshot of a job's aggregates, emitted to progress subscribers."""
    job_id: str
    completed_rows: int
    failed_rows: int
    total_rows: int
    total_cost: float
    status: JobStatus
    row: Optional[Row] = None

    @classmethod
    def from_job(cls, job: Job, row: Optional[Row] = None) -> "ProgressEvent":
        return cls(
            job_id=job.id,
            completed_rows=job.completed_rows,
            failed_rows=job.failed_rows,
            total_rows=job.total_rows,
            total_cost=job.total_cost,
            status=job.status,
            row=row,
        )

    @property
    def percentage(self) -> float:
        if not self.total_rows:
            return 100.0
        return (self.completed_rows + self.failed_rows) / self.total_rows * 100


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)
