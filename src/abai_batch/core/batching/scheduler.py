# -*- coding: utf-8 -*-

"""
Batch scheduler: owns the lifecycle of batch jobs.

A job run has two coroutines. The dispatcher admits pending rows through
the concurrency limiter and spawns one row processor task per admitted
row. The scheduler loop consumes row outcomes from a queue and is the only
writer of the job's aggregates: it persists each row result and the job
counters, then notifies progress subscribers.
"""

import json
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from ..providers.base import CacheOptions, ProviderError
from ..providers.registry import ProviderRegistry, create_default_registry
from ..providers.routing import parse_model_id
from ..utils.settings import EngineSettings
from .limiter import AcquireCancelled, ConcurrencyLimiter
from .models import (
    BatchEngineError,
    Job,
    JobCreationError,
    JobFailedError,
    JobNotFoundError,
    JobStatus,
    JobStoreError,
    ProgressEvent,
    Row,
    RowStatus,
)
from .pricing import PricingTable
from .processor import RowOutcome, RowProcessor
from .store import FileJobStore, JobStore


ProgressCallback = Callable[[ProgressEvent], None]

# Put on the outcome queue by the dispatcher once it stops admitting rows
_DISPATCH_DONE = object()


@dataclass(eq=False)
class _JobRun:
    job: Job
    rows: List[Row]
    limiter: ConcurrencyLimiter
    task: Optional[asyncio.Task] = None
    cancel_requested: bool = False
    fatal_error: Optional[Exception] = None
    admitted: int = 0
    workers: Set[asyncio.Task] = field(default_factory=set)

    @property
    def stopping(self) -> bool:
        return self.cancel_requested or self.fatal_error is not None


def build_rows(job_id: str, rows: List[dict]) -> List[Row]:
    """
    Validate submission rows and turn them into pending `Row` records.

    Args:
        job_id (str): Owning job.
        rows (list): Dicts with 'prompt' and 'model' keys and the optional keys
            'id', 'system_prompt' (or 'system'), 'temperature', 'json_mode',
            'json_schema' (string or object) and 'data' (template variables).

    Returns:
        list: Rows indexed by their position.

    Raises:
        ValueError: If a row has no prompt or no model.
    """
    result = []
    for index, item in enumerate(rows):
        prompt = item.get('prompt')
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError(f"Row {index}: missing prompt")
        model = item.get('model')
        if not isinstance(model, str) or not model.strip():
            raise ValueError(f"Row {index}: missing model")

        json_schema = item.get('json_schema')
        if isinstance(json_schema, dict):
            json_schema = json.dumps(json_schema)

        result.append(Row(
            job_id=job_id,
            row_index=index,
            id=str(item.get('id') or ''),
            prompt=prompt,
            model_id=model.strip(),
            original_data=dict(item.get('data') or {}),
            system_prompt=item.get('system_prompt', item.get('system')) or None,
            temperature=item.get('temperature'),
            json_mode=bool(item.get('json_mode', False)),
            json_schema=json_schema or None,
        ))
    return result


def _consume_result(task: asyncio.Task):
    # Failures of jobs nobody waits for are already logged by the job run
    if not task.cancelled():
        task.exception()


class BatchScheduler:
    """
    Runs batch jobs on the current event loop.

    Args:
        store (JobStore): Job state store.
        processor (RowProcessor): Executes single rows.
        concurrency (int): Maximum number of in-flight rows per job (1 to 10).
        provider_limits (dict | None): Optional per-provider caps.
        limiter_factory (callable | None): Builds the limiter of each job run.
            Defaults to a `ConcurrencyLimiter` with the caps above.
    """

    def __init__(
            self,
            store: JobStore,
            processor: RowProcessor,
            concurrency: int = 3,
            provider_limits: Optional[Dict[str, int]] = None,
            limiter_factory: Optional[Callable[[], ConcurrencyLimiter]] = None
        ):
        self.store = store
        self.processor = processor
        self.concurrency = concurrency
        self.provider_limits = provider_limits or {}
        self._limiter_factory = limiter_factory or (
            lambda: ConcurrencyLimiter(self.concurrency, self.provider_limits)
        )
        self._runs: Dict[str, _JobRun] = {}
        self._subscribers: List[ProgressCallback] = []

    #=========================================================================
    # Progress events
    #=========================================================================

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """
        Register a progress callback.

        Returns:
            callable: Call it to unsubscribe.
        """
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return unsubscribe

    def _emit(self, job: Job, row: Optional[Row] = None):
        event = ProgressEvent.from_job(job, row)
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logging.exception(f"Progress subscriber failed for job {job.id}")

    #=========================================================================
    # Submission
    #=========================================================================

    async def submit_batch(self, project_id: str, rows: List[dict], file_name: Optional[str] = None) -> str:
        """
        Create a job for `rows` and start running it in the background.

        Args:
            project_id (str): Project the job belongs to.
            rows (list): Submission rows, see `build_rows`.
            file_name (str | None): Origin label of the rows.

        Returns:
            str: The job id.

        Raises:
            ValueError: If a row is invalid.
            JobCreationError: If the job or its rows cannot be persisted.
        """
        # Validated before anything is persisted
        build_rows("", rows)

        try:
            job = self.store.create_job(project_id, file_name or "", len(rows))
        except Exception as e:
            raise JobCreationError(f"Cannot create job record: {e}") from e

        job_rows = build_rows(job.id, rows)
        try:
            for row in job_rows:
                self.store.add_result(row)
            self._set_status(job, JobStatus.RUNNING)
        except Exception as e:
            self._fail_quietly(job)
            raise JobCreationError(f"Cannot persist rows of job {job.id}: {e}") from e

        logging.info(f"Job {job.id} submitted with {len(job_rows)} rows")
        self._start(job, job_rows)
        return job.id

    async def run_batch(self, project_id: str, rows: List[dict], file_name: Optional[str] = None) -> Job:
        """Submit a batch and wait for it to finish."""
        job_id = await self.submit_batch(project_id, rows, file_name)
        return await self.wait(job_id)

    def _start(self, job: Job, rows: List[Row]):
        run = _JobRun(job=job, rows=rows, limiter=self._limiter_factory())
        self._runs[job.id] = run
        run.task = asyncio.create_task(self._execute(run), name=f"job-{job.id}")
        run.task.add_done_callback(_consume_result)

    async def wait(self, job_id: str) -> Job:
        """
        Wait for a job started by this scheduler to finish.

        Returns:
            Job: Final job record. For jobs not running here, the stored record.

        Raises:
            JobFailedError: If the job failed.
            JobNotFoundError: If the job is unknown.
        """
        run = self._runs.get(job_id)
        if run is not None:
            return await asyncio.shield(run.task)
        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        return job

    def is_active(self, job_id: str) -> bool:
        run = self._runs.get(job_id)
        return run is not None and not run.task.done()

    #=========================================================================
    # Cancellation
    #=========================================================================

    def cancel(self, job_id: str) -> bool:
        """
        Request cancellation of a job.

        In-flight rows finish; rows not admitted yet stay pending. A job that
        is not running in this scheduler but is not terminal either (an
        interrupted job) is marked cancelled directly, and its stored
        in-flight rows go back to pending.

        Returns:
            bool: False if the job was already terminal.

        Raises:
            JobNotFoundError: If the job is unknown.
        """
        run = self._runs.get(job_id)
        if run is not None and not run.task.done():
            if not run.cancel_requested:
                logging.info(f"Cancelling job {job_id}")
                run.cancel_requested = True
                run.limiter.cancel()
            return True

        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        if job.is_terminal:
            return False
        # In-flight rows of an interrupted job lost their attempt
        for row in self.store.list_results(job_id):
            if row.status is RowStatus.IN_FLIGHT:
                row.reset_for_resume()
                self.store.add_result(row)
        self._set_status(job, JobStatus.CANCELLED)
        logging.info(f"Job {job_id} cancelled")
        return True

    #=========================================================================
    # Execution
    #=========================================================================

    def _set_status(self, job: Job, status: JobStatus):
        previous = (job.status, job.completed_at)
        job.transition(status)
        try:
            self.store.update_job_status(
                job.id,
                status=status,
                completed_rows=job.completed_rows,
                failed_rows=job.failed_rows,
                total_cost=job.total_cost,
                completed_at=job.completed_at,
            )
        except Exception:
            # The stored status did not change
            job.status, job.completed_at = previous
            raise
        self._emit(job)

    def _fail_quietly(self, job: Job):
        """Mark a job failed, best effort."""
        if job.is_terminal:
            return
        try:
            self._set_status(job, JobStatus.FAILED)
        except Exception as e:
            logging.error(f"Could not persist failed status of job {job.id}: {e}")
            job.transition(JobStatus.FAILED)
            self._emit(job)

    async def _dispatch(self, run: _JobRun, outcomes: asyncio.Queue):
        try:
            for row in run.rows:
                if row.status is not RowStatus.PENDING:
                    continue
                if run.stopping:
                    break
                try:
                    provider = parse_model_id(row.model_id)[0].value
                except ProviderError:
                    provider = None  # the processor reports the routing error

                try:
                    permit = await run.limiter.acquire(provider)
                except AcquireCancelled:
                    break
                if run.stopping:
                    run.limiter.release(permit)
                    break

                try:
                    row.mark_in_flight()
                    self.store.add_result(row)
                except Exception:
                    run.limiter.release(permit)
                    raise

                run.admitted += 1
                worker = asyncio.create_task(self.processor.run(row, permit, run.limiter, outcomes))
                run.workers.add(worker)
                worker.add_done_callback(run.workers.discard)
        except Exception as e:
            self._mark_fatal(run, e)
        finally:
            await outcomes.put(_DISPATCH_DONE)

    def _mark_fatal(self, run: _JobRun, error: Exception):
        if run.fatal_error is None:
            if not isinstance(error, BatchEngineError):
                error = JobStoreError(str(error))
            logging.error(f"Job {run.job.id} hit a fatal error: {error}")
            run.fatal_error = error
            run.limiter.cancel()

    def _record(self, run: _JobRun, outcome: RowOutcome):
        job = run.job
        row = outcome.row
        job.record_outcome(row)
        if run.fatal_error is None:
            try:
                self.store.add_result(row)
                self.store.update_job_status(
                    job.id,
                    completed_rows=job.completed_rows,
                    failed_rows=job.failed_rows,
                    total_cost=job.total_cost,
                )
            except Exception as e:
                self._mark_fatal(run, e)
        self._emit(job, row)

    async def _execute(self, run: _JobRun) -> Job:
        job = run.job
        outcomes = asyncio.Queue()
        dispatcher = asyncio.create_task(self._dispatch(run, outcomes))

        try:
            reported = 0
            dispatch_done = False
            while not (dispatch_done and reported == run.admitted):
                item = await outcomes.get()
                if item is _DISPATCH_DONE:
                    dispatch_done = True
                    continue
                reported += 1
                self._record(run, item)

            if run.fatal_error is None:
                final_status = JobStatus.CANCELLED if run.cancel_requested else JobStatus.COMPLETED
                try:
                    self._set_status(job, final_status)
                except Exception as e:
                    self._mark_fatal(run, e)
        except asyncio.CancelledError:
            # Interrupted: the job stays running in the store and can be resumed
            dispatcher.cancel()
            for worker in list(run.workers):
                worker.cancel()
            logging.warning(f"Job {job.id} interrupted")
            raise
        except Exception as e:
            logging.exception(f"Unexpected error while running job {job.id}")
            self._mark_fatal(run, e)
            for worker in list(run.workers):
                worker.cancel()

        if run.fatal_error is not None:
            self._fail_quietly(job)
            raise JobFailedError(job.id, str(run.fatal_error)) from run.fatal_error

        if job.failed_rows:
            logging.info(f"Job {job.id} {job.status.value} with errors: "
                         f"{job.completed_rows} succeeded, {job.failed_rows} failed, ${job.total_cost:.4f}")
        else:
            logging.info(f"Job {job.id} {job.status.value}: {job.completed_rows} succeeded, ${job.total_cost:.4f}")
        return job

    #=========================================================================
    # Resume
    #=========================================================================

    async def resume(self, job_id: str) -> Job:
        """
        Resume an interrupted job and wait for it to finish.

        Rows left in-flight by the interruption are run again; terminal rows
        are kept, and the job aggregates are recomputed from them.

        Returns:
            Job: Final job record (unchanged if the job was already terminal).

        Raises:
            JobNotFoundError: If the job is unknown.
            JobFailedError: If the job failed.
        """
        if self.is_active(job_id):
            return await self.wait(job_id)

        job = self.store.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        if job.is_terminal:
            logging.info(f"Job {job_id} is already {job.status.value}, nothing to resume")
            return job

        rows = self.store.list_results(job_id)
        if len(rows) != job.total_rows:
            self._fail_quietly(job)
            raise JobFailedError(job_id, f"only {len(rows)} of {job.total_rows} rows were persisted")

        for row in rows:
            if row.status is RowStatus.IN_FLIGHT:
                row.reset_for_resume()
                self.store.add_result(row)

        job.completed_rows = 0
        job.failed_rows = 0
        job.total_cost = 0.0
        for row in rows:
            if row.is_terminal:
                job.record_outcome(row)

        if job.status is JobStatus.PENDING:
            self._set_status(job, JobStatus.RUNNING)
        else:
            self.store.update_job_status(
                job.id,
                completed_rows=job.completed_rows,
                failed_rows=job.failed_rows,
                total_cost=job.total_cost,
            )
        pending = sum(1 for r in rows if r.status is RowStatus.PENDING)
        logging.info(f"Resuming job {job_id}: {pending} rows pending, {job.finished_rows} already finished")

        self._start(job, rows)
        return await self.wait(job_id)

    async def resume_interrupted(self, project_id: Optional[str] = None) -> List[Job]:
        """
        Resume every non-terminal job of the store that is not running here.

        Jobs that fail are reported in the log and returned with their
        stored (failed) record.

        Returns:
            list: Final job records.
        """
        jobs = [j for j in self.store.list_jobs(project_id)
                if not j.is_terminal and not self.is_active(j.id)]
        if not jobs:
            logging.info("No interrupted jobs to resume")
            return []

        results = []
        for job in jobs:
            try:
                results.append(await self.resume(job.id))
            except JobFailedError as e:
                logging.error(str(e))
                results.append(self.store.get_job(job.id) or job)
        return results


def create_scheduler(
        settings: Optional[EngineSettings] = None,
        store: Optional[JobStore] = None,
        registry: Optional[ProviderRegistry] = None,
        pricing: Optional[PricingTable] = None
    ) -> BatchScheduler:
    """
    Build a scheduler wired from engine settings.

    Args:
        settings (EngineSettings | None): Defaults to `EngineSettings()`.
        store (JobStore | None): Defaults to a `FileJobStore` in the settings' state directory.
        registry (ProviderRegistry | None): Defaults to one adapter per provider,
            with API keys from the environment.
        pricing (PricingTable | None): Defaults to the settings' pricing file.

    Returns:
        BatchScheduler: The scheduler.
    """
    settings = settings or EngineSettings()
    if registry is None:
        pricing = pricing or PricingTable.load(settings.pricing_file)
        registry = create_default_registry(pricing, max_output_tokens=settings.max_output_tokens)
    if store is None:
        store = FileJobStore(settings.resolved_state_dir)

    processor = RowProcessor(
        registry,
        max_retries=settings.max_retries,
        request_timeout=settings.request_timeout,
        backoff_min=settings.backoff_min,
        backoff_max=settings.backoff_max,
        cache=CacheOptions(enabled=settings.enable_prompt_caching, ttl=settings.cache_ttl),
        max_output_tokens=settings.max_output_tokens,
    )
    return BatchScheduler(
        store,
        processor,
        concurrency=settings.concurrency,
        provider_limits=settings.provider_limits,
    )
