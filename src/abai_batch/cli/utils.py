# -*- coding: utf-8 -*-

import signal
import asyncio
import logging
from pathlib import Path

import click
from tqdm.auto import tqdm

from ..core.batching.models import (
    BatchEngineError,
    InputParseError,
    Job,
    JobFailedError,
    ProgressEvent,
)
from ..core.batching.parse import read_input_rows
from ..core.batching.scheduler import BatchScheduler, create_scheduler
from ..core.batching.summary import export_results, format_job_summary, get_job_summary_dict, save_job_summary
from ..core.providers.base import InvalidRequestError
from ..core.providers.routing import parse_model_id
from ..core.utils.clients import validate_required_env_vars
from ..core.utils.misc import mask_path


def setup_logging(verbose=False, quiet=False):
    """Configure logging for CLI execution."""
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    # Configure root logger
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True  # Override any existing configuration
    )

    # Reduce noise from external libraries in non-verbose mode
    if not verbose:
        for name in ("urllib3", "httpx", "openai", "anthropic", "google_genai"):
            logging.getLogger(name).setLevel(logging.WARNING)

    if verbose:
        logger = logging.getLogger(__name__)
        logger.debug("CLI logging setup completed")


def _validate_positive_integer_callback(ctx, param, value):
    """Validate that the provided value is a positive integer."""
    if value is not None and value <= 0:
        raise click.BadParameter("Value must be a positive integer.")
    return value


def _validate_non_negative_integer_callback(ctx, param, value):
    if value is not None and value < 0:
        raise click.BadParameter("Value must be zero or a positive integer.")
    return value


def _validate_positive_number_callback(ctx, param, value):
    if value is not None and value <= 0:
        raise click.BadParameter("Value must be a positive number.")
    return value


#=======================================================================
# Input Utilities
#=======================================================================

def _read_rows_or_exit(input_file, models=()) -> list:
    """
    Read submission rows from an input file.

    A single model fills rows without a 'model' value; several models run
    every row against each of them. The program ends if nothing can be run.
    """
    models = list(models)
    default_model = models[0] if len(models) == 1 else None
    try:
        rows, errors = read_input_rows(
            input_file,
            default_model=default_model,
            models=models if len(models) > 1 else None
        )
    except (FileNotFoundError, InputParseError) as e:
        logging.error(str(e))
        raise SystemExit(1)

    if not rows:
        logging.error(f"No valid rows found in {mask_path(input_file)}")
        raise SystemExit(1)

    without_model = [row['id'] for row in rows if not row.get('model')]
    if without_model:
        logging.error(f"{len(without_model)} rows have no model (first: {without_model[0]}). "
                      "Add a 'model' column or pass --model.")
        raise SystemExit(1)

    if errors:
        logging.warning(f"{len(errors)} rows were rejected and will not be submitted")
    return rows


def _warn_missing_api_keys(rows):
    """Warn about providers used by `rows` whose API key is not set."""
    providers = set()
    for row in rows:
        try:
            providers.add(parse_model_id(row['model'])[0].value)
        except InvalidRequestError:
            continue
    missing = validate_required_env_vars(sorted(providers))
    if missing:
        logging.warning(f"Missing API keys: {', '.join(missing)}. "
                        "Rows for these providers will fail with error-missing-key.")
        logging.info("Set them in your environment or in a .env file, e.g.:")
        for var in missing:
            logging.info(f"$ export {var}=your_key_here")


#=======================================================================
# Scheduler Utilities
#=======================================================================

def _create_scheduler_or_exit(settings) -> BatchScheduler:
    try:
        return create_scheduler(settings)
    except (BatchEngineError, FileNotFoundError, ValueError) as e:
        logging.error(f"Could not set up the batch engine: {e}")
        raise SystemExit(1)


def _get_job_or_exit(store, job_id) -> Job:
    job = store.get_job(job_id)
    if job is None:
        logging.error(f"Job '{job_id}' not found. Use 'list-jobs' to see available jobs.")
        raise SystemExit(1)
    return job


class ProgressBar:
    """Renders the progress events of one job on a tqdm bar."""

    def __init__(self, job_id: str, total: int, initial: int = 0):
        self.job_id = job_id
        self.bar = tqdm(total=total, initial=initial, desc=f"Job {job_id[:8]}", unit="row")

    def __call__(self, event: ProgressEvent):
        if event.job_id != self.job_id:
            return
        finished = event.completed_rows + event.failed_rows
        if finished > self.bar.n:
            self.bar.update(finished - self.bar.n)
        self.bar.set_postfix(ok=event.completed_rows, failed=event.failed_rows,
                             cost=f"${event.total_cost:.4f}")

    def close(self):
        self.bar.close()


async def _watch_job(scheduler: BatchScheduler, job_id: str, total: int, start, initial: int = 0) -> Job:
    """
    Await `start()` while rendering progress for `job_id`.

    The first Ctrl-C requests cooperative cancellation of the job. After
    that the default handler is restored, so a second Ctrl-C interrupts the
    process and leaves the job resumable.
    """
    progress = ProgressBar(job_id, total, initial=initial)
    unsubscribe = scheduler.subscribe(progress)
    loop = asyncio.get_running_loop()

    def request_cancel():
        logging.warning("Cancellation requested; waiting for in-flight rows "
                        "(press Ctrl-C again to interrupt)")
        loop.remove_signal_handler(signal.SIGINT)
        scheduler.cancel(job_id)

    try:
        loop.add_signal_handler(signal.SIGINT, request_cancel)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        # Not supported on this platform or outside the main thread
        handler_installed = False

    try:
        return await start()
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        unsubscribe()
        progress.close()


async def _submit_and_watch(scheduler: BatchScheduler, project_id: str, rows: list, file_name: str) -> Job:
    job_id = await scheduler.submit_batch(project_id, rows, file_name)
    logging.info(f"Submitted job {job_id} ({len(rows)} rows)")
    return await _watch_job(scheduler, job_id, len(rows), lambda: scheduler.wait(job_id))


async def _resume_and_watch(scheduler: BatchScheduler, job: Job) -> Job:
    return await _watch_job(
        scheduler, job.id, job.total_rows,
        lambda: scheduler.resume(job.id),
        initial=job.finished_rows
    )


def _run_job_or_exit(coro) -> Job:
    try:
        return asyncio.run(coro)
    except JobFailedError as e:
        logging.error(str(e))
        raise SystemExit(1)
    except (BatchEngineError, ValueError) as e:
        logging.error(f"Could not run job: {e}")
        raise SystemExit(1)


#=======================================================================
# Report Utilities
#=======================================================================

def _describe_status(job: Job) -> str:
    if job.status.value == 'completed' and job.failed_rows:
        return 'completed with errors'
    return job.status.value


def _report_job(store, job: Job, output=None, file_type=None):
    """Print the summary of a finished job and optionally export its results."""
    rows = store.list_results(job.id)
    click.echo(format_job_summary(get_job_summary_dict(job, rows)))

    if output:
        output = Path(output)
        try:
            export_results(rows, output, file_type=file_type)
        except ValueError as e:
            logging.error(str(e))
            raise SystemExit(1)
        save_job_summary(job, rows, output.with_name(f"{output.stem}_summary.txt"), save_dict=True)

    if job.status.value == 'cancelled':
        pending = sum(1 for row in rows if not row.is_terminal)
        logging.warning(f"Job {job.id} was cancelled with {pending} rows not processed")
