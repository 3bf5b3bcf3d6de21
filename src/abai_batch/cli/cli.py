# -*- coding: utf-8 -*-

import sys
import click
import logging
from dataclasses import asdict
from pathlib import Path

from ..core.batching.models import JobStatus
from ..core.batching.native import (
    cancel_native_batch,
    check_native_batch_status,
    retrieve_native_batch_results,
    submit_native_batch,
)
from ..core.batching.pricing import PricingTable, estimate_batch_cost, format_cost
from ..core.batching.summary import export_results, format_job_summary, get_job_summary_dict, save_job_summary
from ..core.utils.clients import create_openai_client
from ..core.utils.misc import mask_path, write_jsonl
from ..core.utils.settings import load_settings
from .utils import (
    setup_logging,
    _validate_positive_integer_callback,
    _validate_non_negative_integer_callback,
    _validate_positive_number_callback,
    _read_rows_or_exit,
    _warn_missing_api_keys,
    _create_scheduler_or_exit,
    _get_job_or_exit,
    _submit_and_watch,
    _resume_and_watch,
    _run_job_or_exit,
    _describe_status,
    _report_job,
)


EXPORT_FILE_TYPES = click.Choice(['jsonl', 'csv', 'parquet'], case_sensitive=False)


@click.group()
@click.option(
    '-v', '--verbose', is_flag=True,
    help='Enable verbose (DEBUG) logging'
)
@click.option(
    '-q', '--quiet', is_flag=True,
    help='Only show warnings and errors'
)
@click.option(
    '--config', 'config_file', type=click.Path(dir_okay=False), default=None,
    help='Settings file (YAML). Defaults to config.yaml in the user config directory.'
)
@click.option(
    '--state-dir', type=click.Path(file_okay=False), default=None,
    help='Directory where jobs and row results are persisted.'
)
@click.pass_context
def cli(ctx, verbose, quiet, config_file, state_dir):
    """
    ABAI Batch CLI - Run batches of prompts against OpenAI, Anthropic,
    Gemini and Grok models with bounded concurrency, retries, cost
    tracking and resumable jobs.

    \b
    API keys are read from the environment (or a .env file):
    - OPENAI_API_KEY
    - ANTHROPIC_API_KEY
    - GEMINI_API_KEY (or GOOGLE_API_KEY)
    - XAI_API_KEY (or GROK_API_KEY)
    """
    # Set up logging first
    setup_logging(verbose=verbose, quiet=quiet)

    ctx.ensure_object(dict)

    # Skip checks if --help/-h is requested
    if any(arg in sys.argv for arg in ['--help', '-h']):
        return

    try:
        settings = load_settings(config_file)
    except (FileNotFoundError, ValueError, TypeError) as e:
        logging.error(f"Invalid settings: {e}")
        raise SystemExit(1)

    ctx.obj['settings'] = settings.override(state_dir=state_dir)


#=======================================================================
# Batch Jobs
#=======================================================================

@cli.command()
@click.argument('input_file', type=click.Path(exists=True, dir_okay=False))
@click.option(
    '-p', '--project', default='default', show_default=True,
    help='Project the job belongs to.'
)
@click.option(
    '-m', '--model', multiple=True, default=[],
    help=('Model id (e.g. gpt-4o-mini, anthropic/claude-sonnet-4-20250514). '
          'With one model, it is used for rows without a "model" column value. '
          'Repeat the option to run every row against each model.')
)
@click.option(
    '-c', '--concurrency', type=int, default=None,
    callback=_validate_positive_integer_callback,
    help='Maximum number of rows in flight (1 to 10).'
)
@click.option(
    '--max-retries', type=int, default=None,
    callback=_validate_non_negative_integer_callback,
    help='Retries per row on transient provider errors.'
)
@click.option(
    '--timeout', type=float, default=None,
    callback=_validate_positive_number_callback,
    help='Seconds before a provider call is abandoned.'
)
@click.option(
    '-o', '--output', type=click.Path(dir_okay=False), default=None,
    help=('Export row results to this file when the job ends. '
          'A text summary is written next to it.')
)
@click.option(
    '--file-type', type=EXPORT_FILE_TYPES, default=None,
    help='Export file type. Inferred from the output extension by default.'
)
@click.pass_context
def run(ctx, input_file, project, model, concurrency, max_retries, timeout, output, file_type):
    """
    Run a batch of prompts from a CSV, Parquet, JSON or JSONL file.

    The file needs a "prompt" column. Other recognized columns are id,
    model, system, developer, temperature, json_mode and json_schema; any
    other column can be used as a {{ template }} variable in the prompt.

    Press Ctrl-C once to cancel the job (in-flight rows still finish).

    \b
    Examples:
        abai-batch run prompts.csv -m gpt-4o-mini -o results.csv
        abai-batch run prompts.jsonl -m gpt-4o -m anthropic/claude-3-5-haiku-latest -c 6
    """
    try:
        settings = ctx.obj['settings'].override(
            concurrency=concurrency,
            max_retries=max_retries,
            request_timeout=timeout,
        )
    except ValueError as e:
        logging.error(f"Invalid options: {e}")
        raise SystemExit(1)

    rows = _read_rows_or_exit(input_file, model)
    _warn_missing_api_keys(rows)

    scheduler = _create_scheduler_or_exit(settings)
    job = _run_job_or_exit(_submit_and_watch(scheduler, project, rows, Path(input_file).name))
    _report_job(scheduler.store, job, output=output, file_type=file_type)


@cli.command()
@click.argument('job_id', required=False)
@click.option(
    '-p', '--project', default=None,
    help='Only resume interrupted jobs of this project.'
)
@click.pass_context
def resume(ctx, job_id, project):
    """
    Resume an interrupted job, or every interrupted job if JOB_ID is omitted.

    Rows that were in flight when the job was interrupted are run again.
    """
    scheduler = _create_scheduler_or_exit(ctx.obj['settings'])

    if job_id:
        job = _get_job_or_exit(scheduler.store, job_id)
        job = _run_job_or_exit(_resume_and_watch(scheduler, job))
        _report_job(scheduler.store, job)
        return

    jobs = _run_job_or_exit(scheduler.resume_interrupted(project))
    for job in jobs:
        logging.info(f"Job {job.id}: {_describe_status(job)} "
                     f"({job.completed_rows} succeeded, {job.failed_rows} failed, ${job.total_cost:.4f})")
    if any(job.status is JobStatus.FAILED for job in jobs):
        raise SystemExit(1)


@cli.command()
@click.argument('job_id')
@click.pass_context
def cancel(ctx, job_id):
    """Cancel an interrupted job that should not be resumed."""
    scheduler = _create_scheduler_or_exit(ctx.obj['settings'])
    _get_job_or_exit(scheduler.store, job_id)
    if scheduler.cancel(job_id):
        logging.info(f"Job {job_id} cancelled")
    else:
        logging.info(f"Job {job_id} already finished, nothing to cancel")


#=======================================================================
# Job Inspection
#=======================================================================

@cli.command()
@click.argument('job_id')
@click.pass_context
def status(ctx, job_id):
    """Show the status of a job."""
    scheduler = _create_scheduler_or_exit(ctx.obj['settings'])
    job = _get_job_or_exit(scheduler.store, job_id)

    percentage = job.finished_rows / job.total_rows * 100 if job.total_rows else 100.0
    click.echo(f"Job ID    : {job.id}")
    click.echo(f"Project   : {job.project_id}")
    click.echo(f"File      : {job.file_name or 'N/A'}")
    click.echo(f"Status    : {_describe_status(job)}")
    click.echo(f"Progress  : {job.finished_rows}/{job.total_rows} ({percentage:.2f}%)")
    click.echo(f"Succeeded : {job.completed_rows}")
    click.echo(f"Failed    : {job.failed_rows}")
    click.echo(f"Cost      : ${job.total_cost:.4f}")
    click.echo(f"Created   : {job.created_at.isoformat()[:19].replace('T', ' ')}")
    if job.completed_at:
        click.echo(f"Finished  : {job.completed_at.isoformat()[:19].replace('T', ' ')}")
    if not job.is_terminal:
        logging.info(f"Job is not finished. If it was interrupted, run: abai-batch resume {job.id}")


@cli.command()
@click.option(
    '-p', '--project', default=None,
    help='Only list jobs of this project.'
)
@click.option(
    '-s', '--status', 'job_status', default=None,
    type=click.Choice([s.value for s in JobStatus], case_sensitive=False),
    help='Only list jobs with this status.'
)
@click.pass_context
def list_jobs(ctx, project, job_status):
    """List jobs, newest first."""
    scheduler = _create_scheduler_or_exit(ctx.obj['settings'])
    jobs = scheduler.store.list_jobs(project)
    if job_status:
        jobs = [job for job in jobs if job.status.value == job_status.lower()]

    if not jobs:
        logging.info("No jobs found. Use 'run' command to submit one.")
        return

    logging.info(f"Found {len(jobs)} jobs in {mask_path(ctx.obj['settings'].resolved_state_dir)}:")
    for job in jobs:
        created = job.created_at.isoformat()[:19].replace('T', ' ')
        click.echo(f"{job.id}  {created}  {job.project_id:<16} {_describe_status(job):<22} "
                   f"{job.finished_rows}/{job.total_rows}  ${job.total_cost:.4f}  {job.file_name}")


@cli.command()
@click.argument('job_id')
@click.option(
    '-o', '--output', type=click.Path(dir_okay=False), required=True,
    help='File to export the row results to.'
)
@click.option(
    '--file-type', type=EXPORT_FILE_TYPES, default=None,
    help='Export file type. Inferred from the output extension by default.'
)
@click.pass_context
def results(ctx, job_id, output, file_type):
    """Export the row results of a job (JSONL, CSV or Parquet)."""
    scheduler = _create_scheduler_or_exit(ctx.obj['settings'])
    job = _get_job_or_exit(scheduler.store, job_id)
    rows = scheduler.store.list_results(job.id)
    try:
        export_results(rows, output, file_type=file_type)
    except ValueError as e:
        logging.error(str(e))
        raise SystemExit(1)


@cli.command()
@click.argument('job_id')
@click.option(
    '-o', '--output', type=click.Path(dir_okay=False), default=None,
    help='Also save the summary to this text file (and a JSON file alongside).'
)
@click.pass_context
def summary(ctx, job_id, output):
    """Show the summary of a job: row counts, tokens, latency, costs and errors."""
    scheduler = _create_scheduler_or_exit(ctx.obj['settings'])
    job = _get_job_or_exit(scheduler.store, job_id)
    rows = scheduler.store.list_results(job.id)
    if output:
        summary_dict = save_job_summary(job, rows, output, save_dict=True)
    else:
        summary_dict = get_job_summary_dict(job, rows)
    click.echo(format_job_summary(summary_dict))


#=======================================================================
# Pricing
#=======================================================================

def _load_pricing_or_exit(settings) -> PricingTable:
    try:
        return PricingTable.load(settings.pricing_file)
    except (FileNotFoundError, ValueError, KeyError) as e:
        logging.error(f"Could not load pricing table: {e}")
        raise SystemExit(1)


@cli.command()
@click.argument('input_file', type=click.Path(exists=True, dir_okay=False))
@click.option(
    '-m', '--model', multiple=True, default=[],
    help=('Expected model(s) to use. With one model, it is used for rows '
          'without a "model" value. Repeat the option to estimate every row '
          'against each model.')
)
@click.option(
    '--with-output', is_flag=True, default=False,
    help=('Include output tokens, assuming every completion uses the full '
          'max_output_tokens (upper bound).')
)
@click.pass_context
def estimate(ctx, input_file, model, with_output):
    """Estimate the cost of running a batch, without calling any provider."""
    settings = ctx.obj['settings']
    rows = _read_rows_or_exit(input_file, model)
    pricing = _load_pricing_or_exit(settings)

    logging.info("Calculating cost estimate...")
    estimation = estimate_batch_cost(
        rows, pricing,
        max_output_tokens=settings.max_output_tokens if with_output else None
    )
    for model_id, cost in sorted(estimation.by_model().items()):
        n_rows = sum(1 for row in estimation.per_row if row.model_id == model_id)
        tokens = sum(row.tokens_in for row in estimation.per_row if row.model_id == model_id)
        click.echo(f"{model_id}: {n_rows} rows, {tokens:,} input tokens, {format_cost(cost)}")
    click.echo(f"Estimated total cost: ${estimation.total_usd:.4f}"
               + (" (upper bound)" if with_output else " (input tokens only)"))


@cli.command()
@click.option(
    '--provider', default=None,
    type=click.Choice(['openai', 'anthropic', 'gemini', 'grok'], case_sensitive=False),
    help='Only list models of this provider.'
)
@click.pass_context
def models(ctx, provider):
    """List known models and their prices (USD per 1M tokens)."""
    pricing = _load_pricing_or_exit(ctx.obj['settings'])
    listed = pricing.models_for(provider.lower()) if provider else pricing.models
    for model in listed:
        if model.pricing.available:
            prices = f"in ${model.pricing.prompt:g} / out ${model.pricing.completion:g}"
            if model.pricing.cache_read:
                prices += f" / cache read ${model.pricing.cache_read:g}"
        else:
            prices = "pricing not available"
        click.echo(f"{model.full_id:<45} {prices}")


#=======================================================================
# Native OpenAI Batch API
#=======================================================================

@cli.group()
@click.pass_context
def native(ctx):
    """
    Native OpenAI Batch API (OpenAI models only, half price, results
    within 24h). These batches are not tracked as jobs.
    """
    if any(arg in sys.argv for arg in ['--help', '-h']):
        return
    try:
        ctx.obj['client'] = create_openai_client()
    except ValueError as e:
        logging.error(f"Error creating OpenAI client: {e}")
        logging.info("Set OPENAI_API_KEY in your environment or in a .env file.")
        raise SystemExit(1)


@native.command('submit')
@click.argument('input_file', type=click.Path(exists=True, dir_okay=False))
@click.option(
    '-m', '--model', multiple=True, default=[],
    help='OpenAI model(s) to use, as in the run command.'
)
@click.option(
    '-w', '--workdir', type=click.Path(file_okay=False), required=True,
    help='Folder where the request file and batch metadata are written.'
)
@click.option(
    '--description', default=None,
    help='Description stored in the batch metadata.'
)
@click.pass_context
def native_submit(ctx, input_file, model, workdir, description):
    """Submit a file of prompts as a native OpenAI batch."""
    rows = _read_rows_or_exit(input_file, model)
    try:
        batch_id = submit_native_batch(
            ctx.obj['client'], rows, workdir,
            max_output_tokens=ctx.obj['settings'].max_output_tokens,
            description=description
        )
    except ValueError as e:
        logging.error(str(e))
        raise SystemExit(1)
    click.echo(batch_id)


@native.command('status')
@click.argument('batch_id')
@click.pass_context
def native_status(ctx, batch_id):
    """Check the status of a native batch."""
    click.echo(check_native_batch_status(ctx.obj['client'], batch_id))


@native.command('fetch')
@click.argument('batch_id')
@click.option(
    '-o', '--output', type=click.Path(dir_okay=False), required=True,
    help='JSONL file to write the results to.'
)
@click.pass_context
def native_fetch(ctx, batch_id, output):
    """Download the results of a finished native batch."""
    pricing = _load_pricing_or_exit(ctx.obj['settings'])
    try:
        native_results = retrieve_native_batch_results(ctx.obj['client'], batch_id, pricing=pricing)
    except RuntimeError as e:
        logging.error(str(e))
        raise SystemExit(1)

    write_jsonl([asdict(result) for result in native_results], Path(output))
    failed = sum(1 for result in native_results if not result.succeeded)
    total_cost = sum(result.cost for result in native_results)
    logging.info(f"Saved {len(native_results)} results to {mask_path(output)} "
                 f"({failed} failed, ${total_cost:.4f})")


@native.command('cancel')
@click.argument('batch_id')
@click.pass_context
def native_cancel(ctx, batch_id):
    """Cancel a native batch."""
    cancel_native_batch(ctx.obj['client'], batch_id)
