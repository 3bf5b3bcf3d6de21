"""
ABAI Batch - Multi-provider LLM batch job engine

Runs batch jobs of prompts against several large-language-model providers
(OpenAI, Anthropic, Gemini, Grok) under a concurrency cap, with bounded
retry, per-row error reporting, cost and token accounting, and resumable
progress. This package provides both a programmatic API and a
command-line interface.

Key Features:
    - One adapter contract for every provider, selected by model id
    - Concurrency cap, global and per provider
    - Retry with exponential backoff on rate limits and transient failures
    - Per-row success/failure without aborting the job
    - Durable job state with resume after interruption
    - Dry-run cost estimation and job summaries
    - Native OpenAI Batch API submission

Package Structure:
    batching:  Job engine (models, limiter, processor, scheduler, store, summaries)
    providers: Provider adapters, routing and registry
    utils:     Shared utilities (settings, API keys)

Example Usage:

    Programmatic:
        import asyncio
        import abai_batch as ab

        scheduler = ab.create_scheduler(ab.utils.settings.load_settings())
        rows, errors = ab.batching.parse.read_input_rows('./prompts.csv', default_model='gpt-4o-mini')

        job = asyncio.run(scheduler.run_batch('my-project', rows, file_name='prompts.csv'))
        print(job.status, job.completed_rows, job.failed_rows, job.total_cost)

    CLI Usage:
        $ abai-batch run ./prompts.csv --project my-project --model gpt-4o-mini
        $ abai-batch list-jobs --project my-project
        $ abai-batch resume

Environment Setup:
    API keys are read from environment variables:
    - OPENAI_API_KEY
    - ANTHROPIC_API_KEY
    - GEMINI_API_KEY (or GOOGLE_API_KEY)
    - XAI_API_KEY (or GROK_API_KEY)

    These can be set via .env files in:
    - Current working directory (.env, .env.local)
    - Project root directory
"""

__version__ = "0.1.0"

# Load environment on package import
from .core.utils.environment import setup_environment
setup_environment()

# Export core API modules
from . import core
batching = core.batching
providers = core.providers
utils = core.utils
BatchScheduler = core.BatchScheduler
create_scheduler = core.create_scheduler
PricingTable = core.PricingTable

__all__ = [
    '__version__',
    'batching',          # ab.batching.*
    'providers',         # ab.providers.*
    'utils',             # ab.utils.*
    'BatchScheduler',    # ab.BatchScheduler(store, processor)
    'create_scheduler',  # ab.create_scheduler(settings)
    'PricingTable',      # ab.PricingTable.load()
]

# Clean up namespace
del setup_environment, core
