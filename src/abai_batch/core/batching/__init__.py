"""
Batch job engine.

Submodules:
    models:    Job, Row, ProgressEvent, statuses and job-level errors
    limiter:   Concurrency limiter (permits)
    processor: Row processor
    scheduler: Batch scheduler
    store:     Job state store contract and implementations
    parse:     Input file reading and prompt templates
    pricing:   Pricing table, token counting and dry-run estimation
    summary:   Job summaries and result export
    native:    Native OpenAI Batch API variant

Example Usage:
    import abai_batch as ab

    rows, errors = ab.batching.parse.read_input_rows('./prompts.csv', default_model='gpt-4o-mini')
    estimate = ab.batching.pricing.estimate_batch_cost(rows, ab.PricingTable.load())

    store = ab.batching.store.FileJobStore('./jobs')
    job = store.get_job(job_id)
    ab.batching.summary.save_job_summary(job, store.list_results(job_id), './summary.txt')
"""

# Import order matters: pricing must be loaded before the provider adapters
from . import models
from . import parse
from . import pricing
from . import limiter
from . import store
from . import summary
from . import processor
from . import scheduler
from . import native

__all__ = [
    'models',     # ab.batching.models.*
    'parse',      # ab.batching.parse.*
    'pricing',    # ab.batching.pricing.*
    'limiter',    # ab.batching.limiter.*
    'store',      # ab.batching.store.*
    'summary',    # ab.batching.summary.*
    'processor',  # ab.batching.processor.*
    'scheduler',  # ab.batching.scheduler.*
    'native',     # ab.batching.native.*
]
