"""
Command-line interface for ABAI Batch.

This module provides a CLI to run batches of prompts against several LLM
providers, follow their progress, resume interrupted jobs and export the
results. The CLI is organized into logical command groups for different
workflow stages.

Command Categories:
    Batch Jobs:
        - run: Submit an input file as a job and follow its progress
        - resume: Resume one or every interrupted job
        - cancel: Cancel an interrupted job

    Job Inspection:
        - status: Show the status and aggregates of a job
        - list-jobs: Show stored jobs, newest first
        - results: Export row results as JSONL, CSV or Parquet
        - summary: Show (and save) the summary of a job

    Pricing:
        - estimate: Dry-run cost estimate of an input file
        - models: List known models and their prices

    Native OpenAI Batch API:
        - native submit / status / fetch / cancel

Environment Requirements:
    - OPENAI_API_KEY (for OpenAI models and native batches)
    - ANTHROPIC_API_KEY (for Anthropic models)
    - GEMINI_API_KEY or GOOGLE_API_KEY (for Gemini models)
    - XAI_API_KEY or GROK_API_KEY (for Grok models)

Example Workflow:
    # 1. Estimate the cost of a batch
    $ abai-batch estimate prompts.csv -m gpt-4o-mini

    # 2. Run it, exporting results when the job ends
    $ abai-batch run prompts.csv -m gpt-4o-mini -p my-project -o results.csv

    # 3. If the process was interrupted, resume it
    $ abai-batch resume

    # 4. Inspect past jobs
    $ abai-batch list-jobs -p my-project
    $ abai-batch summary <job-id>

The CLI provides extensive help for each command:
    $ abai-batch --help
    $ abai-batch run --help
"""

from .cli import cli

__all__ = [
    'cli',  # Main CLI interface (Click command group)
]
