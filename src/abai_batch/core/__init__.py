"""
Core functionality for the ABAI batch engine.

Architecture:
    batching/   - Batch job engine
      ├── models/    - Job, Row, ProgressEvent and job-level errors
      ├── limiter/   - Concurrency limiter
      ├── processor/ - Row processor (one row end to end, with retry)
      ├── scheduler/ - Batch scheduler (job lifecycle)
      ├── store/     - Job state store (in-memory and file-backed)
      ├── parse/     - Input files and prompt templates
      ├── pricing/   - Pricing table, token counting, cost estimation
      ├── summary/   - Job summaries and result export
      └── native/    - Native OpenAI Batch API variant

    providers/  - Provider adapters
      ├── base/      - Request/response contract and error taxonomy
      ├── routing/   - Model id to provider policy
      ├── registry/  - ProviderKind to adapter lookup table
      └── *_provider - OpenAI, Anthropic, Gemini and Grok adapters

    utils/      - Shared utilities and infrastructure
      ├── settings/    - Engine settings
      ├── clients/     - API keys and OpenAI client creation
      ├── misc/        - General utilities (internal)
      └── environment/ - Environment setup (internal)
"""

# batching first: the provider adapters depend on its pricing module
from . import batching
from . import providers
from . import utils

from .batching.pricing import PricingTable
from .batching.scheduler import BatchScheduler, create_scheduler

__all__ = [
    'batching',
    'providers',
    'utils',
    'PricingTable',
    'BatchScheduler',
    'create_scheduler',
]
