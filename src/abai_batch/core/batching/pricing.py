# -*- coding: utf-8 -*-

"""
Model pricing table, token counting and cost estimation.

Prices are expressed in USD per 1M tokens. A price of -1 marks a model
whose pricing is not published yet; such models are accounted at zero cost.
"""

import re
import json
import math
import logging
import threading
from dataclasses import dataclass, field
from importlib import resources
from pathlib import Path
from typing import Dict, List, Optional

import tiktoken

from ..utils.misc import mask_path
from .parse import substitute_template_vars


UNAVAILABLE_PRICE = -1
DEFAULT_PRICING_RESOURCE = "model-pricing.json"
SNAPSHOT_SUFFIX = re.compile(r"-\d{4}-\d{2}-\d{2}$")


@dataclass
class ModelPricing:
    prompt: float
    completion: float
    cache_write_5m: Optional[float] = None
    cache_write_1h: Optional[float] = None
    cache_read: Optional[float] = None

    @property
    def available(self) -> bool:
        return self.prompt != UNAVAILABLE_PRICE and self.completion != UNAVAILABLE_PRICE

    @classmethod
    def from_dict(cls, data: dict) -> "ModelPricing":
        return cls(
            prompt=float(data.get('prompt', 0)),
            completion=float(data.get('completion', 0)),
            cache_write_5m=data.get('cacheWrite5m'),
            cache_write_1h=data.get('cacheWrite1h'),
            cache_read=data.get('cacheRead'),
        )


@dataclass
class ModelDefinition:
    id: str
    provider: str
    pricing: ModelPricing
    name: str = ""
    description: str = ""
    context_size: int = 0
    features: List[str] = field(default_factory=list)

    @property
    def full_id(self) -> str:
        return f"{self.provider}/{self.id}"

    @classmethod
    def from_dict(cls, data: dict) -> "ModelDefinition":
        return cls(
            id=data['id'],
            provider=data['provider'],
            pricing=ModelPricing.from_dict(data.get('pricing', {})),
            name=data.get('name', data['id']),
            description=data.get('description', ''),
            context_size=int(data.get('contextSize', 0)),
            features=list(data.get('features', [])),
        )


class PricingTable:
    """Static per-model pricing table keyed by model id."""

    def __init__(self, models: List[ModelDefinition]):
        self.models = list(models)
        self._by_full_id = {m.full_id: m for m in self.models}
        self._by_id = {}
        for m in self.models:
            self._by_id.setdefault(m.id, m)
        self._warned = set()

    def __len__(self):
        return len(self.models)

    def __contains__(self, model_id: str):
        return self.get(model_id) is not None

    @classmethod
    def from_list(cls, data: List[dict]) -> "PricingTable":
        return cls([ModelDefinition.from_dict(item) for item in data])

    @classmethod
    def load(cls, path: str | Path | None = None) -> "PricingTable":
        """
        Load a pricing table from a JSON file.

        Args:
            path (str | Path | None): Path to the JSON pricing file. If None,
                the table shipped with the package is used.

        Returns:
            PricingTable: The loaded table.
        """
        if path is None:
            text = resources.files("abai_batch.data").joinpath(DEFAULT_PRICING_RESOURCE).read_text(encoding="utf-8")
            source = "packaged pricing table"
        else:
            path = Path(path)
            if not path.exists():
                raise FileNotFoundError(f"Pricing file not found: {path}")
            text = path.read_text(encoding="utf-8")
            source = mask_path(path)
        table = cls.from_list(json.loads(text))
        logging.debug(f"Loaded {len(table)} models from {source}")
        return table

    def get(self, model_id: str) -> Optional[ModelDefinition]:
        """
        Look up a model by id, `provider/id`, or id with a foreign prefix stripped.
        """
        if model_id in self._by_full_id:
            return self._by_full_id[model_id]
        if model_id in self._by_id:
            return self._by_id[model_id]
        if '/' in model_id:
            return self.get(model_id.split('/', 1)[1])
        # Dated snapshots (gpt-4o-2024-08-06) fall back to their base model
        base_id = SNAPSHOT_SUFFIX.sub('', model_id)
        if base_id != model_id:
            return self._by_id.get(base_id)
        return None

    def models_for(self, provider: str) -> List[ModelDefinition]:
        return [m for m in self.models if m.provider == provider]

    def cost(
            self,
            model_id: str,
            tokens_in: int,
            tokens_out: int,
            cache_creation_tokens: int = 0,
            cache_read_tokens: int = 0,
            cache_ttl: str = '5m'
        ) -> float:
        """
        Compute the USD cost of one call.

        Args:
            model_id (str): Model id, optionally prefixed by its provider.
            tokens_in (int): Prompt tokens (excluding cached tokens).
            tokens_out (int): Completion tokens.
            cache_creation_tokens (int): Tokens written to the prompt cache.
            cache_read_tokens (int): Tokens read from the prompt cache.
            cache_ttl (str): '5m' or '1h', selects the cache write rate.

        Returns:
            float: Cost in USD, 0 for unknown or unpriced models.
        """
        model = self.get(model_id)
        if model is None:
            if model_id not in self._warned:
                self._warned.add(model_id)
                logging.warning(f"Model {model_id} not found in pricing data. Cost will be reported as 0.")
            return 0.0
        pricing = model.pricing
        if not pricing.available:
            return 0.0

        cost = (tokens_in * pricing.prompt + tokens_out * pricing.completion) / 1_000_000

        write_rate = pricing.cache_write_1h if cache_ttl == '1h' else pricing.cache_write_5m
        if cache_creation_tokens and write_rate:
            cost += cache_creation_tokens * write_rate / 1_000_000
        if cache_read_tokens and pricing.cache_read:
            cost += cache_read_tokens * pricing.cache_read / 1_000_000

        return cost


#=============================================================================
# Token counting
#=============================================================================

_encodings = {}
_encodings_lock = threading.Lock()


def get_encoding(model: str):
    """
    Get the tiktoken encoding for the specified model.

    Args:
        model (str): Model name.

    Returns:
        tiktoken.core.Encoding: Encoding object for the model.
    """
    with _encodings_lock:
        if model in _encodings:
            return _encodings[model]
        try:
            encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            if model.startswith(("o1", "o3", "o4", "gpt-4.1", "gpt-4o")):
                encoding = tiktoken.get_encoding("o200k_base")
            else:
                encoding = tiktoken.get_encoding("cl100k_base")
        _encodings[model] = encoding
        return encoding


def approximate_tokens(text: str) -> int:
    """Character-based approximation: roughly 4 characters per token."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def count_tokens(text: str, provider: str, model: Optional[str] = None) -> int:
    """
    Count the tokens of a text for a provider's model.

    OpenAI models use their own tiktoken encoding and Anthropic models use
    cl100k_base as an approximation. Gemini and Grok have no local tokenizer
    and fall back to the character approximation.
    """
    if not text:
        return 0
    if provider == "openai":
        return len(get_encoding(model or "gpt-4o").encode(text))
    if provider == "anthropic":
        return len(get_encoding("gpt-4").encode(text))
    return approximate_tokens(text)


#=============================================================================
# Dry-run estimation
#=============================================================================

@dataclass
class RowEstimate:
    id: str
    model_id: str
    tokens_in: int
    est_cost: float


@dataclass
class CostEstimation:
    total_usd: float
    per_row: List[RowEstimate]

    def by_model(self) -> Dict[str, float]:
        totals = {}
        for row in self.per_row:
            totals[row.model_id] = totals.get(row.model_id, 0.0) + row.est_cost
        return totals


def estimate_batch_cost(
        rows: List[dict],
        pricing: PricingTable,
        max_output_tokens: Optional[int] = None
    ) -> CostEstimation:
    """
    Estimate the cost of running a batch before submitting it.

    Only input tokens are counted unless `max_output_tokens` is given, in which
    case the estimate becomes an upper bound that assumes every completion uses
    all of its output tokens.

    Args:
        rows (list): Submission rows with 'id', 'prompt', 'model' and optional
            'system_prompt' keys.
        pricing (PricingTable): Pricing table.
        max_output_tokens (int | None): Output tokens assumed per row.

    Returns:
        CostEstimation: Total and per-row estimate.
    """
    from ..providers.routing import parse_model_id
    from ..providers.base import InvalidRequestError

    total = 0.0
    per_row = []
    for row in rows:
        try:
            provider, model = parse_model_id(row.get('model') or '')
        except InvalidRequestError:
            logging.warning(f"Row {row.get('id', '')} has no model; it is estimated at zero cost")
            per_row.append(RowEstimate(id=str(row.get('id', '')), model_id='', tokens_in=0, est_cost=0.0))
            continue
        text, _ = substitute_template_vars(row['prompt'], row.get('data') or {})
        if row.get('system_prompt'):
            text = row['system_prompt'] + '\n\n' + text
        tokens_in = count_tokens(text, provider.value, model)
        tokens_out = max_output_tokens or 0
        est_cost = pricing.cost(f"{provider.value}/{model}", tokens_in, tokens_out)
        total += est_cost
        per_row.append(RowEstimate(
            id=str(row.get('id', '')),
            model_id=f"{provider.value}/{model}",
            tokens_in=tokens_in,
            est_cost=est_cost
        ))
    return CostEstimation(total_usd=total, per_row=per_row)


def format_cost(cost: float) -> str:
    if cost == 0:
        return "Free"
    if cost < 0.0001:
        return "<$0.0001"
    return f"${cost:.4f}"
