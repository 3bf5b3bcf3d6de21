# -*- coding: utf-8 -*-

"""
Model id routing policy.

Model ids normally look like `provider/model`. Bare model names are
accepted too: the provider is inferred from the model name, falling back
to OpenAI when nothing matches. This is a lenient heuristic, not a
validation step, and it lives here so it can be tested and swapped
without touching adapter dispatch.
"""

from typing import Tuple

from .base import InvalidRequestError, ProviderKind


# Checked in order; first match wins
PREFIX_RULES = [
    (('claude-',), ProviderKind.ANTHROPIC),
    (('gpt-', 'o'), ProviderKind.OPENAI),
    (('gemini-',), ProviderKind.GEMINI),
    (('grok-',), ProviderKind.GROK),
]

SUBSTRING_RULES = [
    ('anthropic', ProviderKind.ANTHROPIC),
    ('claude', ProviderKind.ANTHROPIC),
    ('openai', ProviderKind.OPENAI),
    ('gemini', ProviderKind.GEMINI),
    ('grok', ProviderKind.GROK),
]

DEFAULT_PROVIDER = ProviderKind.OPENAI

_KNOWN_PROVIDERS = {kind.value for kind in ProviderKind}


def infer_provider(model_name: str) -> ProviderKind:
    """
    Infer the provider from a bare model name.

    Args:
        model_name (str): Model name without provider prefix (e.g. 'claude-3-haiku').

    Returns:
        ProviderKind: Inferred provider, OpenAI if nothing matches.
    """
    name = model_name.strip().lower()
    for prefixes, kind in PREFIX_RULES:
        if name.startswith(prefixes):
            return kind
    for fragment, kind in SUBSTRING_RULES:
        if fragment in name:
            return kind
    return DEFAULT_PROVIDER


def parse_model_id(model_id: str) -> Tuple[ProviderKind, str]:
    """
    Split a model id into provider and model name.

    Args:
        model_id (str): 'provider/model' or a bare model name. Ids whose
            prefix is not a provider name (e.g. 'models/gemini-1.5-flash')
            are treated as bare names.

    Returns:
        tuple: (ProviderKind, model name)

    Raises:
        InvalidRequestError: If the model id is empty.
    """
    model_id = (model_id or '').strip()
    if not model_id:
        raise InvalidRequestError("Model not specified")

    if '/' in model_id:
        prefix, model = model_id.split('/', 1)
        if prefix.lower() in _KNOWN_PROVIDERS:
            if not model:
                raise InvalidRequestError(f"Model not specified in '{model_id}'")
            return ProviderKind(prefix.lower()), model

    return infer_provider(model_id), model_id
