# -*- coding: utf-8 -*-

from .base import ProviderKind
from .openai_provider import OpenAIAdapter


XAI_BASE_URL = "https://api.x.ai/v1"


class GrokAdapter(OpenAIAdapter):
    """
    Adapter for xAI Grok through its OpenAI-compatible endpoint.
    Request building and error mapping are shared with `OpenAIAdapter`.
    """
    kind = ProviderKind.GROK
    default_model = "grok-3"
    base_url = XAI_BASE_URL
