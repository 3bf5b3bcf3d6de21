# -*- coding: utf-8 -*-

import os
import logging

import openai


# Checked in order; the first variable that is set wins
API_KEY_ENV_VARS = {
    'openai': ('OPENAI_API_KEY',),
    'anthropic': ('ANTHROPIC_API_KEY',),
    'gemini': ('GEMINI_API_KEY', 'GOOGLE_API_KEY'),
    'grok': ('XAI_API_KEY', 'GROK_API_KEY'),
}


def get_api_key(provider: str) -> str | None:
    """
    Look up the API key of a provider in the environment.

    Args:
        provider (str): Provider name ('openai', 'anthropic', 'gemini' or 'grok').

    Returns:
        str | None: The key, or None when no variable is set.
    """
    for var in API_KEY_ENV_VARS.get(provider, ()):
        value = os.getenv(var)
        if value:
            return value
    return None


def validate_required_env_vars(providers) -> list:
    """
    Validate that the API keys of the given providers are set.

    Args:
        providers: Iterable of provider names.

    Returns:
        List of missing environment variables (empty if all present)
    """
    missing = []
    for provider in providers:
        if get_api_key(provider) is None:
            missing.append(API_KEY_ENV_VARS[provider][0])
    return missing


def create_openai_client(api_key=None):
    """
    Create a synchronous OpenAI client, used by the native batch commands.

    Args:
        api_key (str): The OpenAI API key. If not provided, it will be fetched from the environment variable.
    """
    if api_key is None:
        api_key = get_api_key('openai')
    if api_key is None:
        raise ValueError("No OpenAI API key provided or found in environment.")

    client = openai.OpenAI(api_key=api_key)
    logging.debug("OpenAI client created successfully.")
    return client
