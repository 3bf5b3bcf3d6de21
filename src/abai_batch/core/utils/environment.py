# -*- coding: utf-8 -*-

"""
Loading of provider API keys from .env files.
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

import dotenv


# Points at a .env file to use instead of the search paths
ENV_FILE_VAR = 'ABAI_ENV_FILE'

ENV_FILE_NAMES = ('.env.local', '.env')


def _env_search_paths() -> List[Path]:
    # Project root of a source checkout (src/abai_batch/../..)
    package_root = Path(__file__).resolve().parents[4]
    folders = [Path.cwd()]
    if package_root != Path.cwd():
        folders.append(package_root)
    return [folder / name for folder in folders for name in ENV_FILE_NAMES]


def load_environment_variables(env_file: Optional[str] = None, verbose: bool = False) -> bool:
    """
    Load API keys from .env files.

    Variables already set in the process environment are never overridden.
    Without `env_file`, the file named by ABAI_ENV_FILE is used, or else every
    `.env.local` and `.env` found in the working directory and the project root.
    `.env.local` is loaded first so its values win over `.env`.

    Args:
        env_file: Specific .env file path.
        verbose: Whether to log which files were loaded.

    Returns:
        True if at least one file was loaded.
    """
    env_file = env_file or os.getenv(ENV_FILE_VAR)
    if env_file:
        env_path = Path(env_file)
        if not env_path.exists():
            if verbose:
                logging.warning(f"Specified .env file not found: {env_path}")
            return False
        dotenv.load_dotenv(env_path)
        if verbose:
            logging.debug(f"Loaded environment from: {env_path}")
        return True

    loaded = False
    for env_path in _env_search_paths():
        if env_path.exists():
            dotenv.load_dotenv(env_path)
            loaded = True
            if verbose:
                logging.debug(f"Loaded environment from: {env_path}")
    return loaded


def setup_environment(verbose: bool = False, env_file: Optional[str] = None) -> bool:
    """
    Load .env files and, when verbose, report which provider keys are set.

    Returns:
        True if a .env file was loaded. Keys may still come from the system
        environment when it is False.
    """
    from .clients import API_KEY_ENV_VARS, get_api_key

    env_loaded = load_environment_variables(env_file, verbose)
    if verbose:
        if not env_loaded:
            logging.debug("No .env file loaded. Relying on system environment variables.")
        available = [provider for provider in API_KEY_ENV_VARS if get_api_key(provider)]
        logging.debug(f"API keys available for: {', '.join(available) or 'no provider'}")
    return env_loaded
