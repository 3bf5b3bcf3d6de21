# -*- coding: utf-8 -*-

"""
Engine settings, read from a YAML file in the user config directory.
"""

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Dict, Optional

import platformdirs

from .misc import mask_path, read_yaml, write_yaml


APP_NAME = "abai-batch"
APP_AUTHOR = "abai"

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 10
DEFAULT_CONCURRENCY = 3


def default_config_path() -> Path:
    """Get the platform-specific settings path."""
    return Path(platformdirs.user_config_dir(APP_NAME, APP_AUTHOR)) / "config.yaml"


def default_state_dir() -> Path:
    """Get the platform-specific directory where jobs are persisted."""
    return Path(platformdirs.user_data_dir(APP_NAME, APP_AUTHOR)) / "jobs"


def clamp_concurrency(value: int) -> int:
    return max(MIN_CONCURRENCY, min(MAX_CONCURRENCY, int(value)))


@dataclass
class EngineSettings:
    concurrency: int = DEFAULT_CONCURRENCY
    max_retries: int = 3
    request_timeout: float = 60.0
    backoff_min: float = 1.0
    backoff_max: float = 10.0
    provider_limits: Dict[str, int] = field(default_factory=dict)
    max_output_tokens: int = 4096
    enable_prompt_caching: bool = False
    cache_ttl: str = '5m'
    pricing_file: Optional[str] = None
    state_dir: Optional[str] = None

    def __post_init__(self):
        if self.concurrency != clamp_concurrency(self.concurrency):
            logging.warning(f"Concurrency {self.concurrency} out of range "
                            f"[{MIN_CONCURRENCY}, {MAX_CONCURRENCY}]. Clamping.")
            self.concurrency = clamp_concurrency(self.concurrency)
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.request_timeout <= 0:
            raise ValueError(f"request_timeout must be > 0, got {self.request_timeout}")
        if self.backoff_min < 0 or self.backoff_max < self.backoff_min:
            raise ValueError("backoff_min must be >= 0 and <= backoff_max")
        if self.max_output_tokens <= 0:
            raise ValueError(f"max_output_tokens must be > 0, got {self.max_output_tokens}")
        if self.cache_ttl not in ('5m', '1h'):
            raise ValueError(f"Invalid cache_ttl '{self.cache_ttl}'. Expected '5m' or '1h'.")
        for provider, limit in self.provider_limits.items():
            if int(limit) < 1:
                raise ValueError(f"Provider limit for '{provider}' must be >= 1")

    @property
    def resolved_state_dir(self) -> Path:
        return Path(self.state_dir) if self.state_dir else default_state_dir()

    def override(self, **kwargs) -> "EngineSettings":
        """Return a copy with the non-None keyword values replaced."""
        values = asdict(self)
        values.update({k: v for k, v in kwargs.items() if v is not None})
        return EngineSettings(**values)

    def to_dict(self) -> dict:
        return asdict(self)


def load_settings(path: str | Path | None = None) -> EngineSettings:
    """
    Load engine settings from a YAML file.

    Args:
        path (str | Path | None): Settings file. Defaults to `config.yaml` in
            the user config directory. A missing default file yields the
            default settings; a missing explicit file is an error.

    Returns:
        EngineSettings: The loaded settings.

    Raises:
        FileNotFoundError: If an explicit settings file does not exist.
        ValueError: If the file contains unknown keys or invalid values.
    """
    explicit = path is not None
    path = Path(path) if explicit else default_config_path()
    if not path.exists():
        if explicit:
            raise FileNotFoundError(f"Settings file not found: {path}")
        return EngineSettings()

    data = read_yaml(path)
    known = {f.name for f in fields(EngineSettings)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown settings in {mask_path(path)}: {', '.join(sorted(unknown))}")

    settings = EngineSettings(**data)
    logging.debug(f"Loaded settings from {mask_path(path)}")
    return settings


def save_settings(settings: EngineSettings, path: str | Path | None = None) -> Path:
    path = Path(path) if path is not None else default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    write_yaml(settings.to_dict(), path)
    logging.info(f"Settings saved to {mask_path(path)}")
    return path
