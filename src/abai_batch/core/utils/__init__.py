"""
Shared utilities for the ABAI batch engine.

Submodules:
    clients:     API key lookup and OpenAI client creation
    settings:    Engine settings (YAML file in the user config directory)
    misc:        JSON / YAML / path helpers (internal)
    environment: .env loading (internal)

Example Usage:
    import abai_batch as ab

    settings = ab.utils.settings.load_settings()
    key = ab.utils.clients.get_api_key('anthropic')
"""

from . import clients    # API keys and clients
from . import settings   # EngineSettings, load_settings

__all__ = [
    'clients',
    'settings',
]

# Internal modules not exported:
# - misc (internal utilities)
# - environment (internal environment setup)
