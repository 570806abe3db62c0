import copy
import logging

from chatcore.config.base.models import MODEL_REGISTRY, PROVIDER_DEFAULTS, MODEL_COSTS
from chatcore.config.base.settings import (
    PROVIDER_CREDENTIAL_ENV, PROVIDER_API_BASES, PROVIDER_BASE_ENV,
    FALLBACK_CANDIDATES, RETRY_SETTINGS, GENERATION_SETTINGS, STREAM_SETTINGS,
    INDEXING_SETTINGS,
)

logger = logging.getLogger("ChatCore")

"""Default configuration for the application.

Assembles the modular definitions from `chatcore.config.base` into the single
dictionary the ConfigManager starts from. Credentials are never part of the
defaults; the ConfigManager reads them from the environment.
"""

CONFIG = {
    "model_registry": copy.deepcopy(MODEL_REGISTRY),
    "provider_defaults": copy.deepcopy(PROVIDER_DEFAULTS),
    "model_costs": copy.deepcopy(MODEL_COSTS),
    "providers": {
        provider: {
            "credential_env": PROVIDER_CREDENTIAL_ENV[provider],
            "base_env": PROVIDER_BASE_ENV[provider],
            "api_base": PROVIDER_API_BASES[provider],
            "api_key": None,
        }
        for provider in MODEL_REGISTRY
    },
    "fallback_candidates": [list(pair) for pair in FALLBACK_CANDIDATES],
    "retry_settings": dict(RETRY_SETTINGS),
    "generation_settings": dict(GENERATION_SETTINGS),
    "stream_settings": dict(STREAM_SETTINGS),
    "indexing_settings": dict(INDEXING_SETTINGS),
}
