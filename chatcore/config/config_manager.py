# config/config_manager.py
import logging
import copy
import os
from types import MappingProxyType
from typing import Dict, Any, List, Mapping, Optional

from .default_config import CONFIG
from chatcore.common.logging_config import ApiKeyFilter

logger = logging.getLogger("ChatCore")

# Env var -> (section, key, caster)
ENV_OVERRIDES = {
    "CHATCORE_RETRY_MAX_ATTEMPTS": ("retry_settings", "max_attempts", int),
    "CHATCORE_RETRY_BASE_DELAY_MS": ("retry_settings", "base_delay_ms", int),
    "CHATCORE_RETRY_JITTER_MS": ("retry_settings", "jitter_ms", int),
    "CHATCORE_REQUEST_DEADLINE_S": ("generation_settings", "request_deadline_s", float),
    "CHATCORE_PROVIDER_TIMEOUT_S": ("generation_settings", "provider_timeout_s", float),
    "CHATCORE_STREAM_MODE": ("stream_settings", "mode", str),
    "CHATCORE_STREAM_CHUNK_DELAY_MS": ("stream_settings", "chunk_delay_ms", int),
    "CHATCORE_INDEXING_ENABLED": (
        "indexing_settings", "enabled", lambda v: v.lower() in {"1", "true", "yes", "y"}
    ),
}


def deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """
    Recursively merges two dictionaries.
    Overrides merge into base.
    """
    result = copy.deepcopy(base)
    for key, value in overrides.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def parse_fallbacks(raw: str) -> List[List[str]]:
    """Parses ``provider:model,provider:model`` into candidate pairs."""
    pairs = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        provider, sep, model = item.partition(":")
        if not sep or not provider or not model:
            raise ValueError(f"Invalid fallback entry '{item}', expected provider:model")
        pairs.append([provider.strip(), model.strip()])
    return pairs


class ConfigManager:
    """
    Assembles the effective configuration: Python defaults, then environment
    variables, then explicit overrides. The result is read-only once built.
    """

    def __init__(
        self,
        overrides: Optional[Dict[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        env = os.environ if environ is None else environ
        config = copy.deepcopy(CONFIG)
        config = self._apply_environment(config, env)
        if overrides:
            config = deep_merge(config, overrides)
        self._config = config

        ApiKeyFilter.add_sensitive_keys(
            [p.get("api_key") for p in config["providers"].values()]
        )
        configured = [name for name in config["providers"] if self.has_credentials(name)]
        logger.info(f"ConfigManager initialized. Configured providers: {configured}")

    @classmethod
    def from_mapping(cls, overrides: Dict[str, Any]) -> "ConfigManager":
        """Builds a manager that ignores the process environment."""
        return cls(overrides=overrides, environ={})

    @staticmethod
    def _apply_environment(config: Dict[str, Any], env: Mapping[str, str]) -> Dict[str, Any]:
        for provider, data in config["providers"].items():
            key = env.get(data["credential_env"], "").strip()
            data["api_key"] = key or None
            base = env.get(data["base_env"], "").strip()
            if base:
                data["api_base"] = base

        for env_name, (section, key, caster) in ENV_OVERRIDES.items():
            raw = env.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                config[section][key] = caster(raw)
            except ValueError:
                logger.warning(f"Ignoring invalid value for {env_name}: {raw!r}")

        raw_fallbacks = env.get("CHATCORE_FALLBACKS")
        if raw_fallbacks:
            try:
                config["fallback_candidates"] = parse_fallbacks(raw_fallbacks)
            except ValueError as e:
                logger.warning(f"Ignoring CHATCORE_FALLBACKS: {e}")
        return config

    def get_active_config(self) -> Mapping[str, Any]:
        return MappingProxyType(self._config)

    def get_section(self, name: str) -> Dict[str, Any]:
        return copy.deepcopy(self._config.get(name, {}))

    def has_credentials(self, provider: str) -> bool:
        data = self._config["providers"].get(provider)
        return bool(data and data.get("api_key"))

    def provider_settings(self, provider: str) -> Dict[str, Any]:
        return dict(self._config["providers"][provider])
