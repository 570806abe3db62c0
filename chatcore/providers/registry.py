import logging
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Type

import httpx

from chatcore.common.errors import ValidationError
from chatcore.common.models import Provider
from chatcore.providers.anthropic import AnthropicAdapter
from chatcore.providers.base import ProviderAdapter
from chatcore.providers.google import GoogleAdapter
from chatcore.providers.openai import OpenAIAdapter

logger = logging.getLogger("ChatCore")

ADAPTER_CLASSES: Dict[Provider, Type[ProviderAdapter]] = {
    Provider.OPENAI: OpenAIAdapter,
    Provider.ANTHROPIC: AnthropicAdapter,
    Provider.GOOGLE: GoogleAdapter,
}


class AdapterRegistry:
    """Fixed mapping from provider to its adapter, built once at startup."""

    def __init__(self, adapters: Mapping[Provider, ProviderAdapter]):
        self._adapters = MappingProxyType({Provider(p): a for p, a in adapters.items()})

    @classmethod
    def from_config(
        cls,
        config_manager,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "AdapterRegistry":
        timeout = config_manager.get_section("generation_settings").get("provider_timeout_s", 60.0)
        adapters = {}
        for provider, adapter_cls in ADAPTER_CLASSES.items():
            if not config_manager.has_credentials(provider.value):
                continue
            settings = config_manager.provider_settings(provider.value)
            adapters[provider] = adapter_cls(
                api_key=settings["api_key"],
                api_base=settings["api_base"],
                http_client=http_client,
                timeout=timeout,
            )
        logger.info(f"Adapters registered: {sorted(p.value for p in adapters)}")
        return cls(adapters)

    def get(self, provider) -> ProviderAdapter:
        try:
            return self._adapters[Provider(provider)]
        except (KeyError, ValueError):
            raise ValidationError(f"No adapter configured for provider '{provider}'")

    def __contains__(self, provider) -> bool:
        try:
            return Provider(provider) in self._adapters
        except ValueError:
            return False
