import logging
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

from chatcore.common.models import Candidate, Modality, ModelInfo, Provider

logger = logging.getLogger("ChatCore")


class ModelCatalog:
    """Read-only registry of the (provider, model) pairs this process can serve.

    Built once at startup from the model registry and the set of providers
    that have credentials configured. Providers without credentials are
    simply absent: lookups for them return empty results, never errors.
    """

    def __init__(
        self,
        registry: Mapping[str, Mapping[str, Mapping[str, Any]]],
        available_providers: Iterable[str],
        provider_defaults: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ):
        available = {Provider(p) for p in available_providers}
        models: Dict[Provider, Mapping[str, ModelInfo]] = {}
        for provider_name, entries in registry.items():
            provider = Provider(provider_name)
            if provider not in available:
                continue
            models[provider] = MappingProxyType(
                {model_id: ModelInfo(**info) for model_id, info in entries.items()}
            )
        self._providers: FrozenSet[Provider] = frozenset(models)
        self._models = MappingProxyType(models)
        self._defaults = MappingProxyType(
            {
                Provider(p): MappingProxyType(dict(values))
                for p, values in (provider_defaults or {}).items()
            }
        )
        logger.info(
            f"ModelCatalog initialized with providers: "
            f"{sorted(p.value for p in self._providers)}"
        )

    @classmethod
    def from_config(cls, config_manager) -> "ModelCatalog":
        config = config_manager.get_active_config()
        available = [
            name for name in config["providers"] if config_manager.has_credentials(name)
        ]
        return cls(
            config["model_registry"],
            available,
            provider_defaults=config["provider_defaults"],
        )

    def list_providers(self) -> FrozenSet[Provider]:
        return self._providers

    def list_models(self, provider) -> Mapping[str, ModelInfo]:
        try:
            provider = Provider(provider)
        except ValueError:
            return MappingProxyType({})
        return self._models.get(provider, MappingProxyType({}))

    def list_all_models(self) -> Dict[str, Dict[str, ModelInfo]]:
        return {p.value: dict(models) for p, models in self._models.items()}

    def get_model(self, provider, model: str) -> Optional[ModelInfo]:
        return self.list_models(provider).get(model)

    def is_valid(self, provider, model: str) -> bool:
        return self.get_model(provider, model) is not None

    def is_available(self, provider) -> bool:
        try:
            return Provider(provider) in self._providers
        except ValueError:
            return False

    def supports(self, candidate: Candidate, modality: Modality) -> bool:
        info = self.get_model(candidate.provider, candidate.model)
        return info is not None and info.modality == modality

    def default_config(self, provider) -> Dict[str, Any]:
        """Default values for the numeric generation parameters of a provider."""
        try:
            provider = Provider(provider)
        except ValueError:
            return {}
        return dict(self._defaults.get(provider, {}))
