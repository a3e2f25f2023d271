import asyncio
from typing import Callable, Dict, List, Optional

from switchboard.core.config import Settings
from switchboard.core.exceptions import ModelNotFoundError, ProviderNotFoundError
from switchboard.core.logging import get_logger
from switchboard.providers.anthropic import AnthropicProvider
from switchboard.providers.base import BaseProvider, ProviderStatus
from switchboard.providers.catalog import ModelCatalog, ModelConfig
from switchboard.providers.dust import DustProvider
from switchboard.providers.glean import GleanProvider
from switchboard.providers.ondobot import OndoBotProvider
from switchboard.providers.openai import OpenAIProvider

logger = get_logger(__name__)

ProviderFactory = Callable[[Settings, ModelCatalog], BaseProvider]

DEFAULT_FACTORIES: Dict[str, ProviderFactory] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "glean": GleanProvider,
    "dust": DustProvider,
    "ondobot": OndoBotProvider,
}


class ProviderRegistry:
    """Resolves models to adapters; one lazily built adapter per provider."""

    def __init__(
        self,
        settings: Settings,
        catalog: ModelCatalog,
        factories: Optional[Dict[str, ProviderFactory]] = None,
    ):
        self._settings = settings
        self._catalog = catalog
        self._factories = dict(DEFAULT_FACTORIES)
        if factories:
            self._factories.update(factories)
        self._providers: Dict[str, BaseProvider] = {}

    @property
    def catalog(self) -> ModelCatalog:
        return self._catalog

    def get(self, provider_name: str) -> BaseProvider:
        provider = self._providers.get(provider_name)
        if provider is not None:
            return provider

        factory = self._factories.get(provider_name)
        if factory is None:
            raise ProviderNotFoundError(f"Unknown provider '{provider_name}'", provider_name)
        if not self._settings.is_provider_enabled(provider_name):
            raise ProviderNotFoundError(f"Provider '{provider_name}' is disabled", provider_name)

        provider = factory(self._settings, self._catalog)
        self._providers[provider_name] = provider
        logger.info("provider_registered", provider=provider_name)
        return provider

    def resolve(self, model_id: str, provider_name: Optional[str] = None) -> BaseProvider:
        if provider_name:
            provider = self.get(provider_name)
            if not provider.supports_model(model_id):
                raise ModelNotFoundError(model_id, provider_name)
            return provider

        inferred = self._catalog.provider_for(model_id)
        if inferred is None:
            raise ProviderNotFoundError(f"No provider found for model '{model_id}'")
        return self.get(inferred)

    def available_providers(self) -> List[str]:
        return [
            name for name in self._factories
            if self._settings.is_provider_enabled(name)
        ]

    def configured_providers(self) -> List[str]:
        return [name for name in self.available_providers() if self.get(name).is_configured()]

    def enabled_models(self) -> List[ModelConfig]:
        models: List[ModelConfig] = []
        for name in self.configured_providers():
            models.extend(self.get(name).get_models())
        return models

    async def statuses(self) -> List[ProviderStatus]:
        timeout = self._settings.health_check_timeout_seconds

        async def _status(name: str) -> ProviderStatus:
            provider = self.get(name)
            try:
                return await asyncio.wait_for(provider.get_status(), timeout=timeout)
            except asyncio.TimeoutError:
                message = "Health check timed out"
            except Exception:
                message = "Health check failed"
            return ProviderStatus(
                provider=name,
                is_configured=provider.is_configured(),
                is_enabled=provider.is_enabled(),
                is_healthy=False,
                error_message=message,
            )

        return list(await asyncio.gather(*[_status(n) for n in self.available_providers()]))

    async def health_check_all(self) -> Dict[str, bool]:
        timeout = self._settings.health_check_timeout_seconds

        async def _check(name: str) -> tuple[str, bool]:
            provider = self.get(name)
            try:
                ok = await asyncio.wait_for(provider.health_check(), timeout=timeout)
                return name, ok
            except Exception:
                return name, False

        checks = await asyncio.gather(*[_check(n) for n in self.configured_providers()])
        return dict(checks)

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()
