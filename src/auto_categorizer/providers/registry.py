import os
from collections.abc import Mapping
from typing import Any

from auto_categorizer.core.configuration import CategorizerConfig
from auto_categorizer.domain.patterns import LearnedPatternIndex
from auto_categorizer.errors import ProviderNotFoundError
from auto_categorizer.logger import get_logger
from auto_categorizer.models import ProviderName
from auto_categorizer.providers.anthropic_llm import AnthropicProvider
from auto_categorizer.providers.base import LLMProvider
from auto_categorizer.providers.gemini_llm import GeminiProvider
from auto_categorizer.providers.openai_llm import OpenAIProvider
from auto_categorizer.providers.usage import UsageLedger

logger = get_logger(__name__)

CONCEPTS = ("llm",)

PROVIDER_CLASSES: dict[ProviderName, type[LLMProvider]] = {
    ProviderName.OPENAI: OpenAIProvider,
    ProviderName.GEMINI: GeminiProvider,
    ProviderName.ANTHROPIC: AnthropicProvider,
}

API_KEY_ENV_VARS: dict[ProviderName, str] = {
    ProviderName.OPENAI: "OPENAI_API_KEY",
    ProviderName.GEMINI: "GEMINI_API_KEY",
    ProviderName.ANTHROPIC: "ANTHROPIC_API_KEY",
}


class ProviderRegistry:
    """
    Resolves LLM providers from configuration.

    A provider exists only when it has a credential; the environment variable
    wins over the stored setting. Instances are built lazily and reused.
    """

    def __init__(
        self,
        config: CategorizerConfig,
        *,
        environ: Mapping[str, str] | None = None,
        usage: UsageLedger | None = None,
        patterns: LearnedPatternIndex | None = None,
        clients: Mapping[ProviderName, Any] | None = None,
    ):
        self.config = config
        self.environ = os.environ if environ is None else environ
        self.usage = usage
        self.patterns = patterns
        self.clients = dict(clients or {})
        self._instances: dict[ProviderName, LLMProvider] = {}

    @staticmethod
    def _provider_name(name: str | ProviderName) -> ProviderName:
        try:
            return ProviderName(name)
        except ValueError:
            raise ProviderNotFoundError(f"Provider '{name}' not found in registry") from None

    def api_key_for(self, name: str | ProviderName) -> str | None:
        provider = self._provider_name(name)
        env_value = (self.environ.get(API_KEY_ENV_VARS[provider]) or "").strip()
        if env_value:
            return env_value
        stored = (self.config.stored_api_key(provider) or "").strip()
        return stored or None

    def is_configured(self, name: str | ProviderName) -> bool:
        return self.api_key_for(name) is not None

    def get(self, name: str | ProviderName) -> LLMProvider | None:
        """The provider called `name`, or None when it has no credential."""
        provider = self._provider_name(name)
        if provider in self._instances:
            return self._instances[provider]

        api_key = self.api_key_for(provider)
        if api_key is None:
            return None

        kwargs: dict[str, Any] = {
            "api_key": api_key,
            "usage": self.usage,
            "patterns": self.patterns,
        }
        if provider in self.clients:
            kwargs["client"] = self.clients[provider]
        instance = PROVIDER_CLASSES[provider](self.config, **kwargs)
        self._instances[provider] = instance
        logger.debug("[REGISTRY] Initialized %s provider (model %s).", provider.value, instance.model)
        return instance

    def list_for_concept(self, concept: str = "llm") -> list[LLMProvider]:
        """Configured providers, preferred provider first, then declaration order."""
        if concept not in CONCEPTS:
            raise ProviderNotFoundError(f"Unknown provider concept '{concept}'")

        order = list(ProviderName)
        preferred = self.config.preferred_provider
        if preferred is not None and self.is_configured(preferred):
            order.remove(preferred)
            order.insert(0, preferred)

        providers: list[LLMProvider] = []
        for name in order:
            provider = self.get(name)
            if provider is not None:
                providers.append(provider)
        return providers

    def first_available(self) -> LLMProvider | None:
        providers = self.list_for_concept("llm")
        return providers[0] if providers else None
