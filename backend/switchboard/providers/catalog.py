"""
Model catalog

Static table of every model Switchboard can route to, with capabilities and
pricing. A YAML file (``MODELS_CONFIG_PATH``) may add models or override
built-in entries field by field; the built-in table is used as-is when the
file is missing.
"""

from pathlib import Path
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel

from switchboard.core.logging import get_logger

logger = get_logger(__name__)

# Dynamically named models that are not in the table, by id prefix.
DYNAMIC_MODEL_PREFIXES: Dict[str, str] = {
    "glean-agent-": "glean",
    "dust-": "dust",
}


class ModelCapabilities(BaseModel):
    streaming: bool = True
    vision: bool = False
    files: bool = False
    function_calling: bool = False
    max_input_tokens: int = 0
    max_output_tokens: int = 4096


class ModelPricing(BaseModel):
    input_per_1m: float
    output_per_1m: float


class ModelConfig(BaseModel):
    id: str
    name: str
    provider: str
    description: str = ""
    capabilities: ModelCapabilities = ModelCapabilities()
    pricing: Optional[ModelPricing] = None
    is_enabled: bool = True
    is_default: bool = False


class ProviderInfo(BaseModel):
    provider: str
    name: str
    description: str


PROVIDER_INFO: Dict[str, ProviderInfo] = {
    "openai": ProviderInfo(provider="openai", name="OpenAI", description="GPT-4o, GPT-4 Turbo and GPT-3.5 Turbo models"),
    "anthropic": ProviderInfo(provider="anthropic", name="Anthropic", description="Claude Opus, Sonnet and Haiku models"),
    "glean": ProviderInfo(provider="glean", name="Glean", description="Enterprise search and knowledge assistant with custom agents"),
    "dust": ProviderInfo(provider="dust", name="Dust", description="AI assistants with workspace context"),
    "ondobot": ProviderInfo(provider="ondobot", name="OndoBot", description="Internal Ondo AI assistant"),
}


def _model(id, name, provider, description, vision, files, functions, max_in, max_out, pricing=None, default=False):
    return ModelConfig(
        id=id,
        name=name,
        provider=provider,
        description=description,
        capabilities=ModelCapabilities(
            vision=vision,
            files=files,
            function_calling=functions,
            max_input_tokens=max_in,
            max_output_tokens=max_out,
        ),
        pricing=ModelPricing(input_per_1m=pricing[0], output_per_1m=pricing[1]) if pricing else None,
        is_default=default,
    )


DEFAULT_MODELS: List[ModelConfig] = [
    # OpenAI
    _model("gpt-4-turbo", "GPT-4 Turbo", "openai", "Most capable GPT-4 model, optimized for speed",
           True, True, True, 128000, 4096, (10, 30)),
    _model("gpt-4o", "GPT-4o", "openai", "Multimodal model with vision and audio capabilities",
           True, True, True, 128000, 4096, (5, 15), default=True),
    _model("gpt-4o-mini", "GPT-4o Mini", "openai", "Smaller, faster, and more affordable GPT-4o",
           True, True, True, 128000, 16384, (0.15, 0.6)),
    _model("gpt-3.5-turbo", "GPT-3.5 Turbo", "openai", "Fast and cost-effective for simpler tasks",
           False, False, True, 16385, 4096, (0.5, 1.5)),
    # Anthropic
    _model("claude-sonnet-4-20250514", "Claude Sonnet 4", "anthropic", "Best balance of intelligence and speed",
           True, True, True, 200000, 16384, (3, 15), default=True),
    _model("claude-opus-4-20250514", "Claude Opus 4", "anthropic", "Most powerful Claude model for complex tasks",
           True, True, True, 200000, 16384, (15, 75)),
    _model("claude-3-5-haiku-20241022", "Claude 3.5 Haiku", "anthropic", "Fastest and most cost-effective Claude model",
           True, True, True, 200000, 8192, (0.8, 4)),
    # Knowledge / workspace / internal assistants
    _model("glean-assistant", "Glean Assistant", "glean", "Enterprise knowledge assistant with company context",
           False, True, False, 32000, 4096, default=True),
    _model("dust-assistant", "Dust Assistant", "dust", "AI assistant with workspace integrations",
           False, True, False, 32000, 4096, default=True),
    _model("ondobot-assistant", "OndoBot", "ondobot", "Internal Ondo AI assistant",
           False, False, False, 16000, 4096, default=True),
]


class ModelCatalog:
    def __init__(self, models_config_path: Optional[str] = None, models: Optional[List[ModelConfig]] = None):
        self._models: Dict[str, ModelConfig] = {
            m.id: m.model_copy(deep=True) for m in (models if models is not None else DEFAULT_MODELS)
        }
        if models_config_path:
            self._load(models_config_path)

    def _load(self, path: str) -> None:
        p = Path(path)
        if not p.exists():
            logger.warning("models_config_missing", path=path)
            return

        with open(p) as f:
            data = yaml.safe_load(f) or {}

        for entry in data.get("models") or []:
            existing = self._models.get(entry["id"])
            if existing is not None:
                merged = existing.model_dump()
                for key, value in entry.items():
                    if isinstance(value, dict) and isinstance(merged.get(key), dict):
                        merged[key].update(value)
                    else:
                        merged[key] = value
                self._models[entry["id"]] = ModelConfig.model_validate(merged)
            else:
                self._models[entry["id"]] = ModelConfig.model_validate(entry)

        for model_id in data.get("disabled") or []:
            if model_id in self._models:
                self._models[model_id].is_enabled = False

        logger.info("model_catalog_loaded", count=len(self._models), path=path)

    def get(self, model_id: str) -> Optional[ModelConfig]:
        return self._models.get(model_id)

    def provider_for(self, model_id: str) -> Optional[str]:
        """Provider serving ``model_id``: the table first, then dynamic prefixes."""
        model = self._models.get(model_id)
        if model is not None:
            return model.provider
        for prefix, provider in DYNAMIC_MODEL_PREFIXES.items():
            if model_id.startswith(prefix):
                return provider
        return None

    def models_for(self, provider: str, enabled_only: bool = True) -> List[ModelConfig]:
        return [
            m for m in self._models.values()
            if m.provider == provider and (m.is_enabled or not enabled_only)
        ]

    def default_model(self, provider: str) -> Optional[ModelConfig]:
        models = self.models_for(provider)
        return next((m for m in models if m.is_default), models[0] if models else None)

    def supports_vision(self, model_id: str) -> bool:
        model = self._models.get(model_id)
        return bool(model and model.capabilities.vision)
