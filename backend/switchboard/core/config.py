from functools import lru_cache
from typing import Dict, List, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

PROVIDER_NAMES = ("openai", "anthropic", "glean", "dust", "ondobot")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_env: str = "development"
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:3000,http://localhost:3001"

    # Provider keys
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    glean_api_key: str = ""
    dust_api_key: str = ""
    ondobot_api_key: str = ""

    # Provider endpoints (the SDK providers use their vendor defaults)
    glean_api_url: str = "https://api.glean.com/v1"
    dust_api_url: str = "https://dust.tt/api/v1"
    ondobot_api_url: str = ""

    # Provider toggles
    enable_openai: bool = True
    enable_anthropic: bool = True
    enable_glean: bool = True
    enable_dust: bool = True
    enable_ondobot: bool = True

    # Routing
    routing_mode: Literal["rule_based", "llm_hybrid"] = "rule_based"
    routing_confidence_threshold: float = 0.7
    enable_auto_routing: bool = False

    # Tool loop
    max_tool_rounds: int = 10
    tool_timeout_seconds: float = 30.0
    tool_max_retries: int = 1
    parallel_tool_calls: bool = True

    # Timeouts
    provider_timeout_seconds: float = 120.0
    provider_max_retries: int = 2
    ondobot_timeout_seconds: float = 60.0
    health_check_timeout_seconds: float = 3.0

    # Config paths
    models_config_path: str = "config/models.yaml"

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    def api_key_for(self, provider: str) -> str:
        return getattr(self, f"{provider}_api_key", "")

    def api_url_for(self, provider: str) -> str:
        return getattr(self, f"{provider}_api_url", "")

    def is_provider_enabled(self, provider: str) -> bool:
        return bool(getattr(self, f"enable_{provider}", False))

    def is_provider_configured(self, provider: str) -> bool:
        if not self.api_key_for(provider):
            return False
        # HTTP-only providers have no vendor default endpoint
        if provider == "ondobot":
            return bool(self.api_url_for(provider))
        return True

    def provider_flags(self) -> Dict[str, Dict[str, bool]]:
        return {
            name: {
                "configured": self.is_provider_configured(name),
                "enabled": self.is_provider_enabled(name),
            }
            for name in PROVIDER_NAMES
        }


@lru_cache
def get_settings() -> Settings:
    return Settings()
