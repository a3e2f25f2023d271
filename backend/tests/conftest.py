import pytest

from switchboard.core.config import Settings
from switchboard.models.chat import ChatMessage
from switchboard.providers.catalog import ModelCatalog


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        openai_api_key="sk-test",
        anthropic_api_key="sk-ant-test",
        glean_api_key="glean-test",
        glean_api_url="https://glean.test/api",
        dust_api_key="dust-test",
        dust_api_url="https://dust.test/api/v1",
        ondobot_api_key="ondo-test",
        ondobot_api_url="https://ondobot.test/api",
        ondobot_timeout_seconds=0.2,
        tool_timeout_seconds=1.0,
    )


@pytest.fixture
def catalog() -> ModelCatalog:
    return ModelCatalog()


@pytest.fixture
def user_message():
    def _make(text: str, **kwargs) -> ChatMessage:
        return ChatMessage(role="user", content=text, **kwargs)

    return _make
