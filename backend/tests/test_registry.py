import asyncio

import pytest

from fakes import ScriptedProvider
from switchboard.core.exceptions import ModelNotFoundError, ProviderNotFoundError
from switchboard.providers.anthropic import AnthropicProvider
from switchboard.providers.catalog import ModelCatalog
from switchboard.providers.dust import DustProvider
from switchboard.providers.glean import GleanProvider
from switchboard.providers.openai import OpenAIProvider
from switchboard.providers.registry import ProviderRegistry


@pytest.fixture
def registry(settings, catalog):
    return ProviderRegistry(settings, catalog)


@pytest.mark.parametrize(
    "model, provider",
    [
        ("gpt-4o", "openai"),
        ("claude-sonnet-4-20250514", "anthropic"),
        ("glean-assistant", "glean"),
        ("ondobot-assistant", "ondobot"),
        ("glean-agent-hr-bot", "glean"),
        ("dust-acme-support", "dust"),
    ],
)
def test_resolve_by_model(registry, model, provider):
    assert registry.resolve(model).provider_name == provider


def test_unknown_model_is_provider_not_found(registry):
    with pytest.raises(ProviderNotFoundError):
        registry.resolve("llama-3-70b")


def test_model_under_wrong_provider_is_model_not_found(registry):
    with pytest.raises(ModelNotFoundError):
        registry.resolve("gpt-4o", "anthropic")


def test_unknown_provider(registry):
    with pytest.raises(ProviderNotFoundError):
        registry.get("gemini")


def test_one_instance_per_provider(registry):
    first = registry.resolve("gpt-4o")
    assert registry.resolve("gpt-4o-mini") is first
    assert registry.get("openai") is first
    assert isinstance(registry.resolve("glean-agent-x"), GleanProvider)
    assert isinstance(registry.resolve("dust-assistant"), DustProvider)


def test_adapters_built_lazily(settings, catalog):
    built = []

    def factory(s, c):
        built.append(1)
        return ScriptedProvider(s, c, [])

    registry = ProviderRegistry(settings, catalog, factories={"openai": factory})
    assert built == []
    registry.resolve("gpt-4o")
    registry.resolve("gpt-4o")
    assert built == [1]


def test_disabled_provider_not_available(settings, catalog):
    settings.enable_dust = False
    registry = ProviderRegistry(settings, catalog)
    assert "dust" not in registry.available_providers()
    with pytest.raises(ProviderNotFoundError):
        registry.resolve("dust-assistant")


def test_configured_providers_follow_credentials(settings, catalog):
    settings.ondobot_api_url = ""
    settings.anthropic_api_key = ""
    registry = ProviderRegistry(settings, catalog)
    assert set(registry.configured_providers()) == {"openai", "glean", "dust"}
    assert {m.provider for m in registry.enabled_models()} == {"openai", "glean", "dust"}


async def test_health_check_all_tolerates_failures(settings, catalog):
    class Broken(ScriptedProvider):
        async def health_check(self):
            raise RuntimeError("down")

    registry = ProviderRegistry(
        settings,
        catalog,
        factories={
            "openai": lambda s, c: ScriptedProvider(s, c, []),
            "anthropic": lambda s, c: Broken(s, c, [], provider_name="anthropic"),
            "glean": lambda s, c: ScriptedProvider(s, c, [], provider_name="glean"),
            "dust": lambda s, c: ScriptedProvider(s, c, [], provider_name="dust"),
            "ondobot": lambda s, c: ScriptedProvider(s, c, [], provider_name="ondobot"),
        },
    )
    status = await registry.health_check_all()
    assert status["openai"] is True
    assert status["anthropic"] is False


class TestCatalog:
    def test_defaults(self, catalog):
        assert catalog.default_model("openai").id == "gpt-4o"
        assert catalog.default_model("anthropic").id == "claude-sonnet-4-20250514"
        assert not catalog.supports_vision("glean-assistant")
        assert catalog.get("gpt-3.5-turbo").pricing.input_per_1m == 0.5

    def test_yaml_overrides_and_additions(self, tmp_path):
        path = tmp_path / "models.yaml"
        path.write_text(
            "models:\n"
            "  - id: gpt-4o\n"
            "    capabilities:\n"
            "      max_output_tokens: 8192\n"
            "  - id: ondobot-fast\n"
            "    name: OndoBot Fast\n"
            "    provider: ondobot\n"
            "disabled:\n"
            "  - gpt-4-turbo\n"
        )
        catalog = ModelCatalog(str(path))
        gpt4o = catalog.get("gpt-4o")
        assert gpt4o.capabilities.max_output_tokens == 8192
        assert gpt4o.capabilities.vision is True
        assert catalog.provider_for("ondobot-fast") == "ondobot"
        assert "gpt-4-turbo" not in [m.id for m in catalog.models_for("openai")]
        # disabled models still resolve
        assert catalog.provider_for("gpt-4-turbo") == "openai"

    def test_missing_file_keeps_builtin_table(self, tmp_path):
        catalog = ModelCatalog(str(tmp_path / "nope.yaml"))
        assert catalog.get("gpt-4o") is not None


def _fakes(settings, catalog, **overrides):
    factories = {}
    for name in ("openai", "anthropic", "glean", "dust", "ondobot"):
        provider = overrides.get(name) or ScriptedProvider(settings, catalog, [], provider_name=name)
        factories[name] = (lambda p: lambda s, c: p)(provider)
    return ProviderRegistry(settings, catalog, factories=factories)


async def test_statuses_bounded_by_health_check_timeout(settings, catalog):
    class Hanging(ScriptedProvider):
        async def health_check(self):
            await asyncio.sleep(5)
            return True

    settings.health_check_timeout_seconds = 0.05
    registry = _fakes(settings, catalog, dust=Hanging(settings, catalog, [], provider_name="dust"))
    statuses = {s.provider: s for s in await registry.statuses()}

    assert statuses["openai"].is_healthy
    assert not statuses["dust"].is_healthy
    assert statuses["dust"].error_message == "Health check timed out"


async def test_aclose_reaches_every_adapter(settings, catalog):
    closed = []

    class Closing(ScriptedProvider):
        async def aclose(self):
            closed.append(self.provider_name)

    registry = _fakes(
        settings,
        catalog,
        openai=Closing(settings, catalog, []),
        anthropic=Closing(settings, catalog, [], provider_name="anthropic"),
    )
    registry.get("openai")
    registry.get("anthropic")
    await registry.aclose()
    assert sorted(closed) == ["anthropic", "openai"]


async def test_sdk_adapters_close_their_clients(settings, catalog):
    class Client:
        closed = False

        async def close(self):
            self.closed = True

    openai_client, anthropic_client = Client(), Client()
    await OpenAIProvider(settings, catalog, client=openai_client).aclose()
    await AnthropicProvider(settings, catalog, client=anthropic_client).aclose()
    assert openai_client.closed and anthropic_client.closed
    # never-built clients are left alone
    await OpenAIProvider(settings, catalog).aclose()
