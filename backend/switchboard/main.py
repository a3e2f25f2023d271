from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from switchboard.api.internal import health
from switchboard.api.v1 import chat, models
from switchboard.core.config import Settings, get_settings
from switchboard.core.exceptions import (
    SwitchboardError,
    request_validation_exception_handler,
    switchboard_exception_handler,
)
from switchboard.core.logging import configure_logging, get_logger
from switchboard.middleware.request_id import RequestIdMiddleware
from switchboard.orchestration.tool_loop import ToolLoop
from switchboard.providers.catalog import ModelCatalog
from switchboard.providers.registry import ProviderRegistry
from switchboard.tools.builtin import register_builtin_tools
from switchboard.tools.registry import ToolRegistry

logger = get_logger(__name__)


def build_components(settings: Settings, provider_registry: ProviderRegistry = None) -> dict:
    catalog = provider_registry.catalog if provider_registry else ModelCatalog(settings.models_config_path)
    provider_registry = provider_registry or ProviderRegistry(settings, catalog)
    tool_registry = register_builtin_tools(
        ToolRegistry(
            timeout_seconds=settings.tool_timeout_seconds,
            max_retries=settings.tool_max_retries,
        )
    )
    tool_loop = ToolLoop(
        provider_registry,
        tool_registry,
        max_rounds=settings.max_tool_rounds,
        parallel_tools=settings.parallel_tool_calls,
    )
    return {
        "provider_registry": provider_registry,
        "tool_registry": tool_registry,
        "tool_loop": tool_loop,
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = app.state.settings
    configure_logging(settings.log_level)

    logger.info("startup", env=settings.app_env)

    # Tests may pre-install components on app.state
    if not hasattr(app.state, "provider_registry"):
        for name, component in build_components(settings).items():
            setattr(app.state, name, component)

    logger.info(
        "components_ready",
        providers=app.state.provider_registry.available_providers(),
        configured=app.state.provider_registry.configured_providers(),
        tools=[t.name for t in app.state.tool_registry.list_tools()],
    )

    yield

    await app.state.provider_registry.aclose()
    logger.info("shutdown")


def create_app(settings: Settings = None) -> FastAPI:
    settings = settings or get_settings()

    app = FastAPI(
        title="Switchboard",
        description="Multi-provider chat streaming and tool orchestration",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id", "X-Routing-Model", "X-Routing-Provider", "X-Intent"],
    )
    app.add_middleware(RequestIdMiddleware)

    app.add_exception_handler(SwitchboardError, switchboard_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

    app.include_router(chat.router, prefix="/v1")
    app.include_router(models.router, prefix="/v1")
    app.include_router(health.router)
    app.include_router(health.router, prefix="/internal")

    return app


app = create_app()
