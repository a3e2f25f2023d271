from fastapi import APIRouter, Request

from switchboard.providers.catalog import PROVIDER_INFO

router = APIRouter()


@router.get("/models")
async def list_models(request: Request):
    registry = request.app.state.provider_registry
    return {
        "object": "list",
        "data": [m.model_dump() for m in registry.enabled_models()],
    }


@router.get("/providers")
async def list_providers(request: Request):
    registry = request.app.state.provider_registry
    settings = request.app.state.settings
    flags = settings.provider_flags()
    return {
        "object": "list",
        "data": [
            {
                **info.model_dump(),
                "is_configured": flags[name]["configured"],
                "is_enabled": flags[name]["enabled"],
                "models": [m.id for m in registry.catalog.models_for(name)],
            }
            for name, info in PROVIDER_INFO.items()
        ],
    }


@router.get("/providers/status")
async def provider_status(request: Request):
    registry = request.app.state.provider_registry
    return {"data": [s.model_dump() for s in await registry.statuses()]}
