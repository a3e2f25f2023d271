from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    provider_registry = request.app.state.provider_registry
    provider_status = await provider_registry.health_check_all()
    all_ok = bool(provider_status) and all(provider_status.values())
    return {
        "status": "ok" if all_ok else "degraded",
        "providers": provider_status,
    }


@router.get("/ready")
async def ready(request: Request):
    provider_registry = request.app.state.provider_registry
    return {"status": "ready", "providers": provider_registry.configured_providers()}
