import logging

from fastapi import APIRouter, HTTPException, Request

from chatcore.common.models import PROVIDER_DISPLAY_NAMES, ModelValidationBody, Provider

logger = logging.getLogger("ChatCore")

router = APIRouter()


@router.get("/v1/models", summary="Configured providers and their models")
async def handle_get_models(request: Request):
    logger.info("Received request for model list.")
    catalog = request.app.state.catalog
    providers = []
    for provider in sorted(catalog.list_providers(), key=lambda p: p.value):
        providers.append({
            "id": provider.value,
            "name": PROVIDER_DISPLAY_NAMES[provider],
            "models": {
                model_id: info.model_dump(mode="json")
                for model_id, info in catalog.list_models(provider).items()
            },
        })
    return {"providers": providers}


@router.get("/v1/models/{provider}/defaults")
async def handle_get_defaults(provider: str, request: Request):
    try:
        Provider(provider)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown provider '{provider}'")
    return request.app.state.catalog.default_config(provider)


@router.post("/v1/models/validate")
async def handle_validate_model(body: ModelValidationBody, request: Request):
    return {"is_valid": request.app.state.catalog.is_valid(body.provider, body.model)}
