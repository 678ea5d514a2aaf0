from fastapi import APIRouter

from dependencies.generation import Catalog
from schemas.api import ApiResponse
from schemas.generation import ModelListRequest, ModelListResponse


router = APIRouter(tags=["models"])


@router.post("/models", response_model=ApiResponse[ModelListResponse])
async def list_models(
    payload: ModelListRequest, catalog: Catalog
) -> ApiResponse[ModelListResponse]:
    """List the models a provider offers for the given (or configured) key.

    Errors are raised as generation errors and rendered by the global
    exception handler: 400 for a missing provider or key, 401 when the
    provider rejects the key, 502 for any other upstream failure.
    """
    models = await catalog.list_models(payload.provider, payload.api_key)
    return ApiResponse(
        success=True,
        data=ModelListResponse(models=models),
        message=f"Found {len(models)} models",
    )
