"""Gateway and model-catalog dependencies.

Both are cheap to build and stateless, so each request gets a fresh instance
bound to the current settings. Tests override these with instances that use
an ``httpx.MockTransport`` client.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends

from core.config import get_settings
from services.generation.catalog import ModelCatalog
from services.generation.gateway import GenerationGateway


def get_gateway() -> GenerationGateway:
    return GenerationGateway(get_settings())


def get_model_catalog() -> ModelCatalog:
    return ModelCatalog(get_settings())


Gateway = Annotated[GenerationGateway, Depends(get_gateway)]
Catalog = Annotated[ModelCatalog, Depends(get_model_catalog)]
