from fastapi import APIRouter

from .generate import router as generate_router
from .health import router as health_router
from .models import router as models_router


# The gateway has no user accounts: provider credentials travel with each
# request (or come from settings), so every router is public.
api_router = APIRouter()

api_router.include_router(health_router, tags=["health"])
api_router.include_router(generate_router)
api_router.include_router(models_router)
