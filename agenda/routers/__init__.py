"""API router initializers."""

from fastapi import APIRouter


def get_api_router() -> APIRouter:
    """Construct and return the API router."""

    from agenda.routers.appointments import router as appointments_router
    from agenda.routers.availability import router as availability_router

    api_router = APIRouter()
    api_router.include_router(appointments_router, prefix="/appointments", tags=["appointments"])
    api_router.include_router(availability_router, prefix="/availability", tags=["availability"])
    return api_router
