from fastapi import APIRouter

from backend.app.api.v1.endpoints import auth, billing, prescriptions

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
api_router.include_router(prescriptions.router, prefix="/prescriptions", tags=["prescriptions"])
