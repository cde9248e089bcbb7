from fastapi import APIRouter
from app.api.v1.routes.special_collections import router as special_collections_router
from app.api.v1.routes.payments import router as payments_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(special_collections_router)
api_router.include_router(payments_router)
