from fastapi import APIRouter

from app.api.v1.routes import expenses, instances, financing

api_router = APIRouter()

api_router.include_router(expenses.router)
api_router.include_router(instances.router)
api_router.include_router(financing.router)
