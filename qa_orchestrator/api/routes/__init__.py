from fastapi import APIRouter
from qa_orchestrator.api.routes import packages, health

api_router = APIRouter()

# Include all route modules
api_router.include_router(health.router)
api_router.include_router(packages.router)
