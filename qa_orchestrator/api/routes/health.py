from datetime import datetime, timezone
from typing import Any, Dict
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session
import structlog

from qa_orchestrator.config.settings import settings
from qa_orchestrator.core.database import get_database
from qa_orchestrator.core.dependencies import get_resilience_registry
from qa_orchestrator.resilience.gateway import ResilienceRegistry

logger = structlog.get_logger()

router = APIRouter(prefix="/health", tags=["health"])


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    environment: str


@router.get("/", response_model=HealthResponse, status_code=status.HTTP_200_OK)
async def health_check():
    """Health check endpoint"""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version="1.0.0",
        environment=settings.environment
    )


@router.get("/readiness")
async def readiness_check(
    db: Session = Depends(get_database),
    registry: ResilienceRegistry = Depends(get_resilience_registry)
):
    """Readiness check covering the database and the AI dependency's breaker"""
    checks = {}
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error("Database readiness check failed", error=str(e))
        checks["database"] = "unavailable"

    if settings.ai_provider == "stub":
        checks["ai_provider"] = "stub"
    elif not settings.openai_api_key:
        checks["ai_provider"] = "not_configured"
    else:
        gateway_metrics = registry.gateway(settings.ai_dependency_name).metrics()
        checks["ai_provider"] = "ok" if gateway_metrics["healthy"] else "circuit_open"

    return {
        "status": "ready" if checks["database"] == "ok" else "not_ready",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc)
    }


@router.get("/resilience")
async def resilience_metrics(registry: ResilienceRegistry = Depends(get_resilience_registry)) -> Dict[str, Any]:
    """Breaker, rate limiter and bulkhead state per dependency"""
    # Make sure the AI dependency always shows up, even before its first call
    registry.gateway(settings.ai_dependency_name)
    return registry.metrics()


@router.post("/resilience/{name}/reset")
async def reset_resilience(name: str, registry: ResilienceRegistry = Depends(get_resilience_registry)):
    """Administrative reset of one dependency's guard state"""
    if not registry.reset(name):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown dependency: {name}")
    logger.info("Resilience state reset via API", dependency=name)
    return {"dependency": name, "reset": True}
