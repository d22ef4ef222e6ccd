from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, Query, status
import structlog

from qa_orchestrator.core.dependencies import get_package_orchestrator, get_package_service
from qa_orchestrator.models.lifecycle import PackageStatus
from qa_orchestrator.models.schemas import (
    CreatePackageRequest,
    PackageStats,
    QaPackage,
    RequeueRequest,
)
from qa_orchestrator.services.package_orchestrator import PackageOrchestrator
from qa_orchestrator.services.package_service import PackageService

logger = structlog.get_logger()

router = APIRouter(prefix="/packages", tags=["packages"])


@router.post("/", response_model=QaPackage, status_code=status.HTTP_201_CREATED)
async def create_package(
    request: CreatePackageRequest,
    service: PackageService = Depends(get_package_service)
):
    """Create a QA package in REQUESTED status"""
    logger.info("Creating QA package", name=request.name, spec_url=request.spec_url)
    return await service.create_package(request)


@router.get("/", response_model=List[QaPackage])
async def list_packages(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    status_filter: Optional[PackageStatus] = Query(None, alias="status"),
    service: PackageService = Depends(get_package_service)
):
    """List QA packages, newest first"""
    return await service.list_packages(skip=skip, limit=limit, status=status_filter)


@router.get("/stats", response_model=PackageStats)
async def package_stats(service: PackageService = Depends(get_package_service)):
    """Package counts per status"""
    return await service.get_stats()


@router.post("/advance-incomplete", response_model=Dict[str, str])
async def advance_incomplete(
    limit: int = Query(50, ge=1, le=500),
    service: PackageService = Depends(get_package_service)
):
    """Advance every non-terminal package by one stage"""
    return await service.advance_incomplete(limit=limit)


@router.get("/{package_id}", response_model=QaPackage)
async def get_package(
    package_id: str,
    service: PackageService = Depends(get_package_service)
):
    """Get a QA package by ID"""
    return await service.get_package(package_id)


@router.post("/{package_id}/advance", response_model=QaPackage)
async def advance_package(
    package_id: str,
    wait: bool = False,
    orchestrator: PackageOrchestrator = Depends(get_package_orchestrator)
):
    """Run exactly one lifecycle stage for the package"""
    return await orchestrator.advance(package_id, wait=wait)


@router.post("/{package_id}/drive", response_model=QaPackage)
async def drive_package(
    package_id: str,
    max_stages: int = Query(20, ge=1, le=50),
    orchestrator: PackageOrchestrator = Depends(get_package_orchestrator)
):
    """Advance the package until it is terminal or stops making progress"""
    return await orchestrator.drive(package_id, max_stages=max_stages)


@router.post("/{package_id}/cancel", response_model=QaPackage)
async def cancel_package(
    package_id: str,
    orchestrator: PackageOrchestrator = Depends(get_package_orchestrator)
):
    """Cancel the package now or at its next stage boundary"""
    return await orchestrator.cancel(package_id)


@router.post("/{package_id}/requeue", response_model=QaPackage, status_code=status.HTTP_201_CREATED)
async def requeue_package(
    package_id: str,
    request: Optional[RequeueRequest] = None,
    service: PackageService = Depends(get_package_service)
):
    """Create a fresh attempt from a terminal package"""
    return await service.requeue_package(package_id, triggered_by=request.triggered_by if request else None)
