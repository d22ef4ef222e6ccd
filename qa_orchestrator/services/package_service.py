import asyncio
from typing import Dict, List, Optional

import structlog

from qa_orchestrator.core.exceptions import InvalidTransition, PackageBusy, PackageNotFound
from qa_orchestrator.models.lifecycle import PackageStatus, TERMINAL_STATUSES, is_terminal
from qa_orchestrator.models.schemas import (
    CreatePackageRequest,
    PackageStats,
    QaPackage,
    compute_spec_hash,
)
from qa_orchestrator.repositories.interfaces.qa_package_repository import IQaPackageRepository
from qa_orchestrator.services.package_orchestrator import PackageOrchestrator

logger = structlog.get_logger()


class PackageService:
    """Business logic for creating, listing and re-queueing QA packages"""

    def __init__(
        self,
        repository: IQaPackageRepository,
        orchestrator: PackageOrchestrator,
        max_parallel_packages: int = 4,
    ):
        self.repository = repository
        self.orchestrator = orchestrator
        self.max_parallel_packages = max_parallel_packages

    async def create_package(self, request: CreatePackageRequest) -> QaPackage:
        package = QaPackage(
            name=request.name.strip(),
            description=request.description,
            spec_url=request.spec_url,
            spec_content=request.spec_content,
            spec_hash=compute_spec_hash(request.spec_content) if request.spec_content else None,
            base_url=request.base_url,
            requirements=request.requirements,
            config=request.config,
            triggered_by=request.triggered_by,
        )
        created = await self.repository.create(package)
        logger.info("QA package created", package_id=created.id, name=created.name, triggered_by=created.triggered_by)
        return created

    async def get_package(self, package_id: str) -> QaPackage:
        package = await self.repository.get_by_id(package_id)
        if package is None:
            raise PackageNotFound(package_id)
        return package

    async def list_packages(
        self, skip: int = 0, limit: int = 100, status: Optional[PackageStatus] = None
    ) -> List[QaPackage]:
        return await self.repository.get_all(skip=skip, limit=limit, status=status)

    async def requeue_package(self, package_id: str, triggered_by: Optional[str] = None) -> QaPackage:
        """Start a fresh attempt from a terminal package, leaving the original untouched"""
        original = await self.get_package(package_id)
        if not is_terminal(original.status):
            raise InvalidTransition(original.status, PackageStatus.REQUESTED)

        fresh = QaPackage(
            name=original.name,
            description=original.description,
            spec_url=original.spec_url,
            spec_content=original.spec_content,
            spec_hash=original.spec_hash,
            base_url=original.base_url,
            requirements=original.requirements,
            config=original.config,
            triggered_by=triggered_by or original.triggered_by,
            requeued_from=original.id,
        )
        created = await self.repository.create(fresh)
        logger.info("QA package re-queued", package_id=created.id, requeued_from=original.id)
        return created

    async def get_stats(self) -> PackageStats:
        by_status = await self.repository.count_by_status()
        terminal_values = {status.value for status in TERMINAL_STATUSES}
        terminal = sum(count for status, count in by_status.items() if status in terminal_values)
        total = sum(by_status.values())
        return PackageStats(
            total=total,
            by_status=by_status,
            in_flight=total - terminal,
            terminal=terminal,
        )

    async def advance_incomplete(self, limit: int = 50) -> Dict[str, str]:
        """Advance every non-terminal package by one stage, a few at a time.

        Returns the resulting status per package id. Packages that are busy,
        lost a race or failed unexpectedly are reported and skipped so one bad
        package never aborts the batch.
        """
        packages = await self.repository.get_incomplete(limit=limit)
        semaphore = asyncio.Semaphore(self.max_parallel_packages)
        results: Dict[str, str] = {}

        async def advance_one(package: QaPackage):
            async with semaphore:
                try:
                    advanced = await self.orchestrator.advance(package.id)
                    results[package.id] = advanced.status.value
                except PackageBusy:
                    results[package.id] = "BUSY"
                except InvalidTransition as e:
                    logger.error("Package advance lost a race", package_id=package.id, error=str(e))
                    results[package.id] = "CONFLICT"
                except Exception as e:
                    logger.error(
                        "Package advance failed",
                        package_id=package.id,
                        status=package.status.value,
                        error=str(e),
                        exc_info=True,
                    )
                    results[package.id] = "ERROR"

        await asyncio.gather(*(advance_one(package) for package in packages))
        logger.info("Advanced incomplete packages", count=len(packages))
        return results
