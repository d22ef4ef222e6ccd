from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from qa_orchestrator.models.lifecycle import PackageStatus
from qa_orchestrator.models.schemas import QaPackage


class IQaPackageRepository(ABC):
    """Interface for QA package persistence"""

    @abstractmethod
    async def create(self, package: QaPackage) -> QaPackage:
        pass

    @abstractmethod
    async def get_by_id(self, package_id: str) -> Optional[QaPackage]:
        pass

    @abstractmethod
    async def get_all(
        self, skip: int = 0, limit: int = 100, status: Optional[PackageStatus] = None
    ) -> List[QaPackage]:
        pass

    @abstractmethod
    async def get_incomplete(self, limit: int = 100) -> List[QaPackage]:
        """Packages that are not in a terminal status, oldest first"""
        pass

    @abstractmethod
    async def compare_and_set(self, package: QaPackage, expected_status: PackageStatus) -> bool:
        """Write ``package`` only if the stored status still equals ``expected_status``"""
        pass

    @abstractmethod
    async def count_by_status(self) -> Dict[str, int]:
        pass
