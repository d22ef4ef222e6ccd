from abc import ABC, abstractmethod
from typing import List
from qa_orchestrator.models.schemas import ExecutionReport, PackageConfig, TestScenario


class IExecutionEngine(ABC):
    """Interface for running generated scenarios against the API under test"""

    @abstractmethod
    async def run(self, scenarios: List[TestScenario], base_url: str, config: PackageConfig) -> ExecutionReport:
        """Execute scenarios, raising ExecutionError if the run cannot happen at all"""
        pass
