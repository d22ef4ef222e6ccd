from functools import lru_cache
from fastapi import Depends
from sqlalchemy.orm import Session
from qa_orchestrator.config.settings import settings
from qa_orchestrator.repositories.interfaces.qa_package_repository import IQaPackageRepository
from qa_orchestrator.repositories.interfaces.ai_client import IAIClient
from qa_orchestrator.repositories.interfaces.spec_fetcher import ISpecFetcher
from qa_orchestrator.repositories.interfaces.execution_engine import IExecutionEngine

from qa_orchestrator.repositories.implementations.sql_qa_package_repository import SQLQaPackageRepository
from qa_orchestrator.repositories.implementations.openai_client import OpenAIClient
from qa_orchestrator.repositories.implementations.stub_ai_client import StubAIClient
from qa_orchestrator.repositories.implementations.http_spec_fetcher import HttpSpecFetcher
from qa_orchestrator.repositories.implementations.http_execution_engine import HttpExecutionEngine

from qa_orchestrator.resilience.gateway import ResilienceRegistry
from qa_orchestrator.resilience.policy import InvocationPolicy
from qa_orchestrator.services.ai_quality_service import AIQualityService
from qa_orchestrator.services.package_locks import PackageLockRegistry
from qa_orchestrator.services.package_orchestrator import EvaluationDegradedPolicy, PackageOrchestrator
from qa_orchestrator.services.package_service import PackageService
from qa_orchestrator.core.database import get_database


class Container:
    """Dependency injection container"""

    def __init__(self):
        self._resilience_registry = None
        self._package_locks = None
        self._ai_client = None
        self._spec_fetcher = None
        self._execution_engine = None

    def qa_package_repository(self, db: Session) -> IQaPackageRepository:
        """Get QA package repository instance"""
        return SQLQaPackageRepository(db)

    @lru_cache()
    def resilience_registry(self) -> ResilienceRegistry:
        """Get the process-wide resilience registry (singleton)"""
        if self._resilience_registry is None:
            self._resilience_registry = ResilienceRegistry(InvocationPolicy.from_settings(settings))
        return self._resilience_registry

    @lru_cache()
    def package_locks(self) -> PackageLockRegistry:
        """Get the per-package lock registry (singleton)"""
        if self._package_locks is None:
            self._package_locks = PackageLockRegistry()
        return self._package_locks

    @lru_cache()
    def ai_client(self) -> IAIClient:
        """Get AI client instance (singleton)"""
        if self._ai_client is None:
            if settings.ai_provider == "stub":
                self._ai_client = StubAIClient()
            else:
                self._ai_client = OpenAIClient()
        return self._ai_client

    @lru_cache()
    def spec_fetcher(self) -> ISpecFetcher:
        """Get spec fetcher instance (singleton)"""
        if self._spec_fetcher is None:
            self._spec_fetcher = HttpSpecFetcher()
        return self._spec_fetcher

    @lru_cache()
    def execution_engine(self) -> IExecutionEngine:
        """Get execution engine instance (singleton)"""
        if self._execution_engine is None:
            self._execution_engine = HttpExecutionEngine()
        return self._execution_engine

    def package_orchestrator(self, db: Session) -> PackageOrchestrator:
        """Get package orchestrator bound to a database session"""
        return PackageOrchestrator(
            repository=self.qa_package_repository(db),
            gateway=self.resilience_registry().gateway(settings.ai_dependency_name),
            ai_service=AIQualityService(self.ai_client()),
            spec_fetcher=self.spec_fetcher(),
            execution_engine=self.execution_engine(),
            locks=self.package_locks(),
            evaluation_degraded_policy=EvaluationDegradedPolicy(settings.evaluation_degraded_policy),
            fail_generation_on_degraded=settings.fail_generation_on_degraded,
        )

    def package_service(self, db: Session) -> PackageService:
        """Get package service instance"""
        return PackageService(
            repository=self.qa_package_repository(db),
            orchestrator=self.package_orchestrator(db),
            max_parallel_packages=settings.max_parallel_packages,
        )


# Global container instance
container = Container()


# Dependency providers for FastAPI
def get_resilience_registry() -> ResilienceRegistry:
    """FastAPI dependency for the resilience registry"""
    return container.resilience_registry()


def get_package_orchestrator(db: Session = Depends(get_database)) -> PackageOrchestrator:
    """FastAPI dependency for package orchestrator"""
    return container.package_orchestrator(db)


def get_package_service(db: Session = Depends(get_database)) -> PackageService:
    """FastAPI dependency for package service"""
    return container.package_service(db)
