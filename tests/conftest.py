import asyncio
from typing import List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from main import app
from qa_orchestrator.core.database import build_engine, get_database
from qa_orchestrator.core.dependencies import (
    get_package_orchestrator,
    get_package_service,
    get_resilience_registry,
)
from qa_orchestrator.models.database import Base
from qa_orchestrator.models.schemas import (
    ExecutionReport,
    PackageConfig,
    ScenarioOutcome,
    ScenarioResult,
    TestScenario,
)
from qa_orchestrator.repositories.implementations.sql_qa_package_repository import SQLQaPackageRepository
from qa_orchestrator.repositories.implementations.stub_ai_client import StubAIClient
from qa_orchestrator.repositories.interfaces.ai_client import IAIClient
from qa_orchestrator.repositories.interfaces.execution_engine import IExecutionEngine
from qa_orchestrator.repositories.interfaces.spec_fetcher import ISpecFetcher
from qa_orchestrator.resilience.gateway import ResilienceRegistry
from qa_orchestrator.resilience.policy import InvocationPolicy
from qa_orchestrator.services.ai_quality_service import AIQualityService
from qa_orchestrator.services.package_locks import PackageLockRegistry
from qa_orchestrator.services.package_orchestrator import PackageOrchestrator
from qa_orchestrator.services.package_service import PackageService

SAMPLE_SPEC = """openapi: 3.0.0
info:
  title: Pets
  version: 1.0.0
paths:
  /pets:
    get:
      summary: List pets
  /pets/{petId}:
    get:
      summary: Get a pet
  /owners:
    get:
      summary: List owners
"""


class FakeClock:
    """Monotonic clock that only moves when told to"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Awaitable sleep that records requested delays and returns immediately"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeSpecFetcher(ISpecFetcher):
    def __init__(self, content: str = SAMPLE_SPEC, error: Optional[Exception] = None):
        self.content = content
        self.error = error
        self.calls = 0
        self.started = asyncio.Event()
        self.release: Optional[asyncio.Event] = None

    async def fetch(self, url: str) -> str:
        self.calls += 1
        self.started.set()
        if self.release is not None:
            await self.release.wait()
        if self.error:
            raise self.error
        return self.content


class FakeExecutionEngine(IExecutionEngine):
    """Marks every scenario as passed unless told to fail"""

    def __init__(self, error: Optional[Exception] = None, delay_s: float = 0.0):
        self.error = error
        self.delay_s = delay_s
        self.calls = 0

    async def run(self, scenarios: List[TestScenario], base_url: str, config: PackageConfig) -> ExecutionReport:
        self.calls += 1
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error:
            raise self.error
        return ExecutionReport(
            base_url=base_url,
            total_scenarios=len(scenarios),
            passed_scenarios=len(scenarios),
            results=[ScenarioResult(name=s.name, outcome=ScenarioOutcome.PASSED) for s in scenarios],
        )


class ScriptedAIClient(IAIClient):
    """Delegates to the stub client unless a failure is scripted"""

    def __init__(self):
        self.calls = 0
        self.failure: Optional[Exception] = None
        self.failures_by_marker = {}
        self._stub = StubAIClient()

    async def complete(self, system_prompt: str, user_prompt: str, model: Optional[str] = None) -> str:
        self.calls += 1
        for marker, error in self.failures_by_marker.items():
            if marker in system_prompt:
                raise error
        if self.failure is not None:
            raise self.failure
        return await self._stub.complete(system_prompt, user_prompt, model)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def repository(db_session):
    return SQLQaPackageRepository(db_session)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def policy():
    return InvocationPolicy(call_timeout_s=5.0)


@pytest.fixture
def registry(policy, recording_sleep, fake_clock):
    return ResilienceRegistry(policy, sleep=recording_sleep, now_monotonic=fake_clock)


@pytest.fixture
def ai_client():
    return ScriptedAIClient()


@pytest.fixture
def spec_fetcher():
    return FakeSpecFetcher()


@pytest.fixture
def execution_engine():
    return FakeExecutionEngine()


@pytest.fixture
def locks():
    return PackageLockRegistry()


@pytest.fixture
def make_orchestrator(repository, registry, ai_client, spec_fetcher, execution_engine, locks):
    def factory(**kwargs):
        return PackageOrchestrator(
            repository=kwargs.pop("repository", repository),
            gateway=registry.gateway("ai-provider"),
            ai_service=AIQualityService(ai_client),
            spec_fetcher=kwargs.pop("spec_fetcher", spec_fetcher),
            execution_engine=kwargs.pop("execution_engine", execution_engine),
            locks=locks,
            **kwargs,
        )
    return factory


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


@pytest.fixture
def package_service(repository, orchestrator):
    return PackageService(repository=repository, orchestrator=orchestrator)


@pytest.fixture
def test_client(engine, registry, ai_client, spec_fetcher, execution_engine, locks):
    """Synchronous test client wired to in-memory collaborators"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    def build_orchestrator(db):
        return PackageOrchestrator(
            repository=SQLQaPackageRepository(db),
            gateway=registry.gateway("ai-provider"),
            ai_service=AIQualityService(ai_client),
            spec_fetcher=spec_fetcher,
            execution_engine=execution_engine,
            locks=locks,
        )

    def override_orchestrator():
        db = TestingSessionLocal()
        try:
            yield build_orchestrator(db)
        finally:
            db.close()

    def override_service():
        db = TestingSessionLocal()
        try:
            yield PackageService(SQLQaPackageRepository(db), build_orchestrator(db))
        finally:
            db.close()

    app.dependency_overrides[get_database] = override_get_db
    app.dependency_overrides[get_package_orchestrator] = override_orchestrator
    app.dependency_overrides[get_package_service] = override_service
    app.dependency_overrides[get_resilience_registry] = lambda: registry
    # No startup events: tables already exist on the in-memory engine
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()
