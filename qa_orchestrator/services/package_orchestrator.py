"""Drives QA packages through their lifecycle one stage at a time.

Each ``advance`` call holds the package's stage lock, runs the work for the
current status and commits exactly one transition through a compare-and-set
write. Degraded AI results are stored with their ``fallback`` flag and do
not raise.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict

import structlog

from qa_orchestrator.core.exceptions import (
    ExecutionError,
    InvalidTransition,
    PackageNotFound,
    SpecFetchError,
)
from qa_orchestrator.models.lifecycle import (
    PackageStatus,
    allowed_targets,
    is_terminal,
    transition,
)
from qa_orchestrator.models.schemas import QaPackage, compute_spec_hash, utcnow
from qa_orchestrator.repositories.interfaces.execution_engine import IExecutionEngine
from qa_orchestrator.repositories.interfaces.qa_package_repository import IQaPackageRepository
from qa_orchestrator.repositories.interfaces.spec_fetcher import ISpecFetcher
from qa_orchestrator.resilience.gateway import ResilientInvocationGateway
from qa_orchestrator.resilience.outcome import InvocationIntent
from qa_orchestrator.services.ai_quality_service import AIQualityService
from qa_orchestrator.services.package_locks import PackageLockRegistry

logger = structlog.get_logger()

S = PackageStatus


class EvaluationDegradedPolicy(str, Enum):
    """What to do when the evaluation call comes back degraded"""

    ADVANCE = "advance"  # QA_EVAL_DONE with the fallback summary
    COMPLETE = "complete"  # straight to COMPLETE with the fallback summary
    RETRY = "retry"  # stay in QA_EVAL_IN_PROGRESS, discard the result


@dataclass
class StageResult:
    target: PackageStatus
    changes: Dict[str, Any] = field(default_factory=dict)


def _degraded_note(stage: str, outcome) -> str:
    return f"{stage} degraded: {outcome.cause.value} ({outcome.detail})"


class PackageOrchestrator:
    def __init__(
        self,
        repository: IQaPackageRepository,
        gateway: ResilientInvocationGateway,
        ai_service: AIQualityService,
        spec_fetcher: ISpecFetcher,
        execution_engine: IExecutionEngine,
        locks: PackageLockRegistry,
        *,
        evaluation_degraded_policy: EvaluationDegradedPolicy = EvaluationDegradedPolicy.ADVANCE,
        fail_generation_on_degraded: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.gateway = gateway
        self.ai_service = ai_service
        self.spec_fetcher = spec_fetcher
        self.execution_engine = execution_engine
        self.locks = locks
        self.evaluation_degraded_policy = EvaluationDegradedPolicy(evaluation_degraded_policy)
        self.fail_generation_on_degraded = fail_generation_on_degraded
        self._clock = clock

    async def advance(self, package_id: str, wait: bool = False) -> QaPackage:
        """Run the stage for the package's current status and commit its transition.

        Raises ``PackageBusy`` if a stage is already in flight for this id and
        ``wait`` is false. Terminal packages are returned unchanged.
        """
        async with self.locks.hold(package_id, wait=wait):
            package = await self._load(package_id)
            if is_terminal(package.status):
                self.locks.clear_cancel(package_id)
                return package

            if self._cancel_pending(package):
                return await self._commit_cancel(package)

            logger.info("Running stage", package_id=package_id, status=package.status.value)
            result = await self._run_stage(package)

            if self._cancel_pending(package):
                logger.info(
                    "Cancellation requested during stage, discarding result",
                    package_id=package_id,
                    status=package.status.value,
                    discarded_target=result.target.value,
                )
                return await self._commit_cancel(package)

            return await self._commit(package, result.target, result.changes)

    async def drive(self, package_id: str, max_stages: int = 20) -> QaPackage:
        """Advance until the package is terminal or a stage makes no progress"""
        package = await self._load(package_id)
        for _ in range(max_stages):
            if is_terminal(package.status):
                break
            before = package.status
            package = await self.advance(package_id, wait=True)
            if package.status == before:
                break
        return package

    async def cancel(self, package_id: str) -> QaPackage:
        """Cancel now, or at the next stage boundary if a stage is in flight"""
        package = await self._load(package_id)
        if S.CANCELLED not in allowed_targets(package.status):
            raise InvalidTransition(package.status, S.CANCELLED)

        if self.locks.is_busy(package_id):
            self.locks.request_cancel(package_id)
            logger.info("Cancellation deferred to stage boundary", package_id=package_id, status=package.status.value)
            return package

        async with self.locks.hold(package_id, wait=True):
            package = await self._load(package_id)
            if S.CANCELLED not in allowed_targets(package.status):
                raise InvalidTransition(package.status, S.CANCELLED)
            return await self._commit_cancel(package)

    async def _load(self, package_id: str) -> QaPackage:
        package = await self.repository.get_by_id(package_id)
        if package is None:
            raise PackageNotFound(package_id)
        return package

    def _cancel_pending(self, package: QaPackage) -> bool:
        if not self.locks.cancel_requested(package.id):
            return False
        if S.CANCELLED not in allowed_targets(package.status):
            self.locks.clear_cancel(package.id)
            return False
        return True

    async def _commit_cancel(self, package: QaPackage) -> QaPackage:
        try:
            return await self._commit(package, S.CANCELLED, {"error_message": "Cancelled by request"})
        finally:
            self.locks.clear_cancel(package.id)

    async def _commit(self, package: QaPackage, target: PackageStatus, changes: Dict[str, Any]) -> QaPackage:
        updated = package.model_copy(update=changes) if changes else package
        moved = transition(updated, target, now=self._clock())
        if moved is package:
            return package

        if not await self.repository.compare_and_set(moved, expected_status=package.status):
            current = await self.repository.get_by_id(package.id)
            raise InvalidTransition(current.status if current else package.status, target)
        return moved

    async def _run_stage(self, package: QaPackage) -> StageResult:
        handler = {
            S.REQUESTED: self._fetch_spec,
            S.SPEC_FETCHED: self._generate_scenarios,
            S.AI_SUCCESS: self._start_execution,
            S.EXECUTION_IN_PROGRESS: self._execute,
            S.EXECUTION_COMPLETE: self._route_evaluation,
            S.QA_EVAL_IN_PROGRESS: self._evaluate,
            S.QA_EVAL_DONE: self._finish,
        }[package.status]
        return await handler(package)

    async def _fetch_spec(self, package: QaPackage) -> StageResult:
        if package.spec_url:
            try:
                content = await self.spec_fetcher.fetch(package.spec_url)
            except SpecFetchError as e:
                logger.warning("Spec fetch failed", package_id=package.id, url=package.spec_url, error=str(e))
                return StageResult(S.FAILED_SPEC_FETCH, {"error_message": str(e)})
        elif package.spec_content:
            content = package.spec_content
        else:
            return StageResult(S.FAILED_SPEC_FETCH, {"error_message": "No spec source configured"})

        changes: Dict[str, Any] = {"started_at": self._clock(), "error_message": None}
        spec_hash = compute_spec_hash(content)
        if spec_hash == package.spec_hash:
            logger.info("Spec unchanged since last fetch", package_id=package.id, spec_hash=spec_hash)
        else:
            changes.update(spec_content=content, spec_hash=spec_hash)
        return StageResult(S.SPEC_FETCHED, changes)

    async def _generate_scenarios(self, package: QaPackage) -> StageResult:
        outcome = await self.gateway.invoke(
            InvocationIntent.SCENARIO_GENERATION,
            lambda: self.ai_service.generate_scenarios(package),
        )
        if not outcome.degraded:
            return StageResult(S.AI_SUCCESS, {"scenario_set": outcome.value, "error_message": None})

        note = _degraded_note("Scenario generation", outcome)
        if self.fail_generation_on_degraded:
            return StageResult(S.FAILED_GENERATION, {"scenario_set": outcome.value, "error_message": note})
        return StageResult(S.AI_SUCCESS, {"scenario_set": outcome.value, "error_message": note})

    async def _start_execution(self, package: QaPackage) -> StageResult:
        scenario_set = package.scenario_set
        if scenario_set is None or not scenario_set.scenarios:
            reason = "No scenarios to execute"
            if scenario_set is not None and scenario_set.fallback:
                reason += " (scenario generation was degraded)"
            return StageResult(S.FAILED_EXECUTION, {"error_message": reason})
        return StageResult(S.EXECUTION_IN_PROGRESS)

    async def _execute(self, package: QaPackage) -> StageResult:
        scenarios = package.scenario_set.scenarios if package.scenario_set else []
        timeout_s = package.config.timeout_ms / 1000
        try:
            report = await asyncio.wait_for(
                self.execution_engine.run(scenarios, package.base_url, package.config),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning("Execution timed out", package_id=package.id, timeout_s=timeout_s)
            return StageResult(S.FAILED_EXECUTION, {"error_message": f"Execution timed out after {timeout_s}s"})
        except ExecutionError as e:
            logger.error("Execution failed", package_id=package.id, error=str(e))
            return StageResult(S.FAILED_EXECUTION, {"error_message": str(e)})
        return StageResult(S.EXECUTION_COMPLETE, {"execution_report": report})

    async def _route_evaluation(self, package: QaPackage) -> StageResult:
        if package.config.evaluation_enabled or package.config.coverage_enabled:
            return StageResult(S.QA_EVAL_IN_PROGRESS)
        return StageResult(S.COMPLETE)

    async def _evaluate(self, package: QaPackage) -> StageResult:
        changes: Dict[str, Any] = {}
        notes = []

        if package.config.coverage_enabled:
            coverage = await self.gateway.invoke(
                InvocationIntent.COVERAGE_ANALYSIS,
                lambda: self.ai_service.analyze_coverage(package),
            )
            changes["coverage"] = coverage.value
            if coverage.degraded:
                notes.append(_degraded_note("Coverage analysis", coverage))

        target = S.QA_EVAL_DONE
        if package.config.evaluation_enabled:
            evaluation = await self.gateway.invoke(
                InvocationIntent.EVALUATION,
                lambda: self.ai_service.evaluate_results(package),
            )
            if evaluation.degraded:
                policy = self.evaluation_degraded_policy
                logger.warning(
                    "Evaluation degraded",
                    package_id=package.id,
                    cause=evaluation.cause.value,
                    policy=policy.value,
                )
                if policy == EvaluationDegradedPolicy.RETRY:
                    return StageResult(S.QA_EVAL_IN_PROGRESS)
                if policy == EvaluationDegradedPolicy.COMPLETE:
                    target = S.COMPLETE
                notes.append(_degraded_note("Evaluation", evaluation))
            changes["qa_summary"] = evaluation.value

        changes["error_message"] = "; ".join(notes) or None
        return StageResult(target, changes)

    async def _finish(self, package: QaPackage) -> StageResult:
        return StageResult(S.COMPLETE)
