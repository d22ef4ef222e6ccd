import time
from typing import List, Optional

import httpx
import structlog

from qa_orchestrator.config.settings import settings
from qa_orchestrator.core.exceptions import ExecutionError
from qa_orchestrator.models.schemas import (
    ExecutionReport,
    PackageConfig,
    ScenarioOutcome,
    ScenarioResult,
    StepResult,
    TestScenario,
)
from qa_orchestrator.repositories.interfaces.execution_engine import IExecutionEngine

logger = structlog.get_logger()


class HttpExecutionEngine(IExecutionEngine):
    """Runs scenario steps sequentially against the API under test with httpx"""

    def __init__(self, request_timeout_s: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.request_timeout_s = request_timeout_s or settings.execution_request_timeout_s
        self._transport = transport

    async def run(self, scenarios: List[TestScenario], base_url: str, config: PackageConfig) -> ExecutionReport:
        if not base_url:
            raise ExecutionError("No base URL to execute against")

        started = time.perf_counter()
        report = ExecutionReport(base_url=base_url, total_scenarios=len(scenarios))
        stop = False

        try:
            client = httpx.AsyncClient(base_url=base_url, timeout=self.request_timeout_s, transport=self._transport)
        except httpx.InvalidURL as e:
            raise ExecutionError(f"Invalid base URL {base_url!r}: {e}") from e

        async with client:
            for scenario in scenarios:
                if stop:
                    report.results.append(ScenarioResult(name=scenario.name, outcome=ScenarioOutcome.SKIPPED))
                    report.skipped_scenarios += 1
                    continue

                result = await self._run_scenario(client, scenario, config)
                report.results.append(result)
                if result.outcome == ScenarioOutcome.PASSED:
                    report.passed_scenarios += 1
                elif result.outcome == ScenarioOutcome.FAILED:
                    report.failed_scenarios += 1
                else:
                    report.errored_scenarios += 1

                if config.stop_on_first_failure and result.outcome != ScenarioOutcome.PASSED:
                    stop = True

        report.duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Execution finished",
            base_url=base_url,
            passed=report.passed_scenarios,
            failed=report.failed_scenarios,
            errored=report.errored_scenarios,
            skipped=report.skipped_scenarios,
        )
        return report

    async def _run_scenario(self, client: httpx.AsyncClient, scenario: TestScenario, config: PackageConfig) -> ScenarioResult:
        started = time.perf_counter()
        steps: List[StepResult] = []
        outcome = ScenarioOutcome.PASSED

        for step in scenario.steps[: config.max_steps_per_scenario]:
            step_started = time.perf_counter()
            try:
                response = await client.request(
                    step.method.value,
                    step.endpoint,
                    headers=step.headers or None,
                    json=step.body,
                )
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                # Unreachable hosts and malformed endpoints both error the scenario
                steps.append(
                    StepResult(
                        step_number=step.step_number,
                        endpoint=step.endpoint,
                        method=step.method,
                        expected_status=step.expected_status,
                        passed=False,
                        duration_ms=(time.perf_counter() - step_started) * 1000,
                        error=str(e) or type(e).__name__,
                    )
                )
                outcome = ScenarioOutcome.ERRORED
                break

            passed = response.status_code == step.expected_status
            steps.append(
                StepResult(
                    step_number=step.step_number,
                    endpoint=step.endpoint,
                    method=step.method,
                    expected_status=step.expected_status,
                    actual_status=response.status_code,
                    passed=passed,
                    duration_ms=(time.perf_counter() - step_started) * 1000,
                )
            )
            if not passed:
                outcome = ScenarioOutcome.FAILED
                break

        return ScenarioResult(
            name=scenario.name,
            outcome=outcome,
            steps=steps,
            duration_ms=(time.perf_counter() - started) * 1000,
        )
