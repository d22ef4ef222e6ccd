import json
import re
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError
import structlog

from qa_orchestrator.core.exceptions import ProviderRejection
from qa_orchestrator.models.schemas import (
    CoverageReport,
    ExecutionReport,
    QaPackage,
    QaSummary,
    ScenarioSet,
)
from qa_orchestrator.repositories.interfaces.ai_client import IAIClient

logger = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)

# Longest spec excerpt sent to the provider
_MAX_SPEC_CHARS = 60000


class AIQualityService:
    """Builds prompts for each AI-backed stage and parses the replies into payload models.

    A reply that is not valid JSON for the expected model raises
    ``ProviderRejection`` so the gateway retries it like any other provider
    error.
    """

    def __init__(self, ai_client: IAIClient):
        self.ai_client = ai_client

    async def generate_scenarios(self, package: QaPackage) -> ScenarioSet:
        config = package.config
        user_prompt = (
            f"OpenAPI specification:\n{(package.spec_content or '')[:_MAX_SPEC_CHARS]}\n\n"
            f"Base URL: {package.base_url}\n"
            f"Requirements: {package.requirements or 'none given'}\n"
            f"Generate at most {config.max_scenarios} scenarios with at most "
            f"{config.max_steps_per_scenario} steps each."
        )
        if config.include_security_tests:
            user_prompt += "\nInclude security-focused scenarios (auth bypass, injection, excessive data exposure)."

        raw = await self.ai_client.complete(_SCENARIO_SYSTEM_PROMPT, user_prompt, model=config.ai_model)
        scenario_set = self._parse(raw, ScenarioSet)
        scenario_set.scenarios = scenario_set.scenarios[: config.max_scenarios]
        scenario_set.fallback = False
        logger.info("Scenarios generated", package_id=package.id, count=len(scenario_set.scenarios))
        return scenario_set

    async def evaluate_results(self, package: QaPackage) -> QaSummary:
        report = package.execution_report or ExecutionReport(base_url=package.base_url)
        user_prompt = (
            f"Requirements: {package.requirements or 'none given'}\n"
            f"Execution report:\n{report.model_dump_json(indent=2)}"
        )
        raw = await self.ai_client.complete(_EVALUATION_SYSTEM_PROMPT, user_prompt, model=package.config.ai_model)
        summary = self._parse(raw, QaSummary)
        # Counters come from the report, not from the model's arithmetic
        summary.passed_scenarios = report.passed_scenarios
        summary.failed_scenarios = report.failed_scenarios
        summary.errored_scenarios = report.errored_scenarios
        summary.fallback = False
        return summary

    async def analyze_coverage(self, package: QaPackage) -> CoverageReport:
        scenarios = package.scenario_set.scenarios if package.scenario_set else []
        user_prompt = (
            f"OpenAPI specification:\n{(package.spec_content or '')[:_MAX_SPEC_CHARS]}\n\n"
            f"Scenarios:\n{json.dumps([s.model_dump(mode='json') for s in scenarios], indent=2)}"
        )
        raw = await self.ai_client.complete(_COVERAGE_SYSTEM_PROMPT, user_prompt, model=package.config.ai_model)
        coverage = self._parse(raw, CoverageReport)
        coverage.fallback = False
        return coverage

    @staticmethod
    def _parse(raw: str, model: Type[M]) -> M:
        payload = _extract_json(raw)
        if payload is None:
            raise ProviderRejection(f"AI reply is not valid JSON for {model.__name__}")
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            logger.warning("AI reply failed validation", model=model.__name__, errors=e.error_count())
            raise ProviderRejection(f"AI reply does not match {model.__name__}: {e.error_count()} errors") from e


def _extract_json(raw: str) -> Optional[dict]:
    text = (raw or "").strip()
    fenced = re.search(r"```(?:json)?\s*(.*?)```", text, re.DOTALL)
    if fenced:
        text = fenced.group(1).strip()
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if not match:
        return None
    try:
        data = json.loads(match.group())
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


_SCENARIO_SYSTEM_PROMPT = """GENERATE_SCENARIOS
You are a senior QA engineer. Design API test scenarios for the OpenAPI specification you are given.
Respond with ONLY a JSON object of the form:
{"scenarios": [{"name": str, "description": str, "scenario_type": "happy_path" | "negative" | "edge_case" | "security",
  "priority": "low" | "medium" | "high",
  "steps": [{"step_number": int, "name": str, "method": "GET" | "POST" | "PUT" | "PATCH" | "DELETE",
             "endpoint": str, "headers": object, "body": object | null, "expected_status": int}]}]}
Endpoints are paths relative to the base URL."""

_EVALUATION_SYSTEM_PROMPT = """EVALUATE_RESULTS
You are a QA lead reviewing an automated API test run. Judge whether the API meets its requirements.
Respond with ONLY a JSON object of the form:
{"overall_verdict": "PASS" | "PASS_WITH_WARNINGS" | "FAIL" | "ERROR" | "INCONCLUSIVE", "summary": str,
 "key_findings": [{"title": str, "description": str, "severity": "LOW" | "MEDIUM" | "HIGH" | "CRITICAL"}],
 "recommendations": [{"priority": "LOW" | "MEDIUM" | "HIGH" | "IMMEDIATE", "title": str, "description": str, "action_items": [str]}],
 "risk_assessment": {"overall_risk": "LOW" | "MEDIUM" | "HIGH" | "CRITICAL", "quality_score": int, "stability_score": int,
                     "security_score": int, "risk_factors": [str]}}
Scores are 0-100."""

_COVERAGE_SYSTEM_PROMPT = """ANALYZE_COVERAGE
You compare API test scenarios with the operations declared in an OpenAPI specification.
Respond with ONLY a JSON object of the form:
{"total_operations": int, "covered_operations": int, "coverage_percentage": float,
 "operation_details": [{"method": str, "path": str, "covered": bool, "scenario_count": int}],
 "gaps": [{"type": "UNCOVERED_OPERATION" | "MISSING_NEGATIVE_TEST" | "MISSING_EDGE_CASE" | "MISSING_AUTH_TEST" | "MISSING_SECURITY_TEST",
           "description": str, "severity": "LOW" | "MEDIUM" | "HIGH" | "CRITICAL", "operation": str | null}]}"""
