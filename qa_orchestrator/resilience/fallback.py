"""Degraded payloads returned when an AI call could not be completed.

Each payload is an instance of the same model a successful call returns for
that intent, with ``fallback=True`` set. Consumers never need to special-case
the shape.
"""

from typing import Optional, Union

from qa_orchestrator.models.schemas import (
    CoverageGap,
    CoverageReport,
    GapType,
    GenericAiPayload,
    QaSummary,
    Recommendation,
    RecommendationPriority,
    RiskAssessment,
    ScenarioSet,
    Severity,
    Verdict,
)
from qa_orchestrator.resilience.outcome import DegradationCause, InvocationIntent

UNAVAILABLE = "AI service temporarily unavailable"


def fallback_payload(
    intent: Union[InvocationIntent, str],
    cause: Optional[DegradationCause] = None,
):
    kind = InvocationIntent.classify(intent)
    reason = _describe(cause)

    if kind == InvocationIntent.SCENARIO_GENERATION:
        return ScenarioSet(scenarios=[], fallback=True, reason=reason)
    if kind == InvocationIntent.EVALUATION:
        return _evaluation_fallback(reason)
    if kind == InvocationIntent.COVERAGE_ANALYSIS:
        return _coverage_fallback()
    return GenericAiPayload(error=reason, message="Please try again later.", fallback=True)


def _describe(cause: Optional[DegradationCause]) -> str:
    if cause is None:
        return UNAVAILABLE
    return f"{UNAVAILABLE} ({cause.value})"


def _evaluation_fallback(reason: str) -> QaSummary:
    return QaSummary(
        overall_verdict=Verdict.INCONCLUSIVE,
        summary=f"Evaluation could not be completed: {reason}",
        passed_scenarios=0,
        failed_scenarios=0,
        errored_scenarios=0,
        key_findings=[],
        recommendations=[
            Recommendation(
                priority=RecommendationPriority.IMMEDIATE,
                title="Retry evaluation",
                description="AI evaluation failed due to service unavailability",
                action_items=["Wait a few minutes and retry the evaluation"],
            )
        ],
        risk_assessment=RiskAssessment(
            overall_risk=Severity.MEDIUM,
            quality_score=0,
            stability_score=0,
            security_score=0,
            risk_factors=["Unable to complete AI evaluation"],
        ),
        fallback=True,
    )


def _coverage_fallback() -> CoverageReport:
    return CoverageReport(
        total_operations=0,
        covered_operations=0,
        coverage_percentage=0.0,
        operation_details=[],
        gaps=[
            CoverageGap(
                type=GapType.UNCOVERED_OPERATION,
                description="Coverage analysis unavailable - AI service temporarily unavailable",
                severity=Severity.MEDIUM,
            )
        ],
        fallback=True,
    )
