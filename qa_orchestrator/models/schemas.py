import hashlib
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field, field_validator, model_validator

from qa_orchestrator.models.lifecycle import PackageStatus


def compute_spec_hash(spec_content: str) -> str:
    """SHA-256 hex digest used for spec change detection"""
    return hashlib.sha256(spec_content.encode("utf-8")).hexdigest()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class PackageConfig(BaseModel):
    max_scenarios: int = Field(default=10, ge=1, le=100)
    max_steps_per_scenario: int = Field(default=10, ge=1, le=50)
    timeout_ms: int = Field(default=300000, ge=1000, description="Execution timeout for the whole package")
    stop_on_first_failure: bool = False
    include_security_tests: bool = False
    ai_model: str = "gpt-4o-mini"
    coverage_enabled: bool = True
    evaluation_enabled: bool = True


# Scenario generation payloads

class TestStep(BaseModel):
    step_number: int = Field(..., ge=1, description="Step sequence number")
    name: str = Field(..., description="What the step does")
    method: HttpMethod = HttpMethod.GET
    endpoint: str = Field(..., description="Path relative to the package base URL")
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Any] = None
    expected_status: int = Field(default=200, ge=100, le=599)


class TestScenario(BaseModel):
    name: str
    description: Optional[str] = None
    scenario_type: str = "happy_path"
    priority: str = "medium"
    steps: List[TestStep] = Field(default_factory=list)


class ScenarioSet(BaseModel):
    scenarios: List[TestScenario] = Field(default_factory=list)
    fallback: bool = False
    reason: Optional[str] = None


# Execution payloads

class StepResult(BaseModel):
    step_number: int
    endpoint: str
    method: HttpMethod
    expected_status: int
    actual_status: Optional[int] = None
    passed: bool
    duration_ms: float = 0.0
    error: Optional[str] = None


class ScenarioOutcome(str, Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"
    ERRORED = "ERRORED"
    SKIPPED = "SKIPPED"


class ScenarioResult(BaseModel):
    name: str
    outcome: ScenarioOutcome
    steps: List[StepResult] = Field(default_factory=list)
    duration_ms: float = 0.0


class ExecutionReport(BaseModel):
    base_url: str
    total_scenarios: int = 0
    passed_scenarios: int = 0
    failed_scenarios: int = 0
    errored_scenarios: int = 0
    skipped_scenarios: int = 0
    results: List[ScenarioResult] = Field(default_factory=list)
    duration_ms: float = 0.0


# Coverage payloads

class GapType(str, Enum):
    UNCOVERED_OPERATION = "UNCOVERED_OPERATION"
    MISSING_NEGATIVE_TEST = "MISSING_NEGATIVE_TEST"
    MISSING_EDGE_CASE = "MISSING_EDGE_CASE"
    MISSING_AUTH_TEST = "MISSING_AUTH_TEST"
    MISSING_SECURITY_TEST = "MISSING_SECURITY_TEST"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class OperationCoverage(BaseModel):
    method: str
    path: str
    covered: bool
    scenario_count: int = 0


class CoverageGap(BaseModel):
    type: GapType
    description: str
    severity: Severity = Severity.MEDIUM
    operation: Optional[str] = None


class CoverageReport(BaseModel):
    total_operations: int = 0
    covered_operations: int = 0
    coverage_percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    operation_details: List[OperationCoverage] = Field(default_factory=list)
    gaps: List[CoverageGap] = Field(default_factory=list)
    fallback: bool = False


# Evaluation payloads

class Verdict(str, Enum):
    PASS = "PASS"
    PASS_WITH_WARNINGS = "PASS_WITH_WARNINGS"
    FAIL = "FAIL"
    ERROR = "ERROR"
    INCONCLUSIVE = "INCONCLUSIVE"


class RecommendationPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    IMMEDIATE = "IMMEDIATE"


class Finding(BaseModel):
    title: str
    description: str
    severity: Severity = Severity.MEDIUM


class Recommendation(BaseModel):
    priority: RecommendationPriority
    title: str
    description: str
    action_items: List[str] = Field(default_factory=list)


class RiskAssessment(BaseModel):
    overall_risk: Severity
    quality_score: int = Field(default=0, ge=0, le=100)
    stability_score: int = Field(default=0, ge=0, le=100)
    security_score: int = Field(default=0, ge=0, le=100)
    risk_factors: List[str] = Field(default_factory=list)


class QaSummary(BaseModel):
    overall_verdict: Verdict
    summary: str
    passed_scenarios: int = 0
    failed_scenarios: int = 0
    errored_scenarios: int = 0
    key_findings: List[Finding] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    risk_assessment: RiskAssessment
    fallback: bool = False


class GenericAiPayload(BaseModel):
    message: str
    error: Optional[str] = None
    content: Optional[str] = None
    fallback: bool = False


# Package aggregate

class QaPackage(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    description: Optional[str] = None
    spec_url: Optional[str] = None
    spec_content: Optional[str] = None
    spec_hash: Optional[str] = None
    base_url: str
    requirements: Optional[str] = None
    status: PackageStatus = PackageStatus.REQUESTED
    config: PackageConfig = Field(default_factory=PackageConfig)
    scenario_set: Optional[ScenarioSet] = None
    execution_report: Optional[ExecutionReport] = None
    coverage: Optional[CoverageReport] = None
    qa_summary: Optional[QaSummary] = None
    error_message: Optional[str] = None
    triggered_by: Optional[str] = None
    requeued_from: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)

    class Config:
        from_attributes = True

    @field_validator("created_at", "started_at", "completed_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # SQLite hands back naive datetimes
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @model_validator(mode="after")
    def _spec_hash_matches_content(self):
        if self.spec_content is not None and self.spec_hash is not None:
            if self.spec_hash != compute_spec_hash(self.spec_content):
                raise ValueError("spec_hash does not match spec_content")
        return self


# API request/response models

def _http_url(value: str, field: str) -> str:
    """Reject anything httpx could not send a request to"""
    value = value.strip()
    if not value.startswith(("http://", "https://")):
        raise ValueError(f"{field} must start with http:// or https://")
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL as e:
        raise ValueError(f"{field} is not a valid URL: {e}") from e
    if not url.host:
        raise ValueError(f"{field} must include a host")
    return value


class CreatePackageRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    spec_url: Optional[str] = Field(None, description="URL to fetch the OpenAPI spec from")
    spec_content: Optional[str] = Field(None, description="Inline OpenAPI spec")
    base_url: str = Field(..., description="Base URL of the API under test")
    requirements: Optional[str] = None
    config: PackageConfig = Field(default_factory=PackageConfig)
    triggered_by: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must not be blank")
        return value

    @field_validator("base_url")
    @classmethod
    def _base_url_is_http(cls, value: str) -> str:
        return _http_url(value, "base_url").rstrip("/")

    @field_validator("spec_url")
    @classmethod
    def _spec_url_is_http(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return _http_url(value, "spec_url")

    @model_validator(mode="after")
    def _has_spec_source(self):
        if not self.spec_url and not self.spec_content:
            raise ValueError("Either spec_url or spec_content must be provided")
        return self


class RequeueRequest(BaseModel):
    triggered_by: Optional[str] = None


class PackageStats(BaseModel):
    total: int
    by_status: Dict[str, int]
    in_flight: int
    terminal: int
