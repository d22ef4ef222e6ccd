from typing import Optional


class OrchestratorError(Exception):
    """Base class for errors raised by the orchestration core"""


class InvalidTransition(OrchestratorError):
    """Requested status change is not an edge of the lifecycle table"""

    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid transition from {getattr(current, 'value', current)} "
            f"to {getattr(requested, 'value', requested)}"
        )


class PackageNotFound(OrchestratorError):
    def __init__(self, package_id: str):
        self.package_id = package_id
        super().__init__(f"QA package not found: {package_id}")


class PackageBusy(OrchestratorError):
    """A stage is already in flight for this package id"""

    def __init__(self, package_id: str):
        self.package_id = package_id
        super().__init__(f"A stage is already running for package {package_id}")


class InvalidPolicyError(ValueError):
    """Resilience configuration that can never work"""


# Downstream failure taxonomy

class DownstreamFailure(Exception):
    """Base class for failures reported by a downstream dependency"""


class RecoverableIoFailure(DownstreamFailure):
    """Timeout, connection error or 5xx from the dependency"""


class ProviderRejection(DownstreamFailure):
    """The provider refused the request or answered with something unusable"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RateLimitedFailure(DownstreamFailure):
    """The provider told us we exceeded our own budget"""

    def __init__(self, message: str = "Rate limited by provider", retry_after_s: Optional[float] = None):
        self.retry_after_s = retry_after_s
        super().__init__(message)


# Guard rejections, raised before the unit of work is called

class GuardRejection(Exception):
    def __init__(self, dependency: str, message: str):
        self.dependency = dependency
        super().__init__(message)


class BulkheadFull(GuardRejection):
    def __init__(self, dependency: str, max_concurrent_calls: int):
        super().__init__(
            dependency,
            f"Bulkhead for '{dependency}' is full ({max_concurrent_calls} concurrent calls)",
        )


class RateLimiterRejected(GuardRejection):
    def __init__(self, dependency: str, timeout_s: float):
        super().__init__(
            dependency,
            f"Rate limiter for '{dependency}' denied a permit within {timeout_s}s",
        )


class CallNotPermitted(GuardRejection):
    def __init__(self, dependency: str, state: str):
        self.state = state
        super().__init__(dependency, f"Circuit breaker for '{dependency}' is {state}")


# Collaborator port failures

class SpecFetchError(Exception):
    """The OpenAPI spec could not be retrieved"""


class ExecutionError(Exception):
    """The execution engine could not run the scenarios"""
