"""Package status lifecycle.

The legal transitions are a single adjacency map. Everything else in this
module (terminal detection, reachability, the transition check itself) is
derived from it.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional, Set

import structlog

from qa_orchestrator.core.exceptions import InvalidTransition

logger = structlog.get_logger()


class PackageStatus(str, Enum):
    REQUESTED = "REQUESTED"
    SPEC_FETCHED = "SPEC_FETCHED"
    FAILED_SPEC_FETCH = "FAILED_SPEC_FETCH"
    AI_SUCCESS = "AI_SUCCESS"
    FAILED_GENERATION = "FAILED_GENERATION"
    EXECUTION_IN_PROGRESS = "EXECUTION_IN_PROGRESS"
    FAILED_EXECUTION = "FAILED_EXECUTION"
    EXECUTION_COMPLETE = "EXECUTION_COMPLETE"
    QA_EVAL_IN_PROGRESS = "QA_EVAL_IN_PROGRESS"
    QA_EVAL_DONE = "QA_EVAL_DONE"
    COMPLETE = "COMPLETE"
    CANCELLED = "CANCELLED"


S = PackageStatus

TRANSITIONS: Dict[PackageStatus, FrozenSet[PackageStatus]] = {
    S.REQUESTED: frozenset({S.SPEC_FETCHED, S.FAILED_SPEC_FETCH, S.CANCELLED}),
    S.SPEC_FETCHED: frozenset({S.AI_SUCCESS, S.FAILED_GENERATION, S.CANCELLED}),
    S.AI_SUCCESS: frozenset({S.EXECUTION_IN_PROGRESS, S.FAILED_EXECUTION, S.CANCELLED}),
    S.EXECUTION_IN_PROGRESS: frozenset({S.EXECUTION_COMPLETE, S.FAILED_EXECUTION, S.CANCELLED}),
    S.EXECUTION_COMPLETE: frozenset({S.QA_EVAL_IN_PROGRESS, S.COMPLETE, S.CANCELLED}),
    S.QA_EVAL_IN_PROGRESS: frozenset({S.QA_EVAL_DONE, S.COMPLETE, S.CANCELLED}),
    S.QA_EVAL_DONE: frozenset({S.COMPLETE}),
    S.COMPLETE: frozenset(),
    S.CANCELLED: frozenset(),
    S.FAILED_SPEC_FETCH: frozenset(),
    S.FAILED_GENERATION: frozenset(),
    S.FAILED_EXECUTION: frozenset(),
}

TERMINAL_STATUSES: FrozenSet[PackageStatus] = frozenset(
    status for status, targets in TRANSITIONS.items() if not targets
)

# Entering one of these stamps completed_at
FINISHING_STATUSES: FrozenSet[PackageStatus] = frozenset(
    {S.COMPLETE, S.FAILED_SPEC_FETCH, S.FAILED_GENERATION, S.FAILED_EXECUTION}
)


def is_terminal(status: PackageStatus) -> bool:
    return not TRANSITIONS[PackageStatus(status)]


def allowed_targets(status: PackageStatus) -> FrozenSet[PackageStatus]:
    return TRANSITIONS[PackageStatus(status)]


def is_legal(current: PackageStatus, requested: PackageStatus) -> bool:
    return PackageStatus(requested) in TRANSITIONS[PackageStatus(current)]


def reachable_from(status: PackageStatus) -> Set[PackageStatus]:
    """Every status reachable from ``status`` by one or more legal moves"""
    seen: Set[PackageStatus] = set()
    frontier = list(TRANSITIONS[PackageStatus(status)])
    while frontier:
        nxt = frontier.pop()
        if nxt in seen:
            continue
        seen.add(nxt)
        frontier.extend(TRANSITIONS[nxt])
    return seen


def transition(package, target: PackageStatus, now: Optional[datetime] = None):
    """Move ``package`` to ``target`` and return the updated copy.

    Requesting the current status of a non-terminal package is a no-op and
    returns the package untouched. Terminal packages reject every request.
    Anything else off the table raises ``InvalidTransition``.
    """
    current = PackageStatus(package.status)
    target = PackageStatus(target)

    if current == target and not is_terminal(current):
        return package

    if not is_legal(current, target):
        raise InvalidTransition(current, target)

    now = now or datetime.now(timezone.utc)
    update = {"status": target, "updated_at": now}
    if target in FINISHING_STATUSES:
        update["completed_at"] = now

    logger.info(
        "Package status transition",
        package_id=package.id,
        from_status=current.value,
        to_status=target.value,
    )
    return package.model_copy(update=update)
