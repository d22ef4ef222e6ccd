from datetime import datetime, timedelta, timezone
from itertools import product

import pytest

from qa_orchestrator.core.exceptions import InvalidTransition
from qa_orchestrator.models.lifecycle import (
    TERMINAL_STATUSES,
    TRANSITIONS,
    PackageStatus,
    allowed_targets,
    is_terminal,
    reachable_from,
    transition,
)
from qa_orchestrator.models.schemas import QaPackage

S = PackageStatus

EARLIER = datetime(2024, 1, 1, tzinfo=timezone.utc)
NOW = EARLIER + timedelta(hours=1)


def make_package(status: PackageStatus) -> QaPackage:
    return QaPackage(
        name="pets",
        base_url="https://api.example.com",
        spec_url="https://api.example.com/openapi.yaml",
        status=status,
        created_at=EARLIER,
        updated_at=EARLIER,
    )


LEGAL = [(src, dst) for src, targets in TRANSITIONS.items() for dst in targets]
ILLEGAL = [
    (src, dst)
    for src, dst in product(PackageStatus, PackageStatus)
    if dst not in TRANSITIONS[src] and not (src == dst and src not in TERMINAL_STATUSES)
]


def test_terminal_statuses():
    assert TERMINAL_STATUSES == {
        S.COMPLETE,
        S.CANCELLED,
        S.FAILED_SPEC_FETCH,
        S.FAILED_GENERATION,
        S.FAILED_EXECUTION,
    }
    for status in PackageStatus:
        assert is_terminal(status) == (status in TERMINAL_STATUSES)


@pytest.mark.parametrize("current,target", LEGAL)
def test_legal_transition_updates_timestamps(current, target):
    package = make_package(current)

    moved = transition(package, target, now=NOW)

    assert moved.status == target
    assert moved.updated_at == NOW
    if target in (S.COMPLETE, S.FAILED_SPEC_FETCH, S.FAILED_GENERATION, S.FAILED_EXECUTION):
        assert moved.completed_at == NOW
    else:
        assert moved.completed_at is None
    # Original is untouched
    assert package.status == current


@pytest.mark.parametrize("current,target", ILLEGAL)
def test_illegal_transition_raises(current, target):
    package = make_package(current)

    with pytest.raises(InvalidTransition) as exc_info:
        transition(package, target, now=NOW)

    assert exc_info.value.current == current
    assert exc_info.value.requested == target


@pytest.mark.parametrize("status", [s for s in PackageStatus if s not in TERMINAL_STATUSES])
def test_same_status_is_noop(status):
    package = make_package(status)

    result = transition(package, status, now=NOW)

    assert result is package
    assert result.updated_at == EARLIER


@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
def test_terminal_rejects_every_target(status):
    package = make_package(status)
    for target in PackageStatus:
        with pytest.raises(InvalidTransition):
            transition(package, target, now=NOW)


def test_stage_jump_is_rejected():
    with pytest.raises(InvalidTransition):
        transition(make_package(S.REQUESTED), S.EXECUTION_COMPLETE)


def test_qa_eval_done_can_only_complete():
    assert allowed_targets(S.QA_EVAL_DONE) == {S.COMPLETE}
    with pytest.raises(InvalidTransition):
        transition(make_package(S.QA_EVAL_DONE), S.CANCELLED)


def test_reachability_is_derived_from_table():
    assert reachable_from(S.REQUESTED) == set(PackageStatus) - {S.REQUESTED}
    assert reachable_from(S.QA_EVAL_DONE) == {S.COMPLETE}
    assert reachable_from(S.COMPLETE) == set()
    # No status can get back to where it started
    for status in PackageStatus:
        assert status not in reachable_from(status)
