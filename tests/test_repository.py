import pytest

from qa_orchestrator.models.lifecycle import PackageStatus, transition
from qa_orchestrator.models.schemas import (
    ExecutionReport,
    QaPackage,
    ScenarioOutcome,
    ScenarioResult,
    ScenarioSet,
    TestScenario,
    TestStep,
)

S = PackageStatus


def new_package(name="pets", **kwargs):
    return QaPackage(name=name, base_url="https://api.example.com", spec_url="https://api.example.com/spec", **kwargs)


@pytest.mark.asyncio
async def test_create_and_get(repository):
    created = await repository.create(new_package())

    fetched = await repository.get_by_id(created.id)

    assert fetched.id == created.id
    assert fetched.status == S.REQUESTED
    assert fetched.created_at.tzinfo is not None
    assert await repository.get_by_id("missing") is None


@pytest.mark.asyncio
async def test_compare_and_set_applies_only_on_expected_status(repository):
    package = await repository.create(new_package())
    moved = transition(package, S.SPEC_FETCHED)

    assert await repository.compare_and_set(moved, expected_status=S.REQUESTED) is True
    assert (await repository.get_by_id(package.id)).status == S.SPEC_FETCHED

    # Second writer still believes the package is REQUESTED
    stale = transition(package, S.CANCELLED)
    assert await repository.compare_and_set(stale, expected_status=S.REQUESTED) is False
    assert (await repository.get_by_id(package.id)).status == S.SPEC_FETCHED


@pytest.mark.asyncio
async def test_payloads_survive_storage(repository):
    package = await repository.create(new_package())
    scenario_set = ScenarioSet(
        scenarios=[
            TestScenario(
                name="list pets",
                steps=[TestStep(step_number=1, name="GET /pets", endpoint="/pets", expected_status=200)],
            )
        ]
    )
    report = ExecutionReport(
        base_url=package.base_url,
        total_scenarios=1,
        passed_scenarios=1,
        results=[ScenarioResult(name="list pets", outcome=ScenarioOutcome.PASSED)],
    )
    moved = transition(package, S.SPEC_FETCHED).model_copy(
        update={"scenario_set": scenario_set, "execution_report": report}
    )
    await repository.compare_and_set(moved, expected_status=S.REQUESTED)

    stored = await repository.get_by_id(package.id)

    assert stored.scenario_set == scenario_set
    assert stored.execution_report.passed_scenarios == 1
    assert stored.execution_report.results[0].outcome == ScenarioOutcome.PASSED


@pytest.mark.asyncio
async def test_get_incomplete_and_counts(repository):
    first = await repository.create(new_package("first"))
    second = await repository.create(new_package("second"))
    await repository.create(new_package("third"))
    await repository.compare_and_set(transition(first, S.CANCELLED), expected_status=S.REQUESTED)
    await repository.compare_and_set(transition(second, S.SPEC_FETCHED), expected_status=S.REQUESTED)

    incomplete = await repository.get_incomplete()

    assert {p.name for p in incomplete} == {"second", "third"}
    assert await repository.count_by_status() == {"CANCELLED": 1, "SPEC_FETCHED": 1, "REQUESTED": 1}


@pytest.mark.asyncio
async def test_get_all_filters_by_status(repository):
    first = await repository.create(new_package("first"))
    await repository.create(new_package("second"))
    await repository.compare_and_set(transition(first, S.CANCELLED), expected_status=S.REQUESTED)

    cancelled = await repository.get_all(status=S.CANCELLED)
    everything = await repository.get_all()

    assert [p.name for p in cancelled] == ["first"]
    assert len(everything) == 2
    assert len(await repository.get_all(skip=1, limit=10)) == 1
