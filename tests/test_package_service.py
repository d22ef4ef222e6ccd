import asyncio

import pytest

from qa_orchestrator.core.exceptions import InvalidTransition, PackageNotFound
from qa_orchestrator.models.lifecycle import PackageStatus
from qa_orchestrator.models.schemas import CreatePackageRequest, compute_spec_hash
from tests.conftest import SAMPLE_SPEC

S = PackageStatus


def request(**overrides):
    data = {
        "name": "  Pets API  ",
        "spec_content": SAMPLE_SPEC,
        "base_url": "https://pets.example.com/",
        "requirements": "Listing pets must be public",
        "triggered_by": "ci",
    }
    data.update(overrides)
    return CreatePackageRequest(**data)


@pytest.mark.asyncio
async def test_create_package_normalizes_input(package_service):
    package = await package_service.create_package(request())

    assert package.name == "Pets API"
    assert package.base_url == "https://pets.example.com"
    assert package.status == S.REQUESTED
    assert package.spec_hash == compute_spec_hash(SAMPLE_SPEC)
    assert package.completed_at is None


def test_create_request_requires_a_spec_source():
    with pytest.raises(ValueError):
        request(spec_content=None)
    with pytest.raises(ValueError):
        request(base_url="ftp://pets.example.com")
    with pytest.raises(ValueError):
        request(name="   ")


@pytest.mark.parametrize(
    "spec_url",
    ["ftp://pets.example.com/spec", "http://[::1/spec", "http://bad\x00host/spec", "https://"],
)
def test_create_request_rejects_unusable_spec_url(spec_url):
    with pytest.raises(ValueError):
        request(spec_url=spec_url)


@pytest.mark.asyncio
async def test_get_unknown_package(package_service):
    with pytest.raises(PackageNotFound):
        await package_service.get_package("nope")


@pytest.mark.asyncio
async def test_requeue_needs_terminal_original(package_service, orchestrator):
    package = await package_service.create_package(request())

    with pytest.raises(InvalidTransition):
        await package_service.requeue_package(package.id)

    await orchestrator.cancel(package.id)
    fresh = await package_service.requeue_package(package.id, triggered_by="retry-bot")

    assert fresh.id != package.id
    assert fresh.status == S.REQUESTED
    assert fresh.requeued_from == package.id
    assert fresh.triggered_by == "retry-bot"
    assert fresh.spec_hash == package.spec_hash
    assert (await package_service.get_package(package.id)).status == S.CANCELLED


@pytest.mark.asyncio
async def test_stats(package_service, orchestrator):
    first = await package_service.create_package(request())
    await package_service.create_package(request())
    await orchestrator.cancel(first.id)

    stats = await package_service.get_stats()

    assert stats.total == 2
    assert stats.terminal == 1
    assert stats.in_flight == 1
    assert stats.by_status == {"CANCELLED": 1, "REQUESTED": 1}


@pytest.mark.asyncio
async def test_advance_incomplete_moves_each_package_once(package_service, orchestrator):
    packages = [await package_service.create_package(request(name=f"pkg-{i}")) for i in range(3)]
    await orchestrator.cancel(packages[0].id)

    results = await package_service.advance_incomplete()

    assert results == {packages[1].id: "SPEC_FETCHED", packages[2].id: "SPEC_FETCHED"}


@pytest.mark.asyncio
async def test_advance_incomplete_reports_busy_packages(package_service, orchestrator, spec_fetcher):
    package = await package_service.create_package(request(spec_url="https://pets.example.com/spec"))
    spec_fetcher.release = asyncio.Event()
    running = asyncio.create_task(orchestrator.advance(package.id))
    await spec_fetcher.started.wait()

    results = await package_service.advance_incomplete()

    assert results == {package.id: "BUSY"}
    spec_fetcher.release.set()
    assert (await running).status == S.SPEC_FETCHED


@pytest.mark.asyncio
async def test_advance_incomplete_isolates_unexpected_failures(package_service, spec_fetcher):
    good = await package_service.create_package(request(name="inline"))
    bad = await package_service.create_package(
        request(name="fetched", spec_content=None, spec_url="https://pets.example.com/spec")
    )
    spec_fetcher.error = RuntimeError("fetcher bug")

    results = await package_service.advance_incomplete()

    assert results == {good.id: "SPEC_FETCHED", bad.id: "ERROR"}
    assert (await package_service.get_package(bad.id)).status == S.REQUESTED
