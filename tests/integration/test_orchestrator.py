"""End-to-end planning runs through the orchestrator with fake providers."""

from collections.abc import Callable
from typing import Any

import pytest

from tripplanner.errors import NotFoundError, NotReadyError
from tripplanner.models.common import (
    PRODUCER_TYPES,
    AggregateStatus,
    ProducerStatus,
    ProducerType,
    TripStatus,
)
from tripplanner.models.criteria import SearchCriteria
from tripplanner.models.trip import CreateTripRequest
from tripplanner.normalization.normalizer import NormalizationContext, NormalizationOutcome
from tripplanner.orchestration.orchestrator import best_available
from tripplanner.producers.base import Summary
from tripplanner.services.container import Container


@pytest.mark.asyncio
async def test_partial_run_keeps_completed_producer_results(
    make_container: Callable[..., Container],
    trip_request: Callable[..., CreateTripRequest],
    static_provider: Any,
    failing_provider: Any,
    flight_items: list[dict[str, Any]],
) -> None:
    container = make_container(
        providers={
            ProducerType.flight: static_provider(flight_items),
            ProducerType.dining: failing_provider(),
        }
    )
    service = container.service

    created = await service.create_trip(
        trip_request(producers=["flight", "dining"], preferences={"currency": "eur"})
    )
    assert created.status == TripStatus.planning
    await container.runner.drain()

    status = await service.get_trip_status(created.trip_id)
    assert status.overall_status == AggregateStatus.partial
    assert status.trip_status == TripStatus.recommendations_ready
    assert status.recommendation_counts == {ProducerType.flight: 3, ProducerType.dining: 0}

    flight = status.per_producer_status[ProducerType.flight]
    assert flight.status == ProducerStatus.completed
    assert flight.recommendation_count == 3
    assert flight.confidence == pytest.approx(0.6333, abs=1e-4)
    assert flight.started_at is not None and flight.completed_at is not None

    dining = status.per_producer_status[ProducerType.dining]
    assert dining.status == ProducerStatus.failed
    assert dining.errors and "failed after all retries" in dining.errors[0].message

    page = await service.get_recommendations(created.trip_id, ProducerType.flight)
    assert [r.provider_metadata["external_id"] for r in page.items] == ["F1", "F3", "F2"]
    assert all(r.price.currency == "EUR" for r in page.items)
    assert page.items[0].provider_metadata["rank_position"] == 1

    with pytest.raises(NotReadyError) as exc_info:
        await service.get_recommendations(created.trip_id, ProducerType.dining)
    assert exc_info.value.producer_status["status"] == "failed"


@pytest.mark.asyncio
async def test_all_producers_failing_marks_trip_failed(
    make_container: Callable[..., Container],
    trip_request: Callable[..., CreateTripRequest],
    failing_provider: Any,
) -> None:
    container = make_container(providers={p: failing_provider() for p in PRODUCER_TYPES})

    created = await container.service.create_trip(trip_request())
    await container.runner.drain()

    trip = await container.service.get_trip(created.trip_id)
    assert trip.execution.status == AggregateStatus.failed
    assert trip.execution.completed_at is not None
    # failed aggregate leaves the trip where it was
    assert trip.status == TripStatus.planning


@pytest.mark.asyncio
async def test_concurrent_producers_do_not_lose_writes(
    make_container: Callable[..., Container],
    trip_request: Callable[..., CreateTripRequest],
    static_provider: Any,
) -> None:
    # Earlier producers sleep longer so completions interleave
    providers = {
        p: static_provider(
            [{"id": f"{p.value}-{i}", "name": f"{p.value} {i}"} for i in range(3)],
            name=p.value,
            delay=0.01 * (len(PRODUCER_TYPES) - n),
        )
        for n, p in enumerate(PRODUCER_TYPES)
    }
    container = make_container(providers=providers)

    created = await container.service.create_trip(trip_request())
    await container.runner.drain()

    trip = await container.service.get_trip(created.trip_id)
    assert trip.execution.status == AggregateStatus.completed
    assert trip.status == TripStatus.recommendations_ready
    for producer_type in PRODUCER_TYPES:
        assert trip.producer_execution[producer_type].status == ProducerStatus.completed
        assert len(trip.recommendations[producer_type]) == 3


@pytest.mark.asyncio
async def test_disabled_producers_are_skipped(
    make_container: Callable[..., Container],
    trip_request: Callable[..., CreateTripRequest],
    static_provider: Any,
    flight_items: list[dict[str, Any]],
) -> None:
    flights = static_provider(flight_items)
    dining = static_provider([])
    container = make_container(
        providers={ProducerType.flight: flights, ProducerType.dining: dining}
    )

    created = await container.service.create_trip(trip_request(producers=["flight"]))
    await container.runner.drain()

    trip = await container.service.get_trip(created.trip_id)
    assert trip.execution.status == AggregateStatus.completed
    assert trip.producer_execution[ProducerType.dining].status == ProducerStatus.skipped
    assert flights.calls == 1
    assert dining.calls == 0

    with pytest.raises(NotReadyError) as exc_info:
        await container.service.get_recommendations(created.trip_id, ProducerType.dining)
    assert exc_info.value.producer_status["status"] == "skipped"


@pytest.mark.asyncio
async def test_summarize_failure_falls_back_to_ranked(
    make_container: Callable[..., Container],
    trip_request: Callable[..., CreateTripRequest],
    static_provider: Any,
    flight_items: list[dict[str, Any]],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    container = make_container(providers={ProducerType.flight: static_provider(flight_items)})
    producer = container.orchestrator._producers[ProducerType.flight]

    def broken_summarize(ranked: list[dict[str, Any]], criteria: SearchCriteria) -> Summary:
        raise RuntimeError("summarizer down")

    monkeypatch.setattr(producer, "summarize", broken_summarize)

    created = await container.service.create_trip(trip_request(producers=["flight"]))
    await container.runner.drain()

    trip = await container.service.get_trip(created.trip_id)
    flight = trip.producer_execution[ProducerType.flight]
    assert flight.status == ProducerStatus.completed
    assert flight.recommendation_count == 3
    assert flight.confidence is None

    page = await container.service.get_recommendations(created.trip_id, ProducerType.flight)
    # ranked order, without rank positions from summarize
    assert [r.provider_metadata["external_id"] for r in page.items] == ["F1", "F3", "F2"]
    assert "rank_position" not in page.items[0].provider_metadata


@pytest.mark.asyncio
async def test_rank_failure_falls_back_to_raw(
    make_container: Callable[..., Container],
    trip_request: Callable[..., CreateTripRequest],
    static_provider: Any,
    flight_items: list[dict[str, Any]],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    container = make_container(providers={ProducerType.flight: static_provider(flight_items)})
    producer = container.orchestrator._producers[ProducerType.flight]

    def broken_rank(results: list[dict[str, Any]]) -> list[dict[str, Any]]:
        raise RuntimeError("ranker down")

    monkeypatch.setattr(producer, "rank", broken_rank)

    created = await container.service.create_trip(trip_request(producers=["flight"]))
    await container.runner.drain()

    page = await container.service.get_recommendations(created.trip_id, ProducerType.flight)
    assert [r.provider_metadata["external_id"] for r in page.items] == ["F1", "F2", "F3"]


@pytest.mark.asyncio
async def test_unexpected_persist_error_fails_only_that_producer(
    make_container: Callable[..., Container],
    trip_request: Callable[..., CreateTripRequest],
    static_provider: Any,
    flight_items: list[dict[str, Any]],
    dining_items: list[dict[str, Any]],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    container = make_container(
        providers={
            ProducerType.flight: static_provider(flight_items),
            ProducerType.dining: static_provider(dining_items, name="dining"),
        }
    )
    normalizer = container.orchestrator._normalizer
    persist = normalizer.persist

    async def broken_persist(
        items: list[Any], ctx: NormalizationContext
    ) -> NormalizationOutcome:
        if ctx.producer_type == ProducerType.dining:
            raise TypeError("'<' not supported between instances of 'int' and 'str'")
        return await persist(items, ctx)

    monkeypatch.setattr(normalizer, "persist", broken_persist)

    created = await container.service.create_trip(trip_request(producers=["flight", "dining"]))
    await container.runner.drain()

    status = await container.service.get_trip_status(created.trip_id)
    assert status.overall_status == AggregateStatus.partial
    assert status.per_producer_status[ProducerType.flight].status == ProducerStatus.completed
    dining = status.per_producer_status[ProducerType.dining]
    assert dining.status == ProducerStatus.failed
    assert "not supported between instances" in dining.errors[-1].message


@pytest.mark.asyncio
async def test_shutdown_mid_run_leaves_no_producer_running(
    make_container: Callable[..., Container],
    trip_request: Callable[..., CreateTripRequest],
    gated_provider: Any,
    flight_items: list[dict[str, Any]],
) -> None:
    gate = gated_provider(flight_items)
    container = make_container(providers={ProducerType.flight: gate})
    created = await container.service.create_trip(trip_request(producers=["flight"]))
    await gate.started.wait()

    await container.runner.shutdown()

    trip = await container.service.get_trip(created.trip_id)
    flight = trip.producer_execution[ProducerType.flight]
    assert flight.status == ProducerStatus.failed
    assert flight.errors[-1].message == "Run cancelled before completion"
    assert trip.execution.status == AggregateStatus.failed

    # The trip can be planned again
    gate.release()
    await container.service.rerun(created.trip_id)
    await container.runner.drain()

    trip = await container.service.get_trip(created.trip_id)
    assert trip.execution.status == AggregateStatus.completed


@pytest.mark.asyncio
async def test_fallback_results_complete_the_producer(
    make_container: Callable[..., Container],
    trip_request: Callable[..., CreateTripRequest],
    failing_provider: Any,
) -> None:
    container = make_container(
        providers={ProducerType.dining: failing_provider()},
        provider_fallback_enabled=True,
        fallback_max_results=2,
    )

    created = await container.service.create_trip(trip_request(producers=["dining"]))
    await container.runner.drain()

    page = await container.service.get_recommendations(created.trip_id, ProducerType.dining)
    assert page.total == 2
    assert all(r.provider_metadata.get("fallback") is True for r in page.items)


@pytest.mark.asyncio
async def test_fixture_providers_plan_a_whole_trip(
    make_container: Callable[..., Container],
    trip_request: Callable[..., CreateTripRequest],
) -> None:
    container = make_container()

    created = await container.service.create_trip(trip_request())
    await container.runner.drain()

    status = await container.service.get_trip_status(created.trip_id)
    assert status.overall_status == AggregateStatus.completed
    assert all(count > 0 for count in status.recommendation_counts.values())


@pytest.mark.asyncio
async def test_run_trip_unknown_trip(make_container: Callable[..., Container]) -> None:
    container = make_container()

    with pytest.raises(NotFoundError):
        await container.orchestrator.run_trip("missing")


def test_best_available_prefers_summary() -> None:
    summary = Summary(items=[{"id": "s"}], confidence=0.5, reasoning="")

    assert best_available(summary, [{"id": "r"}], [{"id": "w"}]) == [{"id": "s"}]
    assert best_available(None, [{"id": "r"}], [{"id": "w"}]) == [{"id": "r"}]
    assert best_available(None, None, [{"id": "w"}]) == [{"id": "w"}]
    assert best_available(None, None, None) == []
