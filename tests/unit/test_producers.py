"""Tests for search producers: filtering, ranking, summarizing and fallback."""

from typing import Any

import pytest

from tripplanner.errors import ProviderUnavailableError
from tripplanner.models.common import ProducerType
from tripplanner.models.criteria import SearchCriteria
from tripplanner.producers.scoring import (
    FILTERS,
    SCORERS,
    filter_dining,
    filter_flight,
    filter_lodging,
    flight_hours,
    score_dining,
    score_flight,
    score_local_transport,
)
from tripplanner.producers.search import SearchProducer
from tripplanner.providers.executor import ProviderCallConfig, ProviderExecutor

CALL_CONFIG = ProviderCallConfig(
    hard_timeout_ms=1000,
    retry_count=0,
    retry_jitter_min_ms=0,
    retry_jitter_max_ms=0,
)


def make_producer(
    producer_type: ProducerType,
    provider: Any,
    executor: ProviderExecutor,
    max_results: int = 10,
    fallback_enabled: bool = False,
) -> SearchProducer:
    return SearchProducer(
        producer_type=producer_type,
        provider=provider,
        executor=executor,
        call_config=CALL_CONFIG,
        scorer=SCORERS[producer_type],
        criteria_filter=FILTERS[producer_type],
        max_results=max_results,
        fallback_enabled=fallback_enabled,
        fallback_max_results=1,
    )


class TestScoring:
    def test_flight_hours_parses_durations(self) -> None:
        assert flight_hours("8h 15m") == pytest.approx(8.25)
        assert flight_hours("5h") == 5
        assert flight_hours(6) == 6
        assert flight_hours("soon") is None

    def test_flight_score_rewards_nonstop_daytime_cheap(
        self, flight_items: list[dict[str, Any]]
    ) -> None:
        f1, f2, f3 = flight_items

        assert score_flight(f1) == pytest.approx(95)
        assert score_flight(f2) == pytest.approx(67.5)
        assert score_flight(f3) == pytest.approx(100 - 42 + 20 - (5 + 10 / 60) + 10)

    def test_dining_score(self, dining_items: list[dict[str, Any]]) -> None:
        assert score_dining(dining_items[0]) == pytest.approx(227)
        assert score_dining(dining_items[1]) == pytest.approx(195.4)

    def test_scores_never_negative(self) -> None:
        assert score_flight({"price": 50000}) == 0.0
        assert score_local_transport({"estimatedCost": 1000}) == 0.0

    def test_sparse_items_still_score(self) -> None:
        for scorer in SCORERS.values():
            assert scorer({}) >= 0


class TestFilters:
    def test_flight_filters(self, criteria: SearchCriteria) -> None:
        strict = criteria.model_copy(update={"non_stop": True, "max_price": 400})

        assert filter_flight({"price": 300, "stops": 0}, strict)
        assert not filter_flight({"price": 300, "stops": 1}, strict)
        assert not filter_flight({"price": 450, "stops": 0}, strict)
        assert filter_flight({"price": 450, "stops": 2}, criteria)

    def test_min_rating_keeps_unrated_items(self, criteria: SearchCriteria) -> None:
        picky = criteria.model_copy(update={"min_rating": 4.0})

        assert filter_lodging({"rating": {"score": 4.2}}, picky)
        assert not filter_lodging({"rating": 3.5}, picky)
        assert filter_lodging({"name": "No rating yet"}, picky)

    def test_dining_cuisine_filter(self, criteria: SearchCriteria) -> None:
        wanted = criteria.model_copy(update={"cuisines": ["French"]})

        assert filter_dining({"cuisine": "french"}, wanted)
        assert not filter_dining({"cuisine": "Thai"}, wanted)
        assert filter_dining({"name": "Unknown cuisine"}, wanted)


class TestSearchProducer:
    @pytest.mark.asyncio
    async def test_search_returns_provider_items_with_provenance(
        self,
        executor: ProviderExecutor,
        criteria: SearchCriteria,
        flight_items: list[dict[str, Any]],
        static_provider: Any,
    ) -> None:
        producer = make_producer(ProducerType.flight, static_provider(flight_items), executor)

        result = await producer.search(criteria)

        assert [item["id"] for item in result.value] == ["F1", "F2", "F3"]
        assert result.provenance.source == "provider.static"
        assert result.provenance.fallback is False

    @pytest.mark.asyncio
    async def test_search_applies_criteria_filter(
        self,
        executor: ProviderExecutor,
        criteria: SearchCriteria,
        flight_items: list[dict[str, Any]],
        static_provider: Any,
    ) -> None:
        producer = make_producer(ProducerType.flight, static_provider(flight_items), executor)

        result = await producer.search(criteria.model_copy(update={"non_stop": True}))

        assert [item["id"] for item in result.value] == ["F1", "F3"]

    @pytest.mark.asyncio
    async def test_unavailable_provider_propagates_without_fallback(
        self, executor: ProviderExecutor, criteria: SearchCriteria, failing_provider: Any
    ) -> None:
        producer = make_producer(ProducerType.dining, failing_provider(), executor)

        with pytest.raises(ProviderUnavailableError):
            await producer.search(criteria)

    @pytest.mark.asyncio
    async def test_unavailable_provider_serves_fallback_when_enabled(
        self, executor: ProviderExecutor, criteria: SearchCriteria, failing_provider: Any
    ) -> None:
        producer = make_producer(
            ProducerType.dining, failing_provider(), executor, fallback_enabled=True
        )

        result = await producer.search(criteria)

        assert len(result.value) == 1
        assert result.value[0]["source"] == "fallback"
        assert result.provenance.fallback is True
        assert result.provenance.source == "fallback.dining"


class TestRankAndSummarize:
    @pytest.fixture
    def flights(self, executor: ProviderExecutor, static_provider: Any) -> SearchProducer:
        return make_producer(ProducerType.flight, static_provider([]), executor, max_results=2)

    def test_rank_orders_by_score_descending(
        self, flights: SearchProducer, flight_items: list[dict[str, Any]]
    ) -> None:
        ranked = flights.rank(flight_items)

        assert [item["id"] for item in ranked] == ["F1", "F3", "F2"]
        assert ranked[0]["score"] == pytest.approx(95)

    def test_rank_is_stable_for_ties(
        self, executor: ProviderExecutor, static_provider: Any
    ) -> None:
        producer = make_producer(ProducerType.dining, static_provider([]), executor)
        items = [{"id": f"T{i}", "rating": 4.0} for i in range(5)]

        ranked = producer.rank(items)

        assert [item["id"] for item in ranked] == ["T0", "T1", "T2", "T3", "T4"]

    def test_rank_does_not_mutate_input(
        self, flights: SearchProducer, flight_items: list[dict[str, Any]]
    ) -> None:
        flights.rank(flight_items)

        assert "score" not in flight_items[0]

    def test_summarize_keeps_top_n_with_positions(
        self,
        flights: SearchProducer,
        criteria: SearchCriteria,
        flight_items: list[dict[str, Any]],
    ) -> None:
        summary = flights.summarize(flights.rank(flight_items), criteria)

        assert [item["id"] for item in summary.items] == ["F1", "F3"]
        assert [item["rank_position"] for item in summary.items] == [1, 2]
        assert "Top 2 of 3 flight options" in summary.reasoning

    def test_summarize_confidence_is_mean_of_normalized(
        self,
        executor: ProviderExecutor,
        criteria: SearchCriteria,
        flight_items: list[dict[str, Any]],
        static_provider: Any,
    ) -> None:
        producer = make_producer(ProducerType.flight, static_provider([]), executor)

        summary = producer.summarize(flight_items, criteria)

        # 80 -> 0.8, 0.6 as-is, missing -> 0.5
        assert summary.confidence == pytest.approx(0.6333, abs=1e-4)

    def test_summarize_empty(
        self, executor: ProviderExecutor, criteria: SearchCriteria, static_provider: Any
    ) -> None:
        producer = make_producer(ProducerType.local_transport, static_provider([]), executor)

        summary = producer.summarize([], criteria)

        assert summary.items == []
        assert summary.confidence == 0.0
        assert "No local transport options" in summary.reasoning
