"""Provider-backed producer shared by every producer type."""

import logging
from datetime import UTC, datetime
from statistics import fmean
from typing import Any

from tripplanner.errors import ProviderUnavailableError
from tripplanner.models.common import ProducerType, Provenance
from tripplanner.models.criteria import SearchCriteria
from tripplanner.normalization.normalizer import CONFIDENCE_RULES, apply_rules, normalize_confidence
from tripplanner.producers.base import RawResult, Summary
from tripplanner.producers.scoring import CriteriaFilter, Scorer
from tripplanner.providers.base import SearchProvider
from tripplanner.providers.executor import (
    ProviderCallConfig,
    ProviderContext,
    ProviderExecutor,
    ProviderResult,
)
from tripplanner.providers.fixtures import load_fallback

logger = logging.getLogger(__name__)

RANK_BASIS: dict[ProducerType, str] = {
    ProducerType.flight: "price, stops, duration and departure time",
    ProducerType.lodging: "price, rating, distance, amenities and property type",
    ProducerType.dining: "rating, price range, distance, features and reservations",
    ProducerType.activity: "rating, price, category and duration",
    ProducerType.local_transport: "cost, travel time, availability and capacity",
}


class SearchProducer:
    """Searches one provider, filters by criteria, ranks by a per-type scorer."""

    def __init__(
        self,
        producer_type: ProducerType,
        provider: SearchProvider,
        executor: ProviderExecutor,
        call_config: ProviderCallConfig,
        scorer: Scorer,
        criteria_filter: CriteriaFilter,
        max_results: int,
        fallback_enabled: bool = False,
        fallback_max_results: int = 3,
    ) -> None:
        self.producer_type = producer_type
        self._provider = provider
        self._executor = executor
        self._call_config = call_config
        self._scorer = scorer
        self._filter = criteria_filter
        self._max_results = max_results
        self._fallback_enabled = fallback_enabled
        self._fallback_max_results = fallback_max_results

    async def search(self, criteria: SearchCriteria) -> ProviderResult[list[RawResult]]:
        ctx = ProviderContext(
            trip_id=criteria.trip_id,
            producer=self.producer_type.value,
            provider=self._provider.name,
        )
        try:
            result = await self._executor.execute(
                ctx,
                self._call_config,
                self._provider.search,
                criteria,
                source_url=self._provider.source_url,
            )
        except ProviderUnavailableError as e:
            if not self._fallback_enabled:
                raise
            items = load_fallback(self.producer_type, self._fallback_max_results)
            logger.warning(
                f"Provider {self._provider.name} unavailable, serving fallback results",
                extra={
                    "structured": {
                        "trip_id": criteria.trip_id,
                        "producer": self.producer_type.value,
                        "provider": self._provider.name,
                        "error": str(e),
                        "count": len(items),
                    }
                },
            )
            provenance = Provenance(
                source=f"fallback.{self.producer_type.value}",
                ref_id=criteria.trip_id,
                fetched_at=datetime.now(UTC),
                fallback=True,
            )
            return ProviderResult(value=items, provenance=provenance)

        matching = [item for item in result.value if self._filter(item, criteria)]
        return ProviderResult(value=matching, provenance=result.provenance)

    def rank(self, results: list[RawResult]) -> list[RawResult]:
        scored: list[tuple[float, Any]] = []
        for item in results:
            if isinstance(item, dict):
                score = self._scorer(item)
                scored.append((score, {**item, "score": score}))
            else:
                scored.append((0.0, item))
        # sorted() is stable with reverse=True, so ties keep provider order
        scored = sorted(scored, key=lambda pair: pair[0], reverse=True)
        return [item for _, item in scored]

    def summarize(self, ranked: list[RawResult], criteria: SearchCriteria) -> Summary:
        top = [
            {**item, "rank_position": position}
            for position, item in enumerate(ranked[: self._max_results], start=1)
        ]
        if not top:
            return Summary(
                items=[],
                confidence=0.0,
                reasoning=f"No {self.label} options matched for {criteria.destination}.",
            )

        confidence = fmean(
            normalize_confidence(apply_rules(CONFIDENCE_RULES, item)[0]) for item in top
        )
        reasoning = (
            f"Top {len(top)} of {len(ranked)} {self.label} options for "
            f"{criteria.destination}, ranked by {RANK_BASIS[self.producer_type]}."
        )
        return Summary(items=top, confidence=round(confidence, 4), reasoning=reasoning)

    @property
    def label(self) -> str:
        return self.producer_type.value.replace("_", " ")
