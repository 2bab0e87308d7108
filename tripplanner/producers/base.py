"""Producer capability set."""

from dataclasses import dataclass
from typing import Any, Protocol

from tripplanner.models.common import ProducerType
from tripplanner.models.criteria import SearchCriteria
from tripplanner.providers.executor import ProviderResult

RawResult = dict[str, Any]


@dataclass
class Summary:
    """Presentation-ready subset plus one producer-level confidence/reasoning pair."""

    items: list[RawResult]
    confidence: float
    reasoning: str


class Producer(Protocol):
    """One recommendation category: search, rank, summarize."""

    producer_type: ProducerType

    async def search(self, criteria: SearchCriteria) -> ProviderResult[list[RawResult]]:
        """Fetch raw results.

        Raises:
            ProviderUnavailableError: Provider failed and no fallback is configured
        """
        ...

    def rank(self, results: list[RawResult]) -> list[RawResult]:
        """Pure, deterministic, stable ordering by desirability score."""
        ...

    def summarize(self, ranked: list[RawResult], criteria: SearchCriteria) -> Summary:
        """Trim to a presentation-ready subset. May raise; callers fall back to ``ranked``."""
        ...
