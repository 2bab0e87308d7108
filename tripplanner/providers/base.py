"""Provider contract consumed by producers."""

from typing import Any, Protocol

from tripplanner.models.criteria import SearchCriteria


class SearchProvider(Protocol):
    """External collaborator that returns raw, shape-varying results."""

    name: str
    source_url: str | None

    async def search(self, criteria: SearchCriteria) -> list[dict[str, Any]]:
        """Search for raw results.

        Raises:
            ProviderUnavailableError: Provider could not be reached or returned garbage
        """
        ...
