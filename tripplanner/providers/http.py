"""HTTP search provider."""

from typing import Any

import httpx

from tripplanner.errors import ProviderUnavailableError
from tripplanner.models.common import ProducerType
from tripplanner.models.criteria import SearchCriteria
from tripplanner.normalization.shapes import unwrap_results


def criteria_params(criteria: SearchCriteria) -> dict[str, str | int | float]:
    """Flatten criteria into query params, dropping unset values."""
    params: dict[str, str | int | float] = {}
    for key, value in criteria.model_dump(mode="json").items():
        if value is None or value == []:
            continue
        if isinstance(value, list):
            params[key] = ",".join(str(v) for v in value)
        elif isinstance(value, bool):
            params[key] = "true" if value else "false"
        else:
            params[key] = value
    return params


class HttpSearchProvider:
    """Queries ``GET {base_url}/search`` for one producer type."""

    def __init__(
        self,
        producer_type: ProducerType,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout_s: float = 4.0,
    ) -> None:
        """Initialize provider.

        Args:
            producer_type: Producer type sent as the ``type`` query param
            base_url: Provider base URL
            client: Optional httpx client (for testing with mocks)
            timeout_s: Client timeout when no client is given
        """
        self.producer_type = producer_type
        self.name = f"http.{producer_type.value}"
        self.source_url = f"{base_url.rstrip('/')}/search"
        self._client = client
        self._timeout_s = timeout_s

    async def search(self, criteria: SearchCriteria) -> list[dict[str, Any]]:
        params = {"type": self.producer_type.value, **criteria_params(criteria)}

        close_client = False
        client = self._client
        if client is None:
            client = httpx.AsyncClient(timeout=self._timeout_s)
            close_client = True

        try:
            response = await client.get(self.source_url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise ProviderUnavailableError(self.name, f"{type(e).__name__}: {e}") from e
        except ValueError as e:
            raise ProviderUnavailableError(self.name, "Provider returned invalid JSON") from e
        finally:
            if close_client:
                await client.aclose()

        results = unwrap_results(data)
        if results is None:
            raise ProviderUnavailableError(self.name, "Provider returned no result list")
        return [item for item in results if isinstance(item, dict)]
