"""Producer table: one implementation per producer type."""

import httpx

from tripplanner.config import Settings
from tripplanner.models.common import PRODUCER_TYPES, ProducerType
from tripplanner.producers.base import Producer
from tripplanner.producers.scoring import FILTERS, SCORERS
from tripplanner.producers.search import SearchProducer
from tripplanner.providers.base import SearchProvider
from tripplanner.providers.executor import ProviderCallConfig, ProviderExecutor
from tripplanner.providers.fixtures import FixtureSearchProvider
from tripplanner.providers.http import HttpSearchProvider


def build_provider(
    producer_type: ProducerType, settings: Settings, client: httpx.AsyncClient | None = None
) -> SearchProvider:
    """HTTP provider when a base URL is configured, bundled fixtures otherwise."""
    base_url = settings.provider_base_urls.get(producer_type.value)
    if base_url:
        return HttpSearchProvider(
            producer_type,
            base_url,
            client=client,
            timeout_s=settings.provider_timeout_ms / 1000,
        )
    return FixtureSearchProvider(producer_type)


def build_producers(
    settings: Settings,
    executor: ProviderExecutor,
    client: httpx.AsyncClient | None = None,
    providers: dict[ProducerType, SearchProvider] | None = None,
) -> dict[ProducerType, Producer]:
    """Build the producer table.

    Args:
        settings: Application settings
        executor: Shared provider executor
        client: Optional httpx client shared by HTTP providers
        providers: Per-type provider overrides (tests inject fakes here)
    """
    call_config = ProviderCallConfig.from_settings(settings)
    overrides = providers or {}
    producers: dict[ProducerType, Producer] = {}
    for producer_type in PRODUCER_TYPES:
        provider = overrides.get(producer_type) or build_provider(producer_type, settings, client)
        producers[producer_type] = SearchProducer(
            producer_type=producer_type,
            provider=provider,
            executor=executor,
            call_config=call_config,
            scorer=SCORERS[producer_type],
            criteria_filter=FILTERS[producer_type],
            max_results=settings.producer_max_results.get(producer_type.value, 10),
            fallback_enabled=settings.provider_fallback_enabled,
            fallback_max_results=settings.fallback_max_results,
        )
    return producers
