"""Alert aggregation across providers with response caching."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime
from typing import Any

import httpx

from .alerts import (
    AlertDTO,
    AlertSource,
    AlertsResponse,
    Coordinates,
    Country,
    CountryAlertsResponse,
    CountryMeta,
    Geography,
    Severity,
)
from .cache import AlertCache, TTLCache
from .enrichment import CapEnricher
from .errors import ConfigurationError
from .mapping import alert_score, format_timestamp, utc_now
from .providers import (
    AlertProvider,
    MeteoalarmProvider,
    NationalFeedProvider,
    OpenWeatherProvider,
)
from .reporting import ProviderOutcome
from .settings import Settings
from .validation import CoordsQuery, CountryQuery, parse_coords_query, parse_country_query

LOGGER = logging.getLogger(__name__)

OutcomeObserver = Callable[[ProviderOutcome], None]


def coords_cache_key(lat: float, lon: float, lang: str) -> str:
    return f"alerts:{lat:.2f},{lon:.2f}:{lang}"


def country_cache_key(code: str, lang: str) -> str:
    # limit, area and minSeverity run against the cached merge, not the key
    return f"alerts:country:{code}:{lang}"


def merge_alerts(*lists: Iterable[AlertDTO] | None) -> list[AlertDTO]:
    """Merge provider lists by id (later lists win) and sort by importance."""
    merged: dict[str, AlertDTO] = {}
    for alerts in lists:
        for alert in alerts or []:
            merged[alert.id] = alert
    return sorted(merged.values(), key=alert_score, reverse=True)


def apply_filters(
    alerts: Sequence[AlertDTO],
    *,
    min_severity: Severity | None = None,
    area: str | None = None,
    limit: int | None = None,
) -> list[AlertDTO]:
    selected = list(alerts)
    if min_severity is not None:
        selected = [alert for alert in selected if alert.severity.rank >= min_severity.rank]
    if area:
        needle = area.lower()
        selected = [
            alert
            for alert in selected
            if any(needle in name.lower() for name in alert.areas)
        ]
    if limit is not None:
        selected = selected[:limit]
    return selected


async def settle_all(
    providers: Sequence[AlertProvider], geography: Geography, lang: str
) -> list[ProviderOutcome]:
    """Run every provider concurrently and collect each outcome.

    Outcomes come back in provider order regardless of completion order. A
    provider failure becomes a failed outcome; configuration errors still
    propagate.
    """

    async def run(provider: AlertProvider) -> ProviderOutcome:
        started = time.perf_counter()
        try:
            alerts = await provider.fetch(geography, lang)
        except ConfigurationError:
            raise
        except Exception as exc:
            return ProviderOutcome(
                provider=provider.name,
                error=exc,
                duration_seconds=time.perf_counter() - started,
            )
        return ProviderOutcome(
            provider=provider.name,
            alerts=list(alerts),
            duration_seconds=time.perf_counter() - started,
        )

    return list(await asyncio.gather(*(run(provider) for provider in providers)))


class AlertAggregator:
    """Route queries to providers, merge their alerts and cache the result."""

    def __init__(
        self,
        coordinate_providers: Sequence[AlertProvider],
        national_providers: Mapping[str, AlertProvider],
        regional_provider: MeteoalarmProvider | None,
        cache: AlertCache,
        ttl_seconds: float = 120.0,
        observer: OutcomeObserver | None = None,
        enricher: CapEnricher | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self.coordinate_providers = list(coordinate_providers)
        self.national_providers = {code.upper(): p for code, p in national_providers.items()}
        self.regional_provider = regional_provider
        self.cache = cache
        self.ttl_seconds = ttl_seconds
        self.observer = observer
        self.enricher = enricher
        self._now = now

    def providers_for_country(self, code: str) -> list[AlertProvider]:
        code = code.upper()
        national = self.national_providers.get(code)
        if national is not None:
            return [national]
        if self.regional_provider is not None and self.regional_provider.supports(code):
            return [self.regional_provider]
        return []

    async def get_alerts_by_coords(
        self, lat: Any, lon: Any, lang: Any = "en"
    ) -> AlertsResponse:
        return await self.by_coords(parse_coords_query({"lat": lat, "lon": lon, "lang": lang}))

    async def get_alerts_by_country(
        self,
        code: Any,
        lang: Any = "en",
        limit: Any = None,
        area: Any = None,
        min_severity: Any = None,
    ) -> CountryAlertsResponse:
        query = parse_country_query(
            {
                "code": code,
                "lang": lang,
                "limit": limit,
                "area": area,
                "minSeverity": min_severity,
            }
        )
        return await self.by_country(query)

    async def by_coords(self, query: CoordsQuery) -> AlertsResponse:
        if not self.coordinate_providers:
            raise ConfigurationError(
                "No coordinate alert provider is configured; set OPENWEATHER_API_KEY"
            )
        key = coords_cache_key(query.lat, query.lon, query.lang)
        cached = self.cache.get(key)
        if cached is not None:
            LOGGER.debug("Alert cache hit for %s", key)
            return cached

        lists = await self._collect(
            self.coordinate_providers, Coordinates(query.lat, query.lon), query.lang
        )
        payload = AlertsResponse(
            updated_at=format_timestamp(self._now()), alerts=merge_alerts(*lists)
        )
        self.cache.set(key, payload, self.ttl_seconds)
        return payload

    async def by_country(self, query: CountryQuery) -> CountryAlertsResponse:
        key = country_cache_key(query.code, query.lang)
        payload = self.cache.get(key)
        if payload is None:
            providers = self.providers_for_country(query.code)
            lists = await self._collect(providers, Country(query.code), query.lang)
            payload = CountryAlertsResponse(
                updated_at=format_timestamp(self._now()),
                alerts=merge_alerts(*lists),
                meta=CountryMeta(
                    providers=[provider.name for provider in providers],
                    region_supported=bool(providers),
                ),
            )
            self.cache.set(key, payload, self.ttl_seconds)
        else:
            LOGGER.debug("Alert cache hit for %s", key)

        filtered = apply_filters(
            payload.alerts,
            min_severity=query.min_severity,
            area=query.area,
            limit=query.limit,
        )
        if len(filtered) == len(payload.alerts):
            return payload
        return payload.model_copy(update={"alerts": tuple(filtered)})

    async def aclose(self) -> None:
        if self.enricher is not None:
            await self.enricher.aclose()

    async def _collect(
        self, providers: Sequence[AlertProvider], geography: Geography, lang: str
    ) -> list[list[AlertDTO]]:
        outcomes = await settle_all(providers, geography, lang)
        for outcome in outcomes:
            if outcome.ok:
                LOGGER.info(
                    "Provider %s returned %s alerts in %.2fs",
                    outcome.provider,
                    len(outcome.alerts),
                    outcome.duration_seconds,
                )
            else:
                LOGGER.warning(
                    "Provider %s failed: %s", outcome.provider, outcome.error
                )
            if self.observer is not None:
                self.observer(outcome)
        return [outcome.alerts for outcome in outcomes]


def build_aggregator(
    settings: Settings,
    client: httpx.AsyncClient,
    cache: AlertCache | None = None,
    observer: OutcomeObserver | None = None,
) -> AlertAggregator:
    """Wire providers from settings.

    Without an OpenWeather key only country queries are served; coordinate
    queries then raise ``ConfigurationError``.
    """
    enricher = None
    if settings.meteoalarm_fetch_cap:
        enricher = CapEnricher(
            client,
            settings.http_user_agent,
            timeout_seconds=settings.enrichment_timeout_seconds,
            details_ttl_seconds=settings.enrichment_details_ttl_seconds,
        )
    coordinate_providers: list[AlertProvider] = []
    if settings.openweather_api_key:
        coordinate_providers.append(
            OpenWeatherProvider(
                client, settings.openweather_api_key, settings.openweather_alerts_url
            )
        )
    else:
        LOGGER.info("OPENWEATHER_API_KEY is not set; coordinate queries are disabled")
    national_providers: dict[str, AlertProvider] = {
        "US": NationalFeedProvider(
            AlertSource.NWS, client, settings.nws_feed_url, settings.http_user_agent
        ),
        "CA": NationalFeedProvider(
            AlertSource.ENVCANADA,
            client,
            settings.envcanada_feed_url,
            settings.http_user_agent,
        ),
    }
    regional_provider = MeteoalarmProvider(
        client,
        settings.meteoalarm_feed_base_url,
        settings.http_user_agent,
        enricher=enricher,
    )
    return AlertAggregator(
        coordinate_providers,
        national_providers,
        regional_provider,
        cache or TTLCache(sweep_interval=settings.alert_cache_sweep_seconds),
        ttl_seconds=settings.alert_cache_ttl_seconds,
        observer=observer,
        enricher=enricher,
    )
