"""Provider adapters producing normalised alerts for a geography."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

import httpx

from .alerts import AlertDTO, AlertSource, Coordinates, Country, Geography
from .enrichment import CapEnricher
from .errors import ConfigurationError
from .feeds import (
    DEFAULT_EXPIRY,
    RELAXED_ACCEPT,
    RSS_ACCEPT,
    dedupe_by_id,
    extract_records,
    feed_headers,
    fetch_cap_feeds,
    fetch_text,
    parse_document,
    to_alert,
)
from .mapping import (
    format_timestamp,
    make_alert_id,
    map_certainty,
    map_severity_from_openweather,
    map_urgency,
    strip_html,
    utc_now,
)

LOGGER = logging.getLogger(__name__)

# ISO-2 code -> slug used by the Meteoalarm legacy feed URLs
METEOALARM_COUNTRY_SLUGS: MappingProxyType[str, str] = MappingProxyType(
    {
        "AT": "austria",
        "BE": "belgium",
        "BA": "bosnia-herzegovina",
        "BG": "bulgaria",
        "CH": "switzerland",
        "CY": "cyprus",
        "CZ": "czech-republic",
        "DE": "germany",
        "DK": "denmark",
        "EE": "estonia",
        "ES": "spain",
        "FI": "finland",
        "FR": "france",
        "GR": "greece",
        "HR": "croatia",
        "HU": "hungary",
        "IE": "ireland",
        "IL": "israel",
        "IS": "iceland",
        "IT": "italy",
        "LI": "liechtenstein",
        "LT": "lithuania",
        "LU": "luxembourg",
        "LV": "latvia",
        "MD": "moldova",
        "ME": "montenegro",
        "MK": "republic-of-north-macedonia",
        "MT": "malta",
        "NL": "netherlands",
        "NO": "norway",
        "PL": "poland",
        "PT": "portugal",
        "RO": "romania",
        "RS": "serbia",
        "SE": "sweden",
        "SI": "slovenia",
        "SK": "slovakia",
        "UA": "ukraine",
        "GB": "united-kingdom",
        "UK": "united-kingdom",
    }
)


class AlertProvider(ABC):
    """Base class for upstream alert sources."""

    source: AlertSource

    @property
    def name(self) -> str:
        return self.source.value

    @abstractmethod
    async def fetch(self, geography: Geography, lang: str) -> list[AlertDTO]:
        """Return normalised alerts for ``geography`` in ``lang``."""


class OpenWeatherProvider(AlertProvider):
    """Coordinate alerts from the OpenWeather One Call endpoint."""

    source = AlertSource.OPENWEATHER

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str | None,
        base_url: str,
    ) -> None:
        if not api_key:
            raise ConfigurationError("OPENWEATHER_API_KEY is missing in env")
        self.client = client
        self.api_key = api_key
        self.base_url = base_url

    async def fetch(self, geography: Geography, lang: str) -> list[AlertDTO]:
        if not isinstance(geography, Coordinates):
            raise TypeError("OpenWeatherProvider only supports coordinate queries")
        params = {
            "lat": str(geography.lat),
            "lon": str(geography.lon),
            "appid": self.api_key,
            "lang": lang,
        }
        response = await self.client.get(self.base_url, params=params)
        if not response.is_success:
            LOGGER.error(
                "OpenWeather request failed: status=%s body=%s",
                response.status_code,
                response.text[:200],
            )
            return []
        try:
            payload = response.json()
        except ValueError as exc:
            LOGGER.error("OpenWeather returned a non-JSON body: %s", exc)
            return []
        raw_alerts = payload.get("alerts") if isinstance(payload, dict) else None
        if not isinstance(raw_alerts, list):
            return []
        now = utc_now()
        alerts: list[AlertDTO] = []
        for record in raw_alerts:
            if not isinstance(record, dict):
                continue
            try:
                alerts.append(self._to_alert(record, now))
            except (TypeError, ValueError) as exc:
                LOGGER.warning("Skipping malformed OpenWeather alert: %s", exc)
        return alerts

    def _to_alert(self, record: dict[str, Any], now: datetime) -> AlertDTO:
        starts_at = _from_unix(record.get("start")) or format_timestamp(now)
        ends_at = _from_unix(record.get("end")) or format_timestamp(now + DEFAULT_EXPIRY)
        event = str(record.get("event") or "").strip()
        tags = record.get("tags")
        return AlertDTO(
            id=make_alert_id(self.source, event, starts_at, ends_at),
            source=self.source,
            event=event or "Weather Alert",
            severity=map_severity_from_openweather(record.get("severity") or event),
            urgency=map_urgency(record.get("urgency") or "expected"),
            certainty=map_certainty(record.get("certainty") or "likely"),
            areas=[str(tag) for tag in tags] if isinstance(tags, list) else [],
            starts_at=starts_at,
            ends_at=ends_at,
            headline=event or "Weather Alert",
            description=strip_html(record.get("description")),
            instruction=strip_html(record.get("instruction")),
        )


class NationalFeedProvider(AlertProvider):
    """A single national CAP feed, e.g. NWS or Environment Canada."""

    def __init__(
        self,
        source: AlertSource,
        client: httpx.AsyncClient,
        feed_url: str,
        user_agent: str,
    ) -> None:
        self.source = source
        self.client = client
        self.feed_url = feed_url
        self.user_agent = user_agent

    async def fetch(self, geography: Geography, lang: str) -> list[AlertDTO]:
        return await fetch_cap_feeds(
            self.client, [self.feed_url], lang, self.source, self.user_agent
        )


class MeteoalarmProvider(AlertProvider):
    """Country-level Meteoalarm feeds, Atom first with an RSS fallback."""

    source = AlertSource.METEOALARM

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        user_agent: str,
        enricher: CapEnricher | None = None,
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.enricher = enricher

    @staticmethod
    def supports(code: str) -> bool:
        return (code or "").upper() in METEOALARM_COUNTRY_SLUGS

    def feed_urls(self, slug: str) -> tuple[str, str]:
        return (
            f"{self.base_url}/meteoalarm-legacy-atom-{slug}",
            f"{self.base_url}/meteoalarm-legacy-rss-{slug}",
        )

    async def fetch(self, geography: Geography, lang: str) -> list[AlertDTO]:
        if not isinstance(geography, Country):
            raise TypeError("MeteoalarmProvider only supports country queries")
        code = geography.code.upper()
        slug = METEOALARM_COUNTRY_SLUGS.get(code)
        if slug is None:
            LOGGER.warning("Meteoalarm does not cover country code %s", code)
            return []

        atom_url, rss_url = self.feed_urls(slug)
        headers = feed_headers(lang, self.user_agent)
        result = await fetch_text(self.client, atom_url, headers)
        if not result.ok and result.status in (406, 415):
            result = await fetch_text(
                self.client, atom_url, {**headers, "Accept": RELAXED_ACCEPT}
            )
        if not result.ok:
            result = await fetch_text(
                self.client, rss_url, {**headers, "Accept": RSS_ACCEPT}
            )
        if not result.ok or not result.content:
            LOGGER.error(
                "Meteoalarm feed fetch failed: status=%s url=%s", result.status, atom_url
            )
            return []

        try:
            records = extract_records(parse_document(result.content), lang)
        except ET.ParseError as exc:
            LOGGER.error("Meteoalarm feed for %s is not valid XML: %s", code, exc)
            return []
        LOGGER.info("Meteoalarm %s entries: %s", code, len(records))

        now = utc_now()
        alerts: list[AlertDTO] = []
        for record in records:
            alert = to_alert(self.source, record, now)
            if self.enricher is not None and record.cap_link:
                self.enricher.schedule(alert.id, record.cap_link, lang)
                alert = self.enricher.apply(alert)
            alerts.append(alert)
        return dedupe_by_id(alerts)


def _from_unix(value: Any) -> str:
    if not value:
        return ""
    try:
        moment = datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return ""
    return format_timestamp(moment)
